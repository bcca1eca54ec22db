"""Deterministic renderer for compiled agent documents.

Output is a markdown file with YAML frontmatter, one embodiment line and a
fenced XML body. The menu always carries the fixed entries: help and chat
first, party mode and dismiss last, authored items in between.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Sequence

DEFAULT_ICON = "🤖"
DEFAULT_DESCRIPTION = "Module Agent"
EMBODIMENT_LINE = (
    "You must fully embody this agent's persona and follow all activation instructions "
    "exactly as specified. NEVER break character until given an exit command."
)

MENU_ATTRIBUTES = ("workflow", "exec", "tmpl", "data", "action")
HANDLER_ATTRIBUTES = ("exec", "workflow", "validate-workflow", "action", "data", "tmpl")

_WS_RE = re.compile(r"\s+")


def escape_xml(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _collapse(text: Any) -> str:
    return _WS_RE.sub(" ", str(text).strip())


def _attrs(pairs: Sequence[tuple[str, Any]]) -> str:
    return " ".join(f'{name}="{escape_xml(str(value))}"' for name, value in pairs)


def render_frontmatter(metadata: Mapping[str, Any], agent_name: str) -> list[str]:
    name = agent_name.replace("-", " ")
    description = metadata.get("title") or DEFAULT_DESCRIPTION
    return [
        "---",
        f'name: "{name}"',
        f'description: "{description}"',
        "---",
        "",
        EMBODIMENT_LINE,
        "",
    ]


def render_activation(module_id: str, folder: str, critical_actions: Sequence[Any]) -> list[str]:
    steps = [
        "Load persona from this current agent file (already in context)",
        (
            f"Load and read {{project-root}}/{folder}/{module_id}/config.yaml NOW and store "
            "all fields as session variables before any further output"
        ),
        "Remember: the user's name is {user_name}",
    ]
    steps.extend(_collapse(action) for action in critical_actions)
    steps.extend(
        [
            "Show a greeting using {user_name}, communicating in {communication_language}, then display the menu",
            "STOP and WAIT for user input: a number, a command trigger or fuzzy text",
            "On a menu match, follow the handler attribute of the matched item (workflow, exec, tmpl, data or action)",
        ]
    )
    lines = ['<activation critical="MANDATORY">']
    for index, step in enumerate(steps, start=1):
        lines.append(f'  <step n="{index}">{escape_xml(step)}</step>')
    lines.append("</activation>")
    return lines


def render_persona(persona: Mapping[str, Any] | None) -> list[str]:
    if not persona:
        return []
    lines = ["  <persona>"]
    for field in ("role", "identity", "communication_style"):
        if persona.get(field):
            lines.append(f"    <{field}>{escape_xml(_collapse(persona[field]))}</{field}>")
    principles = persona.get("principles")
    if principles:
        text = " ".join(_collapse(p) for p in principles) if isinstance(principles, list) else _collapse(principles)
        lines.append(f"    <principles>{escape_xml(text)}</principles>")
    lines.append("  </persona>")
    return lines


def render_prompts(prompts: Sequence[Any]) -> list[str]:
    if not prompts:
        return []
    lines = ["  <prompts>"]
    for prompt in prompts:
        prompt = prompt if isinstance(prompt, Mapping) else {"content": prompt}
        lines.append(f'    <prompt id="{escape_xml(str(prompt.get("id") or ""))}">')
        lines.append("      <content>")
        # Prompt bodies are instructions read verbatim, not escaped.
        lines.append(str(prompt.get("content") or "").rstrip("\n"))
        lines.append("      </content>")
        lines.append("    </prompt>")
    lines.append("  </prompts>")
    return lines


def render_memories(memories: Sequence[Any]) -> list[str]:
    if not memories:
        return []
    lines = ["  <memories>"]
    lines.extend(f"    <memory>{escape_xml(str(memory))}</memory>" for memory in memories)
    lines.append("  </memories>")
    return lines


def _handler_data(steps: Any) -> dict[str, Any]:
    data: dict[str, Any] = {"description": ""}
    if not isinstance(steps, list):
        return data
    for step in steps:
        if not isinstance(step, Mapping):
            continue
        if step.get("input"):
            data["description"] = step["input"]
        route = step.get("route")
        if route:
            key = "workflow" if str(route).endswith((".yaml", ".yml")) else "exec"
            data[key] = route
        for name in ("data", "action", "type", "validate-workflow", "tmpl"):
            if step.get(name) is not None:
                data[name] = step[name]
    return data


def _render_handlers(triggers: Sequence[Any]) -> list[str]:
    lines: list[str] = []
    for group in triggers:
        if not isinstance(group, Mapping):
            continue
        for _name, steps in group.items():
            data = _handler_data(steps)
            pairs: list[tuple[str, Any]] = [("match", data["description"])]
            pairs.extend((name, data[name]) for name in HANDLER_ATTRIBUTES if data.get(name))
            if data.get("type") and data["type"] != "exec":
                pairs.append(("type", data["type"]))
            lines.append(f"      <handler {_attrs(pairs)}></handler>")
    return lines


def render_menu(items: Sequence[Any], *, folder: str) -> list[str]:
    lines = [
        "  <menu>",
        '    <item cmd="MH or fuzzy match on menu or help">[MH] Redisplay Menu Help</item>',
        '    <item cmd="CH or fuzzy match on chat">[CH] Chat with the Agent about anything</item>',
    ]
    for item in items:
        if not isinstance(item, Mapping):
            continue
        if item.get("multi") and isinstance(item.get("triggers"), list):
            lines.append(f'    <item type="multi">{escape_xml(str(item["multi"]))}')
            lines.extend(_render_handlers(item["triggers"]))
            lines.append("    </item>")
        elif item.get("trigger"):
            pairs: list[tuple[str, Any]] = [("cmd", item["trigger"])]
            pairs.extend((name, item[name]) for name in MENU_ATTRIBUTES if item.get(name))
            lines.append(f"    <item {_attrs(pairs)}>{escape_xml(str(item.get('description') or ''))}</item>")
    lines.append(
        '    <item cmd="PM or fuzzy match on party-mode" '
        f'exec="{{project-root}}/{folder}/core/workflows/party-mode/workflow.md">[PM] Start Party Mode</item>'
    )
    lines.append('    <item cmd="DA or fuzzy match on exit, leave, goodbye or dismiss agent">[DA] Dismiss Agent</item>')
    lines.append("  </menu>")
    return lines


def render_agent_document(
    agent: Mapping[str, Any],
    *,
    agent_name: str,
    agent_id: str,
    module_id: str,
    folder: str,
) -> str:
    metadata = agent.get("metadata") or {}
    header = _attrs(
        [
            ("id", agent_id),
            ("name", metadata.get("name") or ""),
            ("title", metadata.get("title") or ""),
            ("icon", metadata.get("icon") or DEFAULT_ICON),
        ]
    )
    lines = render_frontmatter(metadata, agent_name)
    lines.append("```xml")
    lines.append(f"<agent {header}>")
    lines.extend(render_activation(module_id, folder, agent.get("critical_actions") or []))
    lines.extend(render_persona(agent.get("persona")))
    lines.extend(render_prompts(agent.get("prompts") or []))
    lines.extend(render_memories(agent.get("memories") or []))
    lines.extend(render_menu(agent.get("menu") or [], folder=folder))
    lines.append("</agent>")
    lines.append("```")
    return "\n".join(lines) + "\n"
