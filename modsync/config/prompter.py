"""Prompter collaborators for config question batches.

The collector hands each module's questions to a prompter as one batch and
gets back a mapping of config key to raw answer. Questions are answered in
order; each default is bound to the answers given before it.
`ConsolePrompter` is the plain terminal implementation; `DefaultsPrompter`
and `ScriptedPrompter` serve non-interactive runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Protocol, Sequence

from modsync.config.schema import (
    BooleanKind,
    Choice,
    ConfigItem,
    MultiChoiceKind,
    SingleChoiceKind,
    validate_answer,
)
from modsync.domain.errors import PromptAborted
from modsync.domain.placeholders import stringify


@dataclass(frozen=True)
class Question:
    item: ConfigItem
    message: str
    default: Any
    # Re-resolves the default from the answers given earlier in the same batch.
    default_fn: Callable[[Mapping[str, Any]], Any] | None = field(default=None, compare=False)

    @property
    def key(self) -> str:
        return self.item.key

    @property
    def answer_key(self) -> str:
        return f"{self.item.module_id}_{self.item.key}"

    def bind(self, answered: Mapping[str, Any]) -> "Question":
        """Return this question with its default resolved against `answered` (key -> raw answer)."""
        if self.default_fn is None or not answered:
            return self
        return replace(self, default=self.default_fn(answered))


class Prompter(Protocol):
    def ask(self, module_id: str, header: str, questions: Sequence[Question]) -> dict[str, Any]: ...


def default_answer(question: Question) -> Any:
    kind = question.item.kind
    if isinstance(kind, BooleanKind):
        return bool(question.default) if question.default is not None else False
    if isinstance(kind, MultiChoiceKind):
        if question.default is None:
            return []
        return list(question.default) if isinstance(question.default, list) else [question.default]
    if isinstance(kind, SingleChoiceKind) and question.default is None:
        return kind.options[0].value
    return question.default


class DefaultsPrompter:
    """Accepts every default without asking (`--yes`)."""

    def __init__(self) -> None:
        self.batches: list[tuple[str, list[str]]] = []

    def ask(self, module_id: str, header: str, questions: Sequence[Question]) -> dict[str, Any]:
        self.batches.append((module_id, [q.key for q in questions]))
        out: dict[str, Any] = {}
        for q in questions:
            out[q.key] = default_answer(q.bind(out))
        return out


@dataclass
class ScriptedPrompter:
    """Answers from a mapping keyed by `<module>_<key>` or bare `<key>`; defaults otherwise."""

    responses: Mapping[str, Any] = field(default_factory=dict)
    batches: list[tuple[str, list[str]]] = field(default_factory=list)

    def ask(self, module_id: str, header: str, questions: Sequence[Question]) -> dict[str, Any]:
        self.batches.append((module_id, [q.key for q in questions]))
        out: dict[str, Any] = {}
        for q in questions:
            if q.answer_key in self.responses:
                out[q.key] = self.responses[q.answer_key]
            elif q.key in self.responses:
                out[q.key] = self.responses[q.key]
            else:
                out[q.key] = default_answer(q.bind(out))
        return out

    def asked_keys(self, module_id: str) -> list[str]:
        keys: list[str] = []
        for batch_module, batch_keys in self.batches:
            if batch_module == module_id:
                keys.extend(batch_keys)
        return keys


def _format_choices(options: Sequence[Choice], selected: Sequence[Any]) -> list[str]:
    lines = []
    for index, option in enumerate(options, start=1):
        marker = "*" if option.value in selected else " "
        lines.append(f"    {marker} {index}) {option.label}")
    return lines


def _pick(options: Sequence[Choice], token: str) -> Any:
    token = token.strip()
    if token.isdigit() and 1 <= int(token) <= len(options):
        return options[int(token) - 1].value
    for option in options:
        if token == str(option.value) or token == option.label:
            return option.value
    raise ValueError(f"unknown choice: {token!r}")


class ConsolePrompter:
    def __init__(
        self,
        *,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self.input_fn = input_fn
        self.output_fn = output_fn

    def _read(self, prompt: str) -> str:
        try:
            return self.input_fn(prompt)
        except (EOFError, KeyboardInterrupt) as exc:
            raise PromptAborted("input aborted") from exc

    def _ask_one(self, question: Question) -> Any:
        kind = question.item.kind
        default = default_answer(question)
        while True:
            if isinstance(kind, BooleanKind):
                raw = self._read(f"{question.message} [{'Y/n' if default else 'y/N'}] ").strip().lower()
                value: Any = default if not raw else raw in ("y", "yes", "true", "1")
            elif isinstance(kind, SingleChoiceKind):
                self.output_fn(question.message)
                for line in _format_choices(kind.options, [default]):
                    self.output_fn(line)
                raw = self._read("  choice: ").strip()
                try:
                    value = default if not raw else _pick(kind.options, raw)
                except ValueError as exc:
                    self.output_fn(f"  {exc}")
                    continue
            elif isinstance(kind, MultiChoiceKind):
                self.output_fn(question.message)
                for line in _format_choices(kind.options, default):
                    self.output_fn(line)
                raw = self._read("  choices (comma separated): ").strip()
                try:
                    value = default if not raw else [_pick(kind.options, t) for t in raw.split(",") if t.strip()]
                except ValueError as exc:
                    self.output_fn(f"  {exc}")
                    continue
            else:
                shown = stringify(default)
                raw = self._read(f"{question.message}" + (f" [{shown}]" if shown else "") + ": ").strip()
                value = raw if raw else default
            error = validate_answer(question.item, value)
            if error is None:
                return value
            self.output_fn(f"  {error}")

    def ask(self, module_id: str, header: str, questions: Sequence[Question]) -> dict[str, Any]:
        if header:
            self.output_fn(f"\n{header}")
        out: dict[str, Any] = {}
        for q in questions:
            out[q.key] = self._ask_one(q.bind(out))
        return out
