"""Deterministic module selection closure and install ordering."""

from __future__ import annotations

from typing import Callable, Iterable, Mapping

CORE_MODULE_ID = "core"


def expand_selection(
    selected: Iterable[str],
    dependencies_of: Callable[[str], Iterable[str]],
) -> list[str]:
    """Add the declared dependencies of each selected module (one level only)."""

    out: list[str] = []
    seen: set[str] = set()
    for module_id in selected:
        token = module_id.strip()
        if not token or token in seen:
            continue
        seen.add(token)
        out.append(token)
    for module_id in list(out):
        for dep in dependencies_of(module_id):
            dep = dep.strip()
            if dep and dep not in seen:
                seen.add(dep)
                out.append(dep)
    return out


def order_modules(dependencies: Mapping[str, Iterable[str]]) -> list[str]:
    """Topologically order modules; `core` first, ties broken alphabetically.

    Dependencies naming modules outside the mapping are ignored for ordering.
    Raises ValueError on a dependency cycle.
    """

    ids = sorted(dependencies)
    indegree: dict[str, int] = {module_id: 0 for module_id in ids}
    adjacency: dict[str, set[str]] = {module_id: set() for module_id in ids}
    for module_id in ids:
        for dep in set(dependencies[module_id]):
            if dep in adjacency and dep != module_id:
                adjacency[dep].add(module_id)
                indegree[module_id] += 1

    def _key(module_id: str) -> tuple[int, str]:
        return (0 if module_id == CORE_MODULE_ID else 1, module_id)

    ordered: list[str] = []
    frontier = sorted([m for m in ids if indegree[m] == 0], key=_key)
    while frontier:
        current = frontier.pop(0)
        ordered.append(current)
        for nxt in adjacency[current]:
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                frontier.append(nxt)
        frontier.sort(key=_key)

    if len(ordered) != len(ids):
        stuck = sorted(m for m in ids if m not in ordered)
        raise ValueError(f"dependency cycle detected among modules: {', '.join(stuck)}")
    return ordered
