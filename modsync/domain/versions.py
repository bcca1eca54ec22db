from __future__ import annotations

import re

_LEADING_INT = re.compile(r"^\d+")
UNKNOWN_VERSION = "unknown"


def _split_version(version: str) -> tuple[tuple[int, int, int], str | None]:
    """Split `v1.2.3-beta.1` into ((1, 2, 3), "beta.1"); missing parts are 0."""

    token = version.strip()
    if token.startswith("v"):
        token = token[1:]
    main, _, prerelease = token.partition("-")
    numbers: list[int] = []
    for part in main.split(".")[:3]:
        m = _LEADING_INT.match(part)
        numbers.append(int(m.group(0)) if m else 0)
    while len(numbers) < 3:
        numbers.append(0)
    return (numbers[0], numbers[1], numbers[2]), (prerelease or None)


def compare_versions(left: str | None, right: str | None) -> int:
    """Return -1, 0 or 1. Unknown versions compare equal; prereleases sort before stable."""

    if not left or not right or UNKNOWN_VERSION in (left, right):
        return 0
    left_main, left_pre = _split_version(str(left))
    right_main, right_pre = _split_version(str(right))
    if left_main != right_main:
        return -1 if left_main < right_main else 1
    if left_pre and right_pre:
        if left_pre == right_pre:
            return 0
        return -1 if left_pre < right_pre else 1
    if left_pre:
        return -1
    if right_pre:
        return 1
    return 0


def is_newer(candidate: str | None, installed: str | None) -> bool:
    return compare_versions(candidate, installed) > 0
