from __future__ import annotations

import sys


def eprint(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)


class Console:
    """Status line printer; `quiet` drops info lines but never warnings or errors."""

    def __init__(self, *, quiet: bool = False):
        self.quiet = quiet

    def info(self, message: str) -> None:
        if not self.quiet:
            print(message)

    def section(self, title: str) -> None:
        if not self.quiet:
            print(f"\n{title}")

    def ok(self, message: str) -> None:
        self.info(f"  ✅ {message}")

    def skip(self, message: str) -> None:
        self.info(f"  ⏭️  {message}")

    def note(self, message: str) -> None:
        self.info(f"  ℹ️  {message}")

    def warn(self, message: str) -> None:
        eprint(f"  ⚠️  {message}")

    def error(self, message: str) -> None:
        eprint(f"❌ {message}")

    def rule(self) -> None:
        self.info("=" * 60)
