"""Three-way reconciliation decision for installed files.

The decision compares the hash recorded in the manifest (what the installer
last wrote), the hash of the file currently on disk and the hash of the new
source content. It is a pure function so it can be exercised without any
filesystem access.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ReconcileAction = Literal["write", "skip", "preserve-user-edit"]
FileState = Literal["absent", "untracked", "synced", "user-modified"]

WRITE: ReconcileAction = "write"
SKIP: ReconcileAction = "skip"
PRESERVE_USER_EDIT: ReconcileAction = "preserve-user-edit"


@dataclass(frozen=True)
class ReconcileDecision:
    action: ReconcileAction
    state: FileState
    # Hash the manifest should carry after the action; None keeps the prior entry.
    record_hash: str | None
    reason: str


def classify_state(tracked_hash: str | None, disk_hash: str | None) -> FileState:
    if disk_hash is None:
        return "absent"
    if tracked_hash is None:
        return "untracked"
    if disk_hash == tracked_hash:
        return "synced"
    return "user-modified"


def decide(
    *,
    tracked_hash: str | None,
    disk_hash: str | None,
    new_hash: str,
    is_update: bool,
) -> ReconcileDecision:
    """Decide what to do with one target file.

    Order of checks:
    1) target absent -> write
    2) target already equals the new content -> skip, record hash
    3) first install -> write
    4) never tracked -> write (first adoption, no prior edit assumed)
    5) target matches the tracked hash -> write
    6) otherwise the user edited the file -> preserve, keep the old hash
    """

    state = classify_state(tracked_hash, disk_hash)
    if state == "absent":
        return ReconcileDecision(WRITE, state, new_hash, "target absent")
    if disk_hash == new_hash:
        return ReconcileDecision(SKIP, state, new_hash, "target already current")
    if not is_update:
        return ReconcileDecision(WRITE, state, new_hash, "fresh install")
    if state == "untracked":
        return ReconcileDecision(WRITE, state, new_hash, "first adoption of untracked file")
    if state == "synced":
        return ReconcileDecision(WRITE, state, new_hash, "target unchanged since last install")
    return ReconcileDecision(PRESERVE_USER_EDIT, state, None, "target edited since last install")
