"""
Reconciliation operation — one planned mutation and its lifecycle.

Per-operation state machine:

    planned → applying → applied
                       → failed
    applied → rolling-back → rolled-back
                           → failed-unrecoverable
    planned → skipped        (dry run, blocked dependency, aborted run)

Operations are owned by a single run and never persisted beyond
the audit log.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class OperationKind(StrEnum):
    ADD_TAP = "add-tap"
    INSTALL = "install"
    UPGRADE = "upgrade"
    REMOVE = "remove"
    WRITE_FILE = "write-file"
    LINK_FILE = "link-file"
    WRITE_DIRECTORY = "write-directory"
    PRUNE_BACKUPS = "prune-backups"
    SET_PREFERENCE = "set-preference"
    SET_DNS = "set-dns"
    PULL_IMAGE = "pull-image"
    RUN_EXTENSION = "run-extension"


class OperationStatus(StrEnum):
    PLANNED = "planned"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLING_BACK = "rolling-back"
    ROLLED_BACK = "rolled-back"
    FAILED_UNRECOVERABLE = "failed-unrecoverable"
    SKIPPED = "skipped"


_TRANSITIONS: dict[OperationStatus, set[OperationStatus]] = {
    OperationStatus.PLANNED: {OperationStatus.APPLYING, OperationStatus.SKIPPED},
    OperationStatus.APPLYING: {OperationStatus.APPLIED, OperationStatus.FAILED},
    OperationStatus.APPLIED: {OperationStatus.ROLLING_BACK},
    OperationStatus.ROLLING_BACK: {
        OperationStatus.ROLLED_BACK,
        OperationStatus.FAILED_UNRECOVERABLE,
    },
}


class ReconciliationOperation(BaseModel):
    """A single planned mutation."""

    id: str
    kind: OperationKind
    provider: str                   # provider type tag that implements it
    document: str                   # owning document name
    target: str                     # what is mutated, human readable
    desired: dict[str, Any] = Field(default_factory=dict)
    previous: dict[str, Any] = Field(default_factory=dict)   # rollback snapshot

    status: OperationStatus = OperationStatus.PLANNED
    error: str | None = None
    error_kind: str | None = None
    rollback_error: str | None = None
    note: str = ""

    def transition(self, status: OperationStatus) -> None:
        """Move to a new status, refusing illegal transitions."""
        allowed = _TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise ValueError(
                f"Illegal transition for {self.id}: {self.status} → {status}"
            )
        self.status = status

    @property
    def label(self) -> str:
        return f"{self.kind} {self.target}"

    def summary(self) -> dict[str, Any]:
        """Report view: everything except rollback internals."""
        return self.model_dump(mode="json", exclude={"previous"})
