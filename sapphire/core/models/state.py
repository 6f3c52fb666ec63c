"""
Observed host state and run summaries.

``PackageState`` is what the package backend reports. ``HostState`` is
the small JSON document persisted after every run (last run summary),
serialized to <state_dir>/state.json.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from sapphire.core.models.manifest import PackageKind


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class PackageState(BaseModel):
    """An installed tap, formula or cask as reported by the backend."""

    name: str
    kind: PackageKind
    version: str = ""
    outdated: bool = False
    dependency: bool = False     # installed only as a dependency


class RunRecord(BaseModel):
    """Summary of the last reconciliation run."""

    run_id: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""              # ok, noop, partial, failed, dry-run
    operations_total: int = 0
    operations_applied: int = 0
    operations_failed: int = 0
    operations_rolled_back: int = 0
    unrecoverable: int = 0


class HostState(BaseModel):
    """Root state document — disposable, rebuilt by the next run."""

    schema_version: int = 1
    mode: str = "standalone"

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    last_run: RunRecord = Field(default_factory=RunRecord)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()
