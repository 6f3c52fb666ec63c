"""BackupRecord — original path ↔ timestamped saved copy."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class BackupRecord(BaseModel):
    """Created before a destructive write when the entry requests backup.

    Records are retained until explicitly pruned.
    """

    id: str
    original: str                  # path that was overwritten
    saved_copy: str                # where the previous content lives
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    is_directory: bool = False
    was_symlink: str | None = None  # previous link target, if the original was a link
    run_id: str = ""
    document: str = ""
