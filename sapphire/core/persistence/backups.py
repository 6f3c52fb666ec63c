"""
Backup store — timestamped copies of files overwritten by a run.

Layout::

    <backups_dir>/
        backups.json                       # record log, rewritten atomically
        20250101-120000-a1b2c3/Users/me/.zshrc

Records are only ever removed by an explicit ``prune``.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path

from sapphire.adapters.shell.filesystem import remove_path
from sapphire.core.models.backup import BackupRecord
from sapphire.core.persistence.state_file import atomic_write_text

logger = logging.getLogger(__name__)

BACKUP_LOG_FILE = "backups.json"


class BackupStore:
    """Creates, restores and prunes BackupRecords."""

    def __init__(self, backups_dir: Path):
        self._dir = backups_dir
        self._log = backups_dir / BACKUP_LOG_FILE

    @property
    def directory(self) -> Path:
        return self._dir

    # ── Record log ──────────────────────────────────────────────

    def records(self, original: str | None = None) -> list[BackupRecord]:
        """All records, oldest first, optionally for one original path."""
        if not self._log.is_file():
            return []
        try:
            data = json.loads(self._log.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error("Corrupt backup log %s: %s", self._log, e)
            raise
        records = [BackupRecord.model_validate(item) for item in data]
        if original is not None:
            records = [r for r in records if r.original == original]
        return records

    def _save(self, records: list[BackupRecord]) -> None:
        content = json.dumps(
            [r.model_dump(mode="json") for r in records], indent=2, ensure_ascii=False
        )
        atomic_write_text(self._log, content + "\n", prefix=".backups_")

    # ── Operations ──────────────────────────────────────────────

    def create(self, original: Path, *, run_id: str = "", document: str = "") -> BackupRecord | None:
        """Save a copy of ``original`` before it is overwritten.

        Returns:
            The new record, or None if there is nothing to back up.
        """
        if not original.exists() and not original.is_symlink():
            return None

        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        record_id = f"bk-{stamp}-{uuid.uuid4().hex[:6]}"
        relative = Path(*original.parts[1:]) if original.is_absolute() else original
        dest = self._dir / record_id / relative
        dest.parent.mkdir(parents=True, exist_ok=True)

        was_symlink = None
        if original.is_symlink():
            was_symlink = os.readlink(original)
        elif original.is_dir():
            shutil.copytree(original, dest, symlinks=True)
        else:
            shutil.copy2(original, dest)

        record = BackupRecord(
            id=record_id,
            original=str(original),
            saved_copy=str(dest),
            is_directory=original.is_dir() and not original.is_symlink(),
            was_symlink=was_symlink,
            run_id=run_id,
            document=document,
        )
        self._save([*self.records(), record])
        logger.info("Backed up %s → %s", original, dest)
        return record

    def restore(self, record: BackupRecord) -> None:
        """Put the saved copy back in place of the original path."""
        original = Path(record.original)
        remove_path(original)
        original.parent.mkdir(parents=True, exist_ok=True)

        if record.was_symlink is not None:
            original.symlink_to(record.was_symlink)
        elif record.is_directory:
            shutil.copytree(record.saved_copy, original, symlinks=True)
        else:
            shutil.copy2(record.saved_copy, original)
        logger.info("Restored %s from %s", original, record.id)

    def prune(self, keep: int, original: str | None = None) -> list[BackupRecord]:
        """Delete all but the newest ``keep`` records per original path.

        Returns:
            The records that were removed.
        """
        if keep < 1:
            raise ValueError("keep must be >= 1")

        records = self.records()
        by_original: dict[str, list[BackupRecord]] = {}
        for record in records:
            by_original.setdefault(record.original, []).append(record)

        pruned: list[BackupRecord] = []
        for path, group in by_original.items():
            if original is not None and path != original:
                continue
            pruned.extend(group[:-keep])

        if not pruned:
            return []

        pruned_ids = {r.id for r in pruned}
        self._save([r for r in records if r.id not in pruned_ids])
        for record in pruned:
            shutil.rmtree(self._dir / record.id, ignore_errors=True)
            logger.info("Pruned backup %s of %s", record.id, record.original)
        return pruned
