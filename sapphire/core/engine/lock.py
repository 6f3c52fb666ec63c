"""
Run lock — one reconciliation run per state directory at a time.

Lifecycle:
    acquire at run start → release at run end (always, via ``with``).
    If the holder crashed, the lock is reclaimed when its pid is gone
    or the lock is older than ``stale_after`` seconds.

A second run never waits: it fails fast with RunInProgressError.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from sapphire.core.errors import RunInProgressError

logger = logging.getLogger(__name__)

LOCK_FILE = "run.lock"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by someone else
    return True


class RunLock:
    """Exclusive, file-based run lock (O_CREAT | O_EXCL)."""

    def __init__(self, state_dir: Path, run_id: str, stale_after: float = 6 * 3600):
        self.path = state_dir / LOCK_FILE
        self.run_id = run_id
        self.stale_after = stale_after
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Take the lock or raise RunInProgressError immediately."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self._try_create():
            return

        holder = self.holder()
        if holder is not None and self._is_stale(holder):
            logger.warning(
                "Reclaiming stale run lock held by %s (pid %s)",
                holder.get("run_id"), holder.get("pid"),
            )
            self._reclaim(holder)
            if self._try_create():
                return
            holder = self.holder()

        held_by = (holder or {}).get("run_id", "unknown")
        raise RunInProgressError(
            f"Another reconciliation run is in progress ({held_by})",
            target=str(self.path),
        )

    def release(self) -> None:
        """Drop the lock if this instance holds it."""
        if not self._held:
            return
        holder = self.holder()
        if holder is not None and holder.get("run_id") != self.run_id:
            logger.error("Run lock owned by %s, not releasing", holder.get("run_id"))
            self._held = False
            return
        self.path.unlink(missing_ok=True)
        self._held = False
        logger.debug("Run lock released: %s", self.run_id)

    def holder(self) -> dict[str, Any] | None:
        """Metadata of the current holder, or None if unlocked/unreadable."""
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable run lock %s: %s", self.path, e)
            return {}

    def _reclaim(self, stale: dict[str, Any]) -> None:
        """Move the stale lock aside, restoring it if another run replaced it first."""
        aside = self.path.with_name(f"{LOCK_FILE}.{self.run_id}.stale")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return
        try:
            moved = json.loads(aside.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            moved = {}
        if moved != stale:
            logger.debug("Run lock changed hands while reclaiming, restoring %s", moved.get("run_id"))
            try:
                os.link(aside, self.path)
            except FileExistsError:
                logger.warning("Could not restore run lock of %s", moved.get("run_id"))
        aside.unlink(missing_ok=True)

    def _try_create(self) -> bool:
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        metadata = {"run_id": self.run_id, "pid": os.getpid(), "acquired_at": time.time()}
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(metadata, f)
        self._held = True
        logger.debug("Run lock acquired: %s", self.run_id)
        return True

    def _is_stale(self, holder: dict[str, Any]) -> bool:
        pid = holder.get("pid")
        if isinstance(pid, int) and not _pid_alive(pid):
            return True
        acquired_at = holder.get("acquired_at")
        if isinstance(acquired_at, (int, float)):
            return time.time() - acquired_at > self.stale_after
        return False

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
