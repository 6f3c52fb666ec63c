"""
Filesystem backend — hashing, atomic writes, links and snapshots.

Provides a receipt-returning interface for the file mutations the
dotfiles provider performs. Writes land in a temp path beside the
target and are renamed into place.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Any

from sapphire.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_CHUNK = 1 << 16


def file_digest(path: Path) -> str:
    """sha256 of a file's content."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for block in iter(lambda: f.read(_CHUNK), b""):
            h.update(block)
    return h.hexdigest()


def tree_digest(root: Path) -> str:
    """sha256 over relative paths and contents of every entry under ``root``."""
    h = hashlib.sha256()
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        if path.is_symlink():
            h.update(f"L {rel} {os.readlink(path)}\n".encode())
        elif path.is_dir():
            h.update(f"D {rel}\n".encode())
        else:
            h.update(f"F {rel} {file_digest(path)}\n".encode())
    return h.hexdigest()


def remove_path(path: Path) -> None:
    """Delete a file, link or directory tree. Missing paths are ignored."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class FilesystemBackend:
    """File and directory mutations with receipts."""

    name = "filesystem"

    def is_available(self) -> bool:
        return True

    # ── Observation ─────────────────────────────────────────────

    def digest(self, path: Path) -> str | None:
        """Content identity of a path, or None when absent.

        Symlinks are identified by their link target, not the content
        they point at.
        """
        if path.is_symlink():
            return f"link:{os.readlink(path)}"
        if path.is_file():
            return file_digest(path)
        if path.is_dir():
            return f"tree:{tree_digest(path)}"
        return None

    def mode_of(self, path: Path) -> int | None:
        if path.is_symlink() or not path.exists():
            return None
        return path.stat().st_mode & 0o7777

    # ── Mutations ───────────────────────────────────────────────

    def copy_file(self, source: Path, target: Path, mode: int | None = None) -> Receipt:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            tmp = target.with_name(f".{target.name}.sapphire-{uuid.uuid4().hex[:8]}")
            shutil.copy2(source, tmp)
            if mode is not None:
                tmp.chmod(mode)
            os.replace(tmp, target)
        except OSError as e:
            return Receipt.failure(
                source=self.name,
                error=f"Cannot copy {source} → {target}: {e}",
                error_kind="DeterministicApplyError",
            )
        return Receipt.success(source=self.name, output=f"Copied {source} → {target}")

    def link(self, source: Path, target: Path) -> Receipt:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            tmp = target.with_name(f".{target.name}.sapphire-{uuid.uuid4().hex[:8]}")
            tmp.symlink_to(source)
            os.replace(tmp, target)
        except OSError as e:
            return Receipt.failure(
                source=self.name,
                error=f"Cannot link {target} → {source}: {e}",
                error_kind="DeterministicApplyError",
            )
        return Receipt.success(source=self.name, output=f"Linked {target} → {source}")

    def copy_tree(self, source: Path, target: Path) -> Receipt:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            staging = target.with_name(f".{target.name}.sapphire-{uuid.uuid4().hex[:8]}")
            shutil.copytree(source, staging, symlinks=True)
            remove_path(target)
            os.replace(staging, target)
        except OSError as e:
            return Receipt.failure(
                source=self.name,
                error=f"Cannot copy tree {source} → {target}: {e}",
                error_kind="DeterministicApplyError",
            )
        return Receipt.success(source=self.name, output=f"Copied tree {source} → {target}")

    def remove(self, path: Path) -> Receipt:
        try:
            remove_path(path)
        except OSError as e:
            return Receipt.failure(source=self.name, error=f"Cannot remove {path}: {e}")
        return Receipt.success(source=self.name, output=f"Removed {path}")

    # ── Run-scoped snapshots (rollback without a durable backup) ─

    def snapshot(self, path: Path, into: Path) -> dict[str, Any]:
        """Copy ``path`` into a scratch directory and describe how to restore it."""
        if path.is_symlink():
            return {"existed": True, "link": os.readlink(path)}
        if not path.exists():
            return {"existed": False}
        dest = into / uuid.uuid4().hex
        into.mkdir(parents=True, exist_ok=True)
        if path.is_dir():
            shutil.copytree(path, dest, symlinks=True)
        else:
            shutil.copy2(path, dest)
        return {"existed": True, "snapshot": str(dest), "is_dir": path.is_dir()}

    def restore_snapshot(self, snapshot: dict[str, Any], target: Path) -> Receipt:
        """Undo a write using a ``snapshot()`` description."""
        try:
            remove_path(target)
            if not snapshot.get("existed"):
                return Receipt.success(source=self.name, output=f"Removed {target}")
            target.parent.mkdir(parents=True, exist_ok=True)
            if "link" in snapshot:
                target.symlink_to(snapshot["link"])
            elif snapshot.get("is_dir"):
                shutil.copytree(snapshot["snapshot"], target, symlinks=True)
            else:
                shutil.copy2(snapshot["snapshot"], target)
        except (OSError, KeyError) as e:
            return Receipt.failure(source=self.name, error=f"Cannot restore {target}: {e}")
        return Receipt.success(source=self.name, output=f"Restored {target}")
