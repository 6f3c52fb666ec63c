"""
Dotfiles provider — files and directory trees copied or linked into place.

A mapping is in sync when the target's content digest equals the
source's (tree digest for directories), or when the target is a
symlink to the source for ``link: true`` mappings.

Before overwriting, the previous target is saved: as a durable
BackupRecord when the mapping asks for ``backup: true``, otherwise as
a run-scoped snapshot used only for rollback.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Sequence

from sapphire.adapters.shell.filesystem import file_digest, tree_digest
from sapphire.core.errors import RollbackError, SourceMissingError
from sapphire.core.models.fragment import DirectoryMapping, DotfilesFragment, FileMapping
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.models.receipt import Receipt
from sapphire.core.providers.base import Provider, make_operation

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState

logger = logging.getLogger(__name__)


def expand_target(target: str) -> Path:
    """``~`` and ``$VAR`` expansion for target paths."""
    return Path(os.path.expandvars(os.path.expanduser(target)))


def resolve_source(fragment: DotfilesFragment, source: str) -> Path:
    """Sources are relative to the fragment file's directory."""
    path = Path(os.path.expanduser(source))
    if path.is_absolute():
        return path
    base = Path(fragment.source_path).parent if fragment.source_path else Path.cwd()
    return (base / path).absolute()


class DotfilesProvider(Provider):
    type_tag = "dotfiles"

    def entries(self, document: DotfilesFragment) -> Sequence[FileMapping]:
        return [*document.files, *document.directories]

    # ── Planning ────────────────────────────────────────────────

    def _in_sync(self, mapping: FileMapping, source: Path, target: Path, observed: ObservedState) -> bool:
        current = observed.digest(target)
        if current is None:
            return False
        if mapping.link:
            return current == f"link:{source}"
        if isinstance(mapping, DirectoryMapping):
            return current == f"tree:{tree_digest(source)}"
        if current != file_digest(source):
            return False
        return mapping.file_mode is None or observed.mode(target) == mapping.file_mode

    def plan_entry(
        self, document: DotfilesFragment, entry: FileMapping, observed: ObservedState
    ) -> list[ReconciliationOperation]:
        source = resolve_source(document, entry.source)
        target = expand_target(entry.target)
        is_dir = isinstance(entry, DirectoryMapping)

        if not source.exists():
            raise SourceMissingError(
                f"Source {source} does not exist",
                target=str(target),
                cause=str(source),
            )
        if is_dir and not source.is_dir():
            raise SourceMissingError(f"Source {source} is not a directory", target=str(target), cause=str(source))
        if not is_dir and not entry.link and not source.is_file():
            raise SourceMissingError(f"Source {source} is not a file", target=str(target), cause=str(source))

        if self._in_sync(entry, source, target, observed):
            return []

        if entry.link:
            kind = OperationKind.LINK_FILE
        elif is_dir:
            kind = OperationKind.WRITE_DIRECTORY
        else:
            kind = OperationKind.WRITE_FILE

        operations = [
            make_operation(
                kind, self.type_tag, document.name, str(target),
                desired={
                    "source": str(source),
                    "target": str(target),
                    "backup": entry.backup,
                    "mode": entry.file_mode,
                },
            )
        ]

        retention = self.context.policy.backup_retention
        exists = observed.digest(target) is not None
        if entry.backup and retention and exists:
            # Always after the write whose backup it keeps
            operations.append(
                make_operation(
                    OperationKind.PRUNE_BACKUPS, self.type_tag, document.name, str(target),
                    desired={"target": str(target), "keep": retention},
                )
            )
        return operations

    # ── Execution ───────────────────────────────────────────────

    def _save_previous(self, operation: ReconciliationOperation, target: Path) -> None:
        if operation.desired.get("backup"):
            record = self.context.backups.create(
                target, run_id=self.context.run_id, document=operation.document
            )
            operation.previous = (
                {"existed": True, "backup_id": record.id} if record else {"existed": False}
            )
        else:
            operation.previous = self.host.files.snapshot(target, self.context.scratch_dir)

    def apply(self, operation: ReconciliationOperation) -> Receipt:
        if operation.kind == OperationKind.PRUNE_BACKUPS:
            pruned = self.context.backups.prune(
                operation.desired["keep"], original=operation.desired["target"]
            )
            operation.previous = {"pruned": [r.id for r in pruned]}
            return Receipt.success(
                source=self.type_tag,
                operation_id=operation.id,
                output=f"Pruned {len(pruned)} backups of {operation.target}",
            )

        source = Path(operation.desired["source"])
        target = Path(operation.desired["target"])
        self._save_previous(operation, target)

        files = self.host.files
        if operation.kind == OperationKind.LINK_FILE:
            receipt = files.link(source, target)
        elif operation.kind == OperationKind.WRITE_DIRECTORY:
            receipt = files.copy_tree(source, target)
        else:
            receipt = files.copy_file(source, target, operation.desired.get("mode"))
        receipt.operation_id = operation.id
        return receipt

    def verify(self, operation: ReconciliationOperation) -> bool:
        if operation.kind == OperationKind.PRUNE_BACKUPS:
            return True
        source = Path(operation.desired["source"])
        current = self.host.files.digest(Path(operation.desired["target"]))
        if operation.kind == OperationKind.LINK_FILE:
            return current == f"link:{source}"
        if operation.kind == OperationKind.WRITE_DIRECTORY:
            return current == f"tree:{tree_digest(source)}"
        mode = operation.desired.get("mode")
        if mode is not None and self.host.files.mode_of(Path(operation.desired["target"])) != mode:
            return False
        return current == file_digest(source)

    def rollback(self, operation: ReconciliationOperation) -> Receipt:
        if operation.kind == OperationKind.PRUNE_BACKUPS:
            # Only older records were pruned; the write's own backup is kept
            return Receipt.success(
                source=self.type_tag,
                operation_id=operation.id,
                output="Pruned backups are not restored",
            )

        target = Path(operation.desired["target"])
        previous: dict[str, Any] = operation.previous
        backup_id = previous.get("backup_id")
        if backup_id:
            record = next((r for r in self.context.backups.records() if r.id == backup_id), None)
            if record is None:
                raise RollbackError(f"Backup {backup_id} no longer exists", target=str(target))
            try:
                self.context.backups.restore(record)
            except OSError as e:
                raise RollbackError(f"Cannot restore {target}: {e}", target=str(target), cause=str(e)) from e
            return Receipt.success(source=self.type_tag, operation_id=operation.id, output=f"Restored {target} from {backup_id}")

        receipt = self.host.files.restore_snapshot(previous, target)
        receipt.operation_id = operation.id
        return receipt
