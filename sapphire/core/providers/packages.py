"""
Packages provider — taps, formulas and casks from package manifests.

Rollback is the inverse mutation:

    add-tap  → untap
    install  → uninstall
    remove   → reinstall with the declared options
    upgrade  → irreversible (the package manager cannot downgrade)
"""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

from sapphire.core.engine.diff import diff_manifest
from sapphire.core.engine.versions import satisfies
from sapphire.core.errors import RollbackError
from sapphire.core.models.manifest import PackageKind, PackageManifest
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.models.receipt import Receipt
from sapphire.core.providers.base import Provider

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState

logger = logging.getLogger(__name__)


class PackagesProvider(Provider):
    type_tag = "packages"

    def plan_entry(
        self, document: PackageManifest, entry: PackageManifest, observed: ObservedState
    ) -> list[ReconciliationOperation]:
        return diff_manifest(entry, observed)

    def _call(self, operation: ReconciliationOperation, verb: str, retry: bool = True) -> Receipt:
        kind = PackageKind(operation.desired["kind"])
        name = operation.desired["name"]
        options = operation.desired.get("options", [])
        backend = self.host.packages

        if verb == "install":
            fn = partial(backend.install, kind, name, options)
        elif verb == "remove":
            fn = partial(backend.remove, kind, name)
        else:
            fn = partial(backend.upgrade, kind, name, options)

        receipt = self.context.with_retry(fn, f"{verb} {kind} {name}") if retry else fn()
        receipt.operation_id = operation.id
        return receipt

    def apply(self, operation: ReconciliationOperation) -> Receipt:
        if operation.kind in (OperationKind.ADD_TAP, OperationKind.INSTALL):
            return self._call(operation, "install")
        if operation.kind == OperationKind.REMOVE:
            return self._call(operation, "remove")
        if operation.kind == OperationKind.UPGRADE:
            return self._call(operation, "upgrade")
        return Receipt.failure(
            source=self.type_tag,
            operation_id=operation.id,
            error=f"Unsupported operation kind {operation.kind}",
            error_kind="DeterministicApplyError",
        )

    def verify(self, operation: ReconciliationOperation) -> bool:
        kind = PackageKind(operation.desired["kind"])
        state = self.host.packages.query_package(kind, operation.desired["name"])
        if operation.kind == OperationKind.REMOVE:
            return state is None
        if state is None:
            return False
        if operation.kind == OperationKind.UPGRADE and state.outdated:
            return False
        constraint = operation.desired.get("version", "latest")
        if not satisfies(state.version, constraint):
            logger.warning(
                "%s: installed %s does not satisfy %s", operation.target, state.version, constraint
            )
            return False
        return True

    def rollback(self, operation: ReconciliationOperation) -> Receipt:
        # Rollback gets a single attempt
        if operation.kind in (OperationKind.ADD_TAP, OperationKind.INSTALL):
            return self._call(operation, "remove", retry=False)
        if operation.kind == OperationKind.REMOVE:
            return self._call(operation, "install", retry=False)
        raise RollbackError(
            f"Cannot downgrade {operation.target} back to {operation.previous.get('version') or 'its previous version'}",
            target=operation.target,
            cause="upgrade is irreversible",
        )
