"""
Custom provider — fragments reconciled by an extension script.

The script's ``validate`` doubles as the diff: when it reports true
the fragment is in sync and nothing is planned. ``setup`` is treated
as all-or-nothing: a failed setup is reported as failed, never
partially rolled back by the engine.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from sapphire.core.errors import ApplyError, DeterministicApplyError, RollbackError
from sapphire.core.extensions.runtime import ExtensionRuntime
from sapphire.core.extensions.script import ExtensionScript, resolve_script
from sapphire.core.models.fragment import CustomFragment
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.models.receipt import Receipt
from sapphire.core.providers.base import Provider, ProviderContext, make_operation

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState

logger = logging.getLogger(__name__)


class CustomProvider(Provider):
    type_tag = "custom"

    def __init__(self, context: ProviderContext, runtime: ExtensionRuntime | None = None):
        super().__init__(context)
        self.runtime = runtime or ExtensionRuntime(timeout=context.policy.timeout)

    def search_dirs(self, document: CustomFragment) -> list[Path]:
        dirs = []
        if document.source_path:
            dirs.append(Path(document.source_path).parent)
        if self.context.scripts_dir is not None:
            dirs.append(self.context.scripts_dir)
        return dirs

    def script_for(self, document: CustomFragment) -> ExtensionScript:
        return resolve_script(document.script_path, self.search_dirs(document))

    def check(self, document: CustomFragment) -> None:
        self.script_for(document)

    # ── Planning ────────────────────────────────────────────────

    def plan_entry(
        self, document: CustomFragment, entry: CustomFragment, observed: ObservedState
    ) -> list[ReconciliationOperation]:
        script = self.script_for(document)
        if script.has("validate"):
            try:
                if self.runtime.invoke(script, "validate", document.parameters):
                    return []
            except ApplyError as e:
                logger.warning("%s: validate failed during planning, assuming not in sync: %s", document.name, e)

        return [
            make_operation(
                OperationKind.RUN_EXTENSION, self.type_tag, document.name,
                f"extension {script.path.name}",
                desired={"script": str(script.path), "parameters": dict(document.parameters)},
            )
        ]

    # ── Execution ───────────────────────────────────────────────

    def _script(self, operation: ReconciliationOperation) -> ExtensionScript:
        return resolve_script(operation.desired["script"], [])

    def apply(self, operation: ReconciliationOperation) -> Receipt:
        script = self._script(operation)
        operation.previous = {"script": str(script.path)}
        if not self.runtime.invoke(script, "setup", operation.desired["parameters"]):
            raise DeterministicApplyError(
                f"Extension {script.path.name} setup reported failure",
                target=operation.target,
                cause="setup returned false",
            )
        return Receipt.success(source=self.type_tag, operation_id=operation.id, output=f"{script.path.name} setup ok")

    def verify(self, operation: ReconciliationOperation) -> bool:
        script = self._script(operation)
        if not script.has("validate"):
            return True
        return self.runtime.invoke(script, "validate", operation.desired["parameters"])

    def rollback(self, operation: ReconciliationOperation) -> Receipt:
        script = self._script(operation)
        if not script.has("rollback"):
            raise RollbackError(
                f"Extension {script.path.name} has no rollback entry point",
                target=operation.target,
                cause="missing entry point",
            )
        if not self.runtime.invoke(script, "rollback", operation.desired["parameters"]):
            raise RollbackError(
                f"Extension {script.path.name} rollback reported failure",
                target=operation.target,
                cause="rollback returned false",
            )
        return Receipt.success(source=self.type_tag, operation_id=operation.id, output=f"{script.path.name} rolled back")
