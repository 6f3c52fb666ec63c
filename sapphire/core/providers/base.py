"""
Provider base — the contract every document type implements.

A provider owns one document type and knows nothing about the others.

    plan(document, observed)  → [ReconciliationOperation]   (pure, no mutation)
    apply(operation)          → Receipt                      (records rollback snapshot)
    verify(operation)         → bool                         (post-apply check)
    rollback(operation)       → Receipt                      (reverse a prior apply)

``apply`` and ``rollback`` may return a failed Receipt or raise a
SapphireError; the executor treats both the same way.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Sequence

from sapphire.adapters.host import HostBackend
from sapphire.core.errors import PlanningError, SapphireError
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.models.policy import ReconcilePolicy
from sapphire.core.models.receipt import Receipt
from sapphire.core.persistence.backups import BackupStore
from sapphire.core.reliability.retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState

logger = logging.getLogger(__name__)


@dataclass
class ProviderContext:
    """Run-scoped services shared by all providers."""

    host: HostBackend
    backups: BackupStore
    scratch_dir: Path
    policy: ReconcilePolicy = field(default_factory=ReconcilePolicy)
    run_id: str = ""
    scripts_dir: Path | None = None

    @property
    def retry(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.policy.retry_attempts,
            base_delay=self.policy.retry_base_delay,
        )

    def with_retry(self, fn: Callable[[], Receipt], description: str) -> Receipt:
        return call_with_retry(fn, self.retry, description=description)


def make_operation(
    kind: OperationKind,
    provider: str,
    document: str,
    target: str,
    desired: dict[str, Any] | None = None,
    previous: dict[str, Any] | None = None,
) -> ReconciliationOperation:
    """New planned operation. The diff engine assigns its final id."""
    return ReconciliationOperation(
        id="",
        kind=kind,
        provider=provider,
        document=document,
        target=target,
        desired=desired or {},
        previous=previous or {},
    )


class Provider(ABC):
    """Reconciliation logic for one document type."""

    type_tag: str = ""

    def __init__(self, context: ProviderContext):
        self.context = context

    @property
    def host(self) -> HostBackend:
        return self.context.host

    # ── Planning ────────────────────────────────────────────────

    def check(self, document: Any) -> None:
        """Document-level preconditions. Raise PlanningError to drop the document."""

    def entries(self, document: Any) -> Sequence[Any]:
        """The independently plannable units of a document."""
        return [document]

    @abstractmethod
    def plan_entry(
        self, document: Any, entry: Any, observed: ObservedState
    ) -> list[ReconciliationOperation]:
        """Operations needed to converge one entry (empty when in sync)."""

    def plan(
        self,
        document: Any,
        observed: ObservedState,
        errors: list[SapphireError] | None = None,
    ) -> list[ReconciliationOperation]:
        """Operations needed to converge ``document``.

        Entry-level planning errors drop only that entry and are
        appended to ``errors`` (raised when no list is given).
        Document-level checks run in ``ProviderRegistry.resolve_document``.
        """
        operations: list[ReconciliationOperation] = []
        for entry in self.entries(document):
            try:
                operations.extend(self.plan_entry(document, entry, observed))
            except PlanningError as e:
                if errors is None:
                    raise
                e.document = e.document or document.name
                logger.warning("%s: entry dropped: %s", document.name, e)
                errors.append(e)
        return operations

    # ── Execution ───────────────────────────────────────────────

    @abstractmethod
    def apply(self, operation: ReconciliationOperation) -> Receipt:
        """Perform the mutation, filling ``operation.previous`` first."""

    def verify(self, operation: ReconciliationOperation) -> bool:
        """Confirm the mutation took effect."""
        return True

    @abstractmethod
    def rollback(self, operation: ReconciliationOperation) -> Receipt:
        """Reverse a previously applied operation."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} type={self.type_tag!r}>"
