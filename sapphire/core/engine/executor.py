"""
Engine executor — applies a Plan operation by operation.

Flow per operation:
    planned → applying → apply → verify → applied
                                        → failed

On failure with ``rollback_on_error``: every operation applied earlier
in this run is rolled back in strict reverse order, the remaining
operations are skipped, and the run ends partial. A rollback failure
leaves its operation ``failed-unrecoverable`` and is not retried.

Without rollback, the run continues, skipping only the documents that
depend on a failed one.

Providers may return a failed Receipt or raise; both are normalized
here, so nothing escapes a run as a crash.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sapphire.core.engine.diff import Plan, error_summary
from sapphire.core.errors import VerificationError
from sapphire.core.models.operation import OperationStatus, ReconciliationOperation
from sapphire.core.models.policy import ReconcilePolicy
from sapphire.core.models.receipt import Receipt
from sapphire.core.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

_MARKERS = {
    OperationStatus.APPLIED: "✓",
    OperationStatus.FAILED: "✗",
    OperationStatus.SKIPPED: "⊘",
    OperationStatus.ROLLED_BACK: "↺",
    OperationStatus.FAILED_UNRECOVERABLE: "✗✗",
}


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


@dataclass
class RunReport:
    """Per-operation final states plus every error the run hit."""

    run_id: str = ""
    started_at: str = ""
    ended_at: str = ""
    duration_ms: int = 0
    dry_run: bool = False
    documents: list[str] = field(default_factory=list)
    operations: list[ReconciliationOperation] = field(default_factory=list)
    dropped: list[ReconciliationOperation] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)
    receipts: list[Receipt] = field(default_factory=list)

    def _count(self, status: OperationStatus) -> int:
        return sum(1 for op in self.operations if op.status == status)

    @property
    def total(self) -> int:
        return len(self.operations)

    @property
    def applied(self) -> int:
        return self._count(OperationStatus.APPLIED)

    @property
    def failed(self) -> int:
        return self._count(OperationStatus.FAILED)

    @property
    def rolled_back(self) -> int:
        return self._count(OperationStatus.ROLLED_BACK)

    @property
    def skipped(self) -> int:
        return self._count(OperationStatus.SKIPPED)

    @property
    def unrecoverable(self) -> list[ReconciliationOperation]:
        return [op for op in self.operations if op.status == OperationStatus.FAILED_UNRECOVERABLE]

    @property
    def status(self) -> str:
        if self.dry_run:
            return "dry-run"
        if not self.operations and not self.errors:
            return "noop"
        trouble = self.failed or self.unrecoverable or self.errors
        if not trouble:
            return "ok"
        if self.applied or self.rolled_back or self.unrecoverable:
            return "partial"
        return "failed"

    @property
    def all_ok(self) -> bool:
        # A dry run still fails on load and planning errors
        return not self.errors and self.status in ("ok", "noop", "dry-run")

    def error_kinds(self) -> set[str]:
        kinds = {e["kind"] for e in self.errors}
        kinds |= {op.error_kind for op in self.operations if op.error_kind}
        return kinds

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_ms": self.duration_ms,
            "documents": list(self.documents),
            "total": self.total,
            "applied": self.applied,
            "failed": self.failed,
            "rolled_back": self.rolled_back,
            "skipped": self.skipped,
            "unrecoverable": [op.summary() for op in self.unrecoverable],
            "operations": [op.summary() for op in self.operations],
            "dropped": [op.summary() for op in self.dropped],
            "errors": list(self.errors),
        }


def _log(op: ReconciliationOperation) -> None:
    marker = _MARKERS.get(op.status, "·")
    if op.status == OperationStatus.FAILED_UNRECOVERABLE:
        logger.error("%s %s → %s: %s", marker, op.label, op.status, op.rollback_error)
    elif op.status == OperationStatus.ROLLED_BACK:
        logger.warning("%s %s → %s", marker, op.label, op.status)
    else:
        logger.info("%s %s → %s", marker, op.label, op.status)


def _skip(op: ReconciliationOperation, note: str) -> None:
    op.transition(OperationStatus.SKIPPED)
    op.note = note
    _log(op)


class Executor:
    """Runs a Plan through the provider registry."""

    def __init__(self, registry: ProviderRegistry, policy: ReconcilePolicy | None = None):
        self.registry = registry
        self.policy = policy or ReconcilePolicy()

    # ── Single operation ────────────────────────────────────────

    def _apply_one(self, op: ReconciliationOperation) -> Receipt:
        provider = self.registry.resolve(op.provider)
        try:
            receipt = provider.apply(op)
        except Exception as e:
            receipt = Receipt.from_exception(op.provider, e, operation_id=op.id)
        if not receipt.failed:
            try:
                if not provider.verify(op):
                    raise VerificationError(
                        f"{op.label}: change did not take effect", target=op.target
                    )
            except Exception as e:
                receipt = Receipt.from_exception(op.provider, e, operation_id=op.id)
        receipt.operation_id = op.id
        return receipt

    def _rollback_one(self, op: ReconciliationOperation) -> Receipt:
        provider = self.registry.resolve(op.provider)
        op.transition(OperationStatus.ROLLING_BACK)
        try:
            receipt = provider.rollback(op)
        except Exception as e:
            receipt = Receipt.from_exception(op.provider, e, operation_id=op.id)

        if receipt.failed:
            op.transition(OperationStatus.FAILED_UNRECOVERABLE)
            op.rollback_error = receipt.error
        else:
            op.transition(OperationStatus.ROLLED_BACK)
        _log(op)
        return receipt

    def rollback(self, applied: list[ReconciliationOperation], report: RunReport) -> None:
        """Roll back ``applied`` in strict reverse order; failures are recorded, not retried."""
        logger.warning("Rolling back %d applied operations", len(applied))
        for op in reversed(applied):
            receipt = self._rollback_one(op)
            report.receipts.append(receipt)
            if receipt.failed:
                report.errors.append({
                    "kind": receipt.error_kind or "RollbackError",
                    "document": op.document,
                    "target": op.target,
                    "message": receipt.error or "",
                    "cause": "rollback failed",
                })

    # ── Plan ────────────────────────────────────────────────────

    def execute(self, plan: Plan, run_id: str = "") -> RunReport:
        """Apply every operation in plan order (or mark all skipped on a dry run)."""
        start = time.monotonic()
        report = RunReport(
            run_id=run_id or generate_run_id(),
            started_at=_now_iso(),
            dry_run=self.policy.dry_run,
            documents=list(plan.documents),
            operations=plan.operations,
            dropped=plan.dropped,
            errors=[error_summary(e) for e in plan.errors],
        )

        if self.policy.dry_run:
            for op in plan.operations:
                _skip(op, "[dry-run]")
        else:
            self._run(plan, report)

        report.ended_at = _now_iso()
        report.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Run %s: %s (%d applied, %d failed, %d rolled back, %d skipped)",
            report.run_id, report.status, report.applied, report.failed,
            report.rolled_back, report.skipped,
        )
        return report

    def _run(self, plan: Plan, report: RunReport) -> None:
        # Documents that failed planning block their dependents too
        failed_docs: set[str] = {e.document for e in plan.errors if e.document}
        applied: list[ReconciliationOperation] = []
        aborted = False

        for op in plan.operations:
            if aborted:
                _skip(op, "run aborted after failure")
                continue

            blocked_by = [d for d in plan.dependencies.get(op.document, []) if d in failed_docs]
            if blocked_by:
                _skip(op, f"blocked by failed dependency: {', '.join(blocked_by)}")
                failed_docs.add(op.document)
                continue

            op.transition(OperationStatus.APPLYING)
            receipt = self._apply_one(op)
            report.receipts.append(receipt)

            if not receipt.failed:
                op.transition(OperationStatus.APPLIED)
                applied.append(op)
                _log(op)
                continue

            op.transition(OperationStatus.FAILED)
            op.error = receipt.error
            op.error_kind = receipt.error_kind or "ApplyError"
            failed_docs.add(op.document)
            _log(op)

            if self.policy.rollback_on_error:
                self.rollback(applied, report)
                aborted = True
