"""
Reconcile use case — the single entry point from documents to a RunReport.

    reconcile(documents, policy) → RunReport

Flow:
    lock → observe → diff → protection filter → apply/rollback → audit + state → unlock

Validation errors from loading can be passed in so they appear in the
report next to planning and apply errors.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Sequence

from sapphire.adapters.host import HostBackend
from sapphire.core.config.loader import SapphireConfig
from sapphire.core.engine.diff import Plan, build_plan
from sapphire.core.engine.executor import Executor, RunReport, generate_run_id
from sapphire.core.engine.lock import RunLock
from sapphire.core.engine.observed import ObservedState
from sapphire.core.engine.protection import (
    ProtectionPredicate,
    check_override_allowed,
    protection_predicate,
)
from sapphire.core.errors import SapphireError
from sapphire.core.models import Document, ReconcilePolicy
from sapphire.core.models.state import RunRecord
from sapphire.core.observability.logging_config import run_context
from sapphire.core.persistence.audit import AuditEntry, AuditWriter
from sapphire.core.persistence.backups import BackupStore
from sapphire.core.persistence.state_file import default_state_path, load_state, save_state
from sapphire.core.providers.base import ProviderContext
from sapphire.core.providers.registry import ProviderRegistry, default_registry

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[ProviderContext], ProviderRegistry]


def _context(
    host: HostBackend,
    config: SapphireConfig,
    policy: ReconcilePolicy,
    run_id: str,
    scratch_dir: Path,
) -> ProviderContext:
    return ProviderContext(
        host=host,
        backups=BackupStore(config.paths.backups_dir),
        scratch_dir=scratch_dir,
        policy=policy,
        run_id=run_id,
        scripts_dir=config.paths.scripts_dir,
    )


def _plan(
    documents: Sequence[Document],
    registry: ProviderRegistry,
    host: HostBackend,
    config: SapphireConfig,
    policy: ReconcilePolicy,
    protection: ProtectionPredicate | None,
    load_errors: Iterable[SapphireError],
) -> Plan:
    plan = build_plan(
        documents,
        ObservedState(host),
        registry,
        prune=policy.prune,
        protection=protection or protection_predicate(config.protected_manifests),
        override_protected=policy.override_protected,
    )
    plan.errors[:0] = list(load_errors)
    return plan


def plan_documents(
    documents: Sequence[Document],
    *,
    host: HostBackend,
    config: SapphireConfig | None = None,
    policy: ReconcilePolicy | None = None,
    protection: ProtectionPredicate | None = None,
    load_errors: Iterable[SapphireError] = (),
    registry_factory: RegistryFactory = default_registry,
) -> Plan:
    """Compute the plan without mutating anything and without taking the run lock."""
    config = config or SapphireConfig()
    policy = policy or config.make_policy()
    with tempfile.TemporaryDirectory(prefix="sapphire-plan-") as scratch:
        registry = registry_factory(_context(host, config, policy, "", Path(scratch)))
        return _plan(documents, registry, host, config, policy, protection, load_errors)


def _persist(report: RunReport, config: SapphireConfig) -> None:
    state_dir = config.paths.state_dir
    AuditWriter(state_dir=state_dir).write(
        AuditEntry(
            run_id=report.run_id,
            mode=config.mode,
            dry_run=report.dry_run,
            documents=report.documents,
            status=report.status,
            operations_total=report.total,
            operations_applied=report.applied,
            operations_failed=report.failed,
            operations_rolled_back=report.rolled_back,
            unrecoverable=len(report.unrecoverable),
            duration_ms=report.duration_ms,
            errors=[f"{e['kind']}: {e['message']}" for e in report.errors],
            operations=[op.summary() for op in report.operations],
        )
    )

    path = default_state_path(state_dir)
    state = load_state(path)
    state.mode = config.mode
    state.last_run = RunRecord(
        run_id=report.run_id,
        started_at=report.started_at,
        ended_at=report.ended_at,
        status=report.status,
        operations_total=report.total,
        operations_applied=report.applied,
        operations_failed=report.failed,
        operations_rolled_back=report.rolled_back,
        unrecoverable=len(report.unrecoverable),
    )
    try:
        save_state(state, path)
    except OSError as e:
        logger.error("Run %s finished but state was not saved: %s", report.run_id, e)


def reconcile(
    documents: Sequence[Document],
    policy: ReconcilePolicy | None = None,
    *,
    host: HostBackend,
    config: SapphireConfig | None = None,
    protection: ProtectionPredicate | None = None,
    load_errors: Iterable[SapphireError] = (),
    registry_factory: RegistryFactory = default_registry,
) -> RunReport:
    """Converge the host towards ``documents``.

    Args:
        documents: Loaded manifests and fragments.
        policy: Run policy (default: the configured policy defaults).
        host: Backends to observe and mutate through.
        config: Paths, mode and protected manifest names.
        protection: Protection predicate (default: metadata flag or configured name).
        load_errors: Validation errors to include in the report.
        registry_factory: Builds the provider registry for this run.

    Returns:
        RunReport with every operation's final state.

    Raises:
        RunInProgressError: Another run holds the lock.
        ProtectedManifestError: Override requested in managed mode.
    """
    config = config or SapphireConfig()
    policy = policy or config.make_policy()
    check_override_allowed(config.mode, policy.override_protected)

    run_id = generate_run_id()
    state_dir = config.paths.state_dir
    state_dir.mkdir(parents=True, exist_ok=True)

    with run_context(run_id), RunLock(state_dir, run_id):
        logger.info("Run %s: %d documents (dry_run=%s)", run_id, len(documents), policy.dry_run)
        with tempfile.TemporaryDirectory(prefix=f"{run_id}-", dir=state_dir) as scratch:
            registry = registry_factory(_context(host, config, policy, run_id, Path(scratch)))
            plan = _plan(documents, registry, host, config, policy, protection, load_errors)
            report = Executor(registry, policy).execute(plan, run_id=run_id)
        _persist(report, config)

    return report
