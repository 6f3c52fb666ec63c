"""
Diff engine — desired documents vs. observed state → ordered Plan.

Flow:
    order documents → per document: resolve provider → plan → number ops
    → (prune) orphan removals → protection filter

Package ordering is taps, then formulas, then casks. Formulas and
casks are separate namespaces and never merged. Fragment ordering is
whatever the provider emits; providers place a backup prune after the
write that creates the backup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from sapphire.core.engine.protection import ProtectionPredicate, filter_protected, is_protected
from sapphire.core.engine.versions import satisfies
from sapphire.core.errors import DependencyCycleError, PlanningError, SapphireError
from sapphire.core.models.manifest import DesiredState, PackageKind, PackageManifest
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.providers.base import make_operation

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState
    from sapphire.core.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

PACKAGES = "packages"
PRUNE_DOCUMENT = "(prune)"


@dataclass
class Plan:
    """Ordered operations for one run, plus what planning rejected."""

    operations: list[ReconciliationOperation] = field(default_factory=list)
    errors: list[SapphireError] = field(default_factory=list)
    dropped: list[ReconciliationOperation] = field(default_factory=list)
    documents: list[str] = field(default_factory=list)
    dependencies: dict[str, list[str]] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def to_dict(self) -> dict[str, Any]:
        return {
            "documents": list(self.documents),
            "operations": [op.summary() for op in self.operations],
            "dropped": [op.summary() for op in self.dropped],
            "errors": [error_summary(e) for e in self.errors],
        }


def error_summary(error: SapphireError, document: str = "") -> dict[str, str]:
    """Report view of an error: kind, target, message, cause."""
    return {
        "kind": error.kind,
        "document": document or error.document,
        "target": error.target,
        "message": str(error),
        "cause": error.cause,
    }


def _number(operations: list[ReconciliationOperation], document: str) -> None:
    for index, op in enumerate(operations, start=1):
        op.id = f"{document}#{index}"


# ── Packages ────────────────────────────────────────────────────────


def diff_manifest(manifest: PackageManifest, observed: ObservedState) -> list[ReconciliationOperation]:
    """Classify every manifest entry as satisfied, install, upgrade or remove."""
    doc = manifest.name
    operations: list[ReconciliationOperation] = []

    for tap in manifest.taps:
        if observed.package(PackageKind.TAP, tap.name) is None:
            operations.append(
                make_operation(
                    OperationKind.ADD_TAP, PACKAGES, doc, f"tap {tap.name}",
                    desired={"kind": "tap", "name": tap.name},
                )
            )

    for spec in manifest.packages():
        installed = observed.package(spec.kind, spec.name)
        desired = {
            "kind": str(spec.kind),
            "name": spec.name,
            "version": spec.version_constraint,
            "options": list(spec.options),
        }
        target = f"{spec.kind} {spec.name}"

        if spec.state == DesiredState.ABSENT:
            if installed is not None:
                operations.append(
                    make_operation(
                        OperationKind.REMOVE, PACKAGES, doc, target, desired=desired,
                        previous={"version": installed.version},
                    )
                )
            continue

        if installed is None:
            operations.append(make_operation(OperationKind.INSTALL, PACKAGES, doc, target, desired=desired))
        elif not satisfies(installed.version, spec.version_constraint):
            logger.debug(
                "%s %s: installed %s does not satisfy %s",
                spec.kind, spec.name, installed.version, spec.version_constraint,
            )
            operations.append(
                make_operation(
                    OperationKind.UPGRADE, PACKAGES, doc, target, desired=desired,
                    previous={"version": installed.version},
                )
            )
        elif spec.state == DesiredState.LATEST and installed.outdated:
            operations.append(
                make_operation(
                    OperationKind.UPGRADE, PACKAGES, doc, target, desired=desired,
                    previous={"version": installed.version},
                )
            )

    return operations


def diff_orphans(
    manifests: Sequence[PackageManifest], observed: ObservedState
) -> list[ReconciliationOperation]:
    """Removals for top-level packages no loaded manifest declares."""
    operations: list[ReconciliationOperation] = []
    for kind in (PackageKind.FORMULA, PackageKind.CASK):
        declared: set[str] = set()
        for manifest in manifests:
            declared |= manifest.declared(kind)
        for state in sorted(observed.installed(kind), key=lambda s: s.name):
            if state.dependency or state.name in declared:
                continue
            operations.append(
                make_operation(
                    OperationKind.REMOVE, PACKAGES, PRUNE_DOCUMENT, f"{kind} {state.name}",
                    desired={"kind": str(kind), "name": state.name, "options": []},
                    previous={"version": state.version},
                )
            )
    _number(operations, PRUNE_DOCUMENT)
    return operations


# ── Document ordering ───────────────────────────────────────────────


def order_documents(documents: Sequence[Any]) -> tuple[list[Any], list[SapphireError]]:
    """Manifests first, then a stable topological order on ``depends_on``.

    Returns:
        (ordered documents, errors). Documents on a dependency cycle, or
        depending (directly or not) on a document that is not loaded,
        are left out and reported.
    """
    errors: list[SapphireError] = []
    available = {d.name for d in documents}

    # Drop documents whose dependencies were never loaded, transitively
    changed = True
    while changed:
        changed = False
        for doc in documents:
            if doc.name not in available:
                continue
            missing = [dep for dep in doc.depends_on if dep not in available]
            if missing:
                available.discard(doc.name)
                changed = True
                errors.append(
                    PlanningError(
                        f"{doc.name}: depends on documents that are not loaded: {', '.join(missing)}",
                        target=", ".join(missing),
                        document=doc.name,
                    )
                )

    ordered: list[Any] = []
    placed: set[str] = set()
    remaining = sorted(
        (d for d in documents if d.name in available),
        key=lambda d: 0 if isinstance(d, PackageManifest) else 1,
    )

    while remaining:
        ready = next((d for d in remaining if all(dep in placed for dep in d.depends_on)), None)
        if ready is None:
            names = ", ".join(d.name for d in remaining)
            errors.extend(
                DependencyCycleError(
                    f"{doc.name}: dependency cycle among {names}",
                    target=doc.name,
                    document=doc.name,
                )
                for doc in remaining
            )
            break
        ordered.append(ready)
        placed.add(ready.name)
        remaining.remove(ready)

    return ordered, errors


# ── Plan ────────────────────────────────────────────────────────────


def diff(
    document: Any,
    observed: ObservedState,
    registry: ProviderRegistry,
) -> Plan:
    """Plan for a single document.

    Document-level planning errors leave the plan empty; entry-level
    errors drop only their entry. Both are listed in ``plan.errors``.
    """
    plan = Plan(documents=[document.name])
    try:
        provider = registry.resolve_document(document)
        operations = provider.plan(document, observed, errors=plan.errors)
    except PlanningError as e:
        e.document = e.document or document.name
        logger.warning("%s: not planned: %s", document.name, e)
        plan.errors.append(e)
        return plan

    _number(operations, document.name)
    plan.operations = operations
    return plan


def build_plan(
    documents: Iterable[Any],
    observed: ObservedState,
    registry: ProviderRegistry,
    *,
    prune: bool = False,
    protection: ProtectionPredicate | None = None,
    override_protected: bool = False,
) -> Plan:
    """Plan for a batch of documents, ordered and protection-filtered."""
    documents = list(documents)
    ordered, errors = order_documents(documents)
    manifests = [d for d in documents if isinstance(d, PackageManifest)]

    plan = Plan(errors=errors)
    for document in ordered:
        sub = diff(document, observed, registry)
        plan.documents.append(document.name)
        plan.dependencies[document.name] = list(document.depends_on)
        plan.operations.extend(sub.operations)
        plan.errors.extend(sub.errors)

    if prune:
        try:
            orphans = diff_orphans(manifests, observed)
        except PlanningError as e:
            plan.errors.append(e)
        else:
            if orphans:
                plan.documents.append(PRUNE_DOCUMENT)
                plan.dependencies[PRUNE_DOCUMENT] = [m.name for m in manifests]
            plan.operations.extend(orphans)

    predicate = protection or (lambda m: is_protected(m.metadata))
    plan.operations, plan.dropped = filter_protected(
        plan.operations, manifests, predicate, override=override_protected
    )
    logger.info(
        "Planned %d operations across %d documents (%d dropped, %d errors)",
        len(plan.operations), len(plan.documents), len(plan.dropped), len(plan.errors),
    )
    return plan
