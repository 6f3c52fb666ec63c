"""
Protection — which manifests routine reconciliation may not mutate.

``is_protected`` is a pure function over manifest metadata. The plan is
filtered with it before execution begins, so protection holds by
construction: a dropped operation never reaches a provider.

A future central policy source can supply its own predicate with the
same signature.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

from sapphire.core.errors import ProtectedManifestError
from sapphire.core.models.manifest import ManifestMetadata, PackageManifest
from sapphire.core.models.operation import OperationKind, ReconciliationOperation

logger = logging.getLogger(__name__)

ProtectionPredicate = Callable[[PackageManifest], bool]

# Operations that would take away from what a protected manifest declares
GUARDED_KINDS = frozenset({OperationKind.REMOVE, OperationKind.UPGRADE})


def is_protected(metadata: ManifestMetadata) -> bool:
    """Whether manifest metadata marks it protected."""
    return bool(metadata.protected)


def protection_predicate(protected_names: Iterable[str] = ()) -> ProtectionPredicate:
    """Predicate that also treats the named manifests as protected."""
    names = frozenset(protected_names)

    def predicate(manifest: PackageManifest) -> bool:
        return is_protected(manifest.metadata) or manifest.name in names

    return predicate


def check_override_allowed(mode: str, override: bool) -> None:
    """Refuse the local override when a central authority owns protection."""
    if override and mode == "managed":
        raise ProtectedManifestError(
            "Protected manifests cannot be overridden locally in managed mode",
            target="override_protected",
        )


def protected_entries(
    manifests: Sequence[PackageManifest],
    predicate: ProtectionPredicate,
) -> set[tuple[str, str]]:
    """(kind, name) of every package a protected manifest declares."""
    entries: set[tuple[str, str]] = set()
    for manifest in manifests:
        if not predicate(manifest):
            continue
        entries.update(("tap", t.name) for t in manifest.taps)
        entries.update((str(s.kind), s.name) for s in manifest.packages())
    return entries


def filter_protected(
    operations: list[ReconciliationOperation],
    manifests: Sequence[PackageManifest],
    predicate: ProtectionPredicate = lambda m: is_protected(m.metadata),
    override: bool = False,
) -> tuple[list[ReconciliationOperation], list[ReconciliationOperation]]:
    """Split a plan into (kept, dropped).

    Removals and upgrades are dropped when they originate from a
    protected manifest or target a package a protected manifest
    declares, whichever document planned them.
    """
    if override:
        return list(operations), []

    protected_docs = {m.name for m in manifests if predicate(m)}
    guarded = protected_entries(manifests, predicate)

    kept: list[ReconciliationOperation] = []
    dropped: list[ReconciliationOperation] = []
    for op in operations:
        entry = (str(op.desired.get("kind", "")), str(op.desired.get("name", "")))
        if op.kind in GUARDED_KINDS and (op.document in protected_docs or entry in guarded):
            op.note = "protected"
            dropped.append(op)
            logger.info("Dropped %s: protected manifest entry", op.label)
        else:
            kept.append(op)
    return kept, dropped
