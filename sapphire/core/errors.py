"""
Error taxonomy — every failure a reconciliation run can report.

The hierarchy mirrors the run phases:

    load      → ValidationError   (document never reaches planning)
    plan      → PlanningError     (document or entry dropped, no mutation)
    apply     → ApplyError        (triggers the rollback policy)
    rollback  → RollbackError     (terminal for that operation)
    run start → RunInProgressError

Errors are surfaced in the RunReport by class name, so the names
here are part of the public contract.
"""

from __future__ import annotations


class SapphireError(Exception):
    """Base class for every error raised by sapphire."""

    def __init__(self, message: str, *, target: str = "", cause: str = "", document: str = ""):
        super().__init__(message)
        self.target = target
        self.cause = cause
        self.document = document

    @property
    def kind(self) -> str:
        return self.__class__.__name__


class ConfigError(SapphireError):
    """Raised when the sapphire configuration file is invalid."""


# ── Load ────────────────────────────────────────────────────────────


class ValidationError(SapphireError):
    """Bad input document. Never proceeds to planning."""


class SchemaError(ValidationError):
    """Missing or malformed field."""


class UnknownTypeError(ValidationError):
    """Unrecognized fragment/provider type."""


# ── Plan ────────────────────────────────────────────────────────────


class PlanningError(SapphireError):
    """Plan could not be computed for a document or an entry."""


class UnregisteredProviderError(PlanningError):
    """No provider registered for a declared fragment type."""


class ExtensionNotFoundError(PlanningError):
    """A custom fragment references a script that cannot be used."""


class SourceMissingError(PlanningError):
    """A dotfile mapping's source does not exist."""


class TypeMismatchError(PlanningError):
    """A preference declares a value_type the provider cannot handle."""


class DependencyCycleError(PlanningError):
    """Documents depend on each other in a cycle."""


# ── Apply ───────────────────────────────────────────────────────────


class ApplyError(SapphireError):
    """A mutation failed."""

    transient = False


class TransientApplyError(ApplyError):
    """Failure that may succeed on retry (network, fetch)."""

    transient = True


class DeterministicApplyError(ApplyError):
    """Failure that will fail again (package not found, bad option)."""


class VerificationError(ApplyError):
    """The mutation reported success but the post-apply check disagrees."""


class ExtensionTimeoutError(ApplyError):
    """An extension entry point did not return within the timeout."""


class ExtensionRuntimeError(ApplyError):
    """An extension raised, crashed, or returned a non-boolean."""


# ── Rollback / run ──────────────────────────────────────────────────


class RollbackError(SapphireError):
    """Reversal failed. Always terminal for the operation."""


class RunInProgressError(SapphireError):
    """Another reconciliation run holds the run lock."""


class ProtectedManifestError(SapphireError):
    """A protected manifest was targeted without an accepted override."""
