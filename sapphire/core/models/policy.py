"""Run policy — how a reconciliation run behaves on failure."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ReconcilePolicy(BaseModel):
    """Options for a single ``reconcile`` call.

    Defaults come from the ``policy`` section of the configuration
    file; callers override per run.
    """

    rollback_on_error: bool = True
    dry_run: bool = False
    timeout: float = Field(default=300.0, gt=0)   # seconds, per extension / backend call

    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)

    backup_retention: int | None = Field(default=None, ge=1)
    prune: bool = False                  # remove installed packages no manifest declares
    override_protected: bool = False     # explicit administrator override
