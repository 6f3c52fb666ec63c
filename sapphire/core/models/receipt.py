"""
Receipt model — the result contract between the engine and adapters.

Adapters and providers report outcomes as Receipts. A failed Receipt
carries the error message, the error class name and whether the
failure is worth retrying. Adapters never raise.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Result of a backend call or a provider step."""

    source: str                      # adapter or provider name
    operation_id: str = ""
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None
    error_kind: str | None = None    # exception class name
    transient: bool = False          # safe to retry

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the call succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the call failed."""
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        source: str,
        operation_id: str = "",
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            source=source,
            operation_id=operation_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        source: str,
        error: str,
        operation_id: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            source=source,
            operation_id=operation_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        source: str,
        operation_id: str = "",
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            source=source,
            operation_id=operation_id,
            status="skipped",
            output=reason,
            **kwargs,
        )

    @classmethod
    def from_exception(
        cls,
        source: str,
        exc: BaseException,
        operation_id: str = "",
    ) -> Receipt:
        """Create a failure receipt that names the exception class."""
        return cls.failure(
            source=source,
            operation_id=operation_id,
            error=str(exc) or exc.__class__.__name__,
            error_kind=exc.__class__.__name__,
            transient=bool(getattr(exc, "transient", False)),
        )
