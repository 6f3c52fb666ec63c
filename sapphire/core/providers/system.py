"""
System preferences provider — ``defaults`` domain/key/value settings.

Values are compared under the declared type: ``defaults read`` reports
booleans as ``1``/``0``, so a raw ``"1"`` equals a desired ``true``.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Sequence

from sapphire.core.errors import RollbackError, TypeMismatchError
from sapphire.core.models.fragment import PREFERENCE_TYPES, PreferenceSetting, SystemFragment
from sapphire.core.models.operation import OperationKind, ReconciliationOperation
from sapphire.core.models.receipt import Receipt
from sapphire.core.providers.base import Provider, make_operation

if TYPE_CHECKING:
    from sapphire.core.engine.observed import ObservedState

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def coerce(raw: Any, value_type: str) -> Any:
    """Interpret a raw backend value under ``value_type``.

    Raises:
        ValueError: The raw value cannot be read as that type.
    """
    if value_type == "bool":
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            return bool(raw)
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if value_type == "int":
        if isinstance(raw, bool):
            return int(raw)
        return int(str(raw).strip())
    if value_type == "float":
        return float(str(raw).strip()) if not isinstance(raw, (int, float)) else float(raw)
    return str(raw)


def values_equal(raw: Any, desired: Any, value_type: str) -> bool:
    """Equality of an observed raw value and a desired value under the declared type."""
    if raw is None:
        return False
    try:
        current = coerce(raw, value_type)
    except ValueError:
        return False
    if value_type == "float":
        return math.isclose(current, float(desired), rel_tol=1e-9, abs_tol=1e-12)
    return current == desired


class SystemProvider(Provider):
    type_tag = "system"

    def entries(self, document: SystemFragment) -> Sequence[PreferenceSetting]:
        return document.preferences

    def plan_entry(
        self, document: SystemFragment, entry: PreferenceSetting, observed: ObservedState
    ) -> list[ReconciliationOperation]:
        if entry.value_type not in PREFERENCE_TYPES:
            raise TypeMismatchError(
                f"{entry.address}: unsupported value type {entry.value_type!r}",
                target=entry.address,
                cause=entry.value_type,
            )

        current = observed.preference(entry.domain, entry.key)
        if values_equal(current, entry.value, entry.value_type):
            return []

        rendered = str(entry.value).lower() if entry.value_type == "bool" else entry.value
        return [
            make_operation(
                OperationKind.SET_PREFERENCE, self.type_tag, document.name,
                f"{entry.address}={rendered}",
                desired={
                    "domain": entry.domain,
                    "key": entry.key,
                    "value": entry.value,
                    "value_type": entry.value_type,
                },
            )
        ]

    def apply(self, operation: ReconciliationOperation) -> Receipt:
        d = operation.desired
        current = self.host.preferences.read_preference(d["domain"], d["key"])
        operation.previous = {"existed": current is not None, "value": current}

        receipt = self.host.preferences.write_preference(d["domain"], d["key"], d["value"], d["value_type"])
        receipt.operation_id = operation.id
        return receipt

    def verify(self, operation: ReconciliationOperation) -> bool:
        d = operation.desired
        current = self.host.preferences.read_preference(d["domain"], d["key"])
        return values_equal(current, d["value"], d["value_type"])

    def rollback(self, operation: ReconciliationOperation) -> Receipt:
        d = operation.desired
        prefs = self.host.preferences
        if not operation.previous.get("existed"):
            receipt = prefs.delete_preference(d["domain"], d["key"])
        else:
            raw = operation.previous.get("value")
            try:
                value, value_type = coerce(raw, d["value_type"]), d["value_type"]
            except ValueError:
                # Previous value had another type; restore it verbatim
                value, value_type = str(raw), "string"
            receipt = prefs.write_preference(d["domain"], d["key"], value, value_type)

        if receipt.failed:
            raise RollbackError(
                f"Cannot restore {d['domain']}.{d['key']}: {receipt.error}",
                target=operation.target,
                cause=receipt.error or "",
            )
        receipt.operation_id = operation.id
        return receipt
