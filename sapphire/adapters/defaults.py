"""
Preferences backend — macOS user defaults through the ``defaults`` CLI.

``defaults read`` prints booleans as 1/0 and everything else as text;
the system provider compares values under the declared type, so the
raw string is returned as-is.
"""

from __future__ import annotations

import logging
import shutil
from typing import Any

from sapphire.adapters.base import PreferenceBackend
from sapphire.adapters.shell.command import run_command
from sapphire.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_TYPE_FLAGS = {
    "bool": "-bool",
    "int": "-int",
    "float": "-float",
    "string": "-string",
}


class DefaultsBackend(PreferenceBackend):
    def __init__(self, timeout: float = 30):
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "defaults"

    def is_available(self) -> bool:
        return shutil.which("defaults") is not None

    def read_preference(self, domain: str, key: str) -> Any | None:
        receipt = run_command(["defaults", "read", domain, key], source=self.name, timeout=self.timeout)
        if receipt.failed:
            # `defaults read` exits 1 when the domain or key does not exist
            logger.debug("defaults read %s %s: %s", domain, key, receipt.error)
            return None
        return receipt.output

    def write_preference(self, domain: str, key: str, value: Any, value_type: str) -> Receipt:
        flag = _TYPE_FLAGS.get(value_type)
        if flag is None:
            return Receipt.failure(
                source=self.name,
                error=f"Unsupported value type for defaults: {value_type}",
                error_kind="TypeMismatchError",
            )
        if value_type == "bool":
            text = "true" if value else "false"
        else:
            text = str(value)
        return run_command(
            ["defaults", "write", domain, key, flag, text],
            source=self.name,
            timeout=self.timeout,
        )

    def delete_preference(self, domain: str, key: str) -> Receipt:
        return run_command(["defaults", "delete", domain, key], source=self.name, timeout=self.timeout)
