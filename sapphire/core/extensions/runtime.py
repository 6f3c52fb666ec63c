"""
Extension runtime — invoke an extension entry point in a child process.

The engine and the script share nothing but a JSON parameter mapping
in and a JSON result out. The child runs an isolated interpreter with
a minimal environment, in its own process group; on timeout the whole
group is killed.

    invoke(script, entry_point, params) → bool
        ExtensionTimeoutError   no result within the timeout
        ExtensionRuntimeError   raised, crashed, or returned a non-boolean
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Mapping

from sapphire.adapters.shell.command import run_command
from sapphire.core.errors import ExtensionRuntimeError, ExtensionTimeoutError
from sapphire.core.extensions.script import ExtensionScript

logger = logging.getLogger(__name__)

HARNESS = Path(__file__).with_name("harness.py")

# Only these variables reach the child
_PASSTHROUGH_ENV = ("PATH", "HOME", "USER", "LANG", "LC_ALL", "TMPDIR")


def extension_env() -> dict[str, str]:
    env = {k: os.environ[k] for k in _PASSTHROUGH_ENV if k in os.environ}
    env.setdefault("PATH", "/usr/bin:/bin:/usr/sbin:/sbin")
    env["SAPPHIRE_EXTENSION"] = "1"
    return env


def _parse_result(stdout: str) -> dict[str, Any] | None:
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        return None
    try:
        payload = json.loads(lines[-1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


class ExtensionRuntime:
    """Runs extension entry points with a bounded wall-clock time.

    Args:
        timeout: Default seconds per invocation.
        python: Interpreter for the child (default: the current one).
    """

    def __init__(self, timeout: float = 300.0, python: str | None = None):
        self.timeout = timeout
        self.python = python or sys.executable

    def invoke(
        self,
        script: ExtensionScript,
        entry_point: str,
        params: Mapping[str, Any],
        timeout: float | None = None,
    ) -> bool:
        """Call ``entry_point(params)`` in the script and return its boolean result."""
        limit = timeout if timeout is not None else self.timeout
        target = f"{script.path.name}:{entry_point}"

        if not script.has(entry_point):
            raise ExtensionRuntimeError(f"{script.path} has no entry point {entry_point!r}", target=target)

        logger.debug("Invoking extension %s (timeout %.1fs)", target, limit)
        receipt = run_command(
            [self.python, "-I", str(HARNESS), str(script.path), entry_point],
            source="extension",
            timeout=limit,
            input_text=json.dumps(dict(params)),
            env=extension_env(),
            cwd=str(script.path.parent),
        )

        if receipt.metadata.get("timed_out"):
            logger.warning("Extension %s timed out after %.1fs", target, limit)
            raise ExtensionTimeoutError(
                f"Extension {target} did not finish within {limit}s",
                target=target,
                cause="timeout",
            )

        payload = _parse_result(receipt.output)
        if receipt.failed or payload is None:
            raise ExtensionRuntimeError(
                f"Extension {target} crashed: {receipt.error or 'no result'}",
                target=target,
                cause=receipt.error or "",
            )

        if "error" in payload:
            raise ExtensionRuntimeError(
                f"Extension {target} raised {payload.get('type', 'Exception')}: {payload['error']}",
                target=target,
                cause=str(payload.get("type", "")),
            )

        result = payload.get("result")
        if not isinstance(result, bool):
            raise ExtensionRuntimeError(
                f"Extension {target} returned {result!r}, expected true or false",
                target=target,
                cause="non-boolean result",
            )
        return result
