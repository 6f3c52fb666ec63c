"""
Shell command runner — the single place backends call subprocess.

Runs an argv list (never through a shell), captures output, bounds it
with a timeout and returns a Receipt. On timeout the whole process
group is killed so nothing is left orphaned.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from typing import Callable, Sequence

from sapphire.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


def kill_process_group(proc: subprocess.Popen) -> None:
    """SIGKILL a child started with ``start_new_session=True`` and its descendants."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        proc.kill()


def run_command(
    cmd: Sequence[str],
    *,
    source: str = "shell",
    timeout: float = 300,
    input_text: str | None = None,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
    classify: Callable[[str], bool] | None = None,
) -> Receipt:
    """Run a command and capture its output.

    Args:
        cmd: argv list.
        source: Name recorded on the receipt.
        timeout: Seconds before the process group is killed.
        input_text: Data written to stdin.
        env: Full environment for the child (None inherits).
        cwd: Working directory.
        classify: Maps stderr to "is this failure transient?".

    Returns:
        Receipt. ``metadata`` holds the command, return code and stderr.
    """
    argv = list(cmd)
    logger.debug("Executing: %s", " ".join(argv))
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
            cwd=cwd,
            start_new_session=True,
        )
    except OSError as e:
        return Receipt.failure(
            source=source,
            error=f"Cannot execute {argv[0]}: {e}",
            error_kind="DeterministicApplyError",
            metadata={"command": argv},
        )

    try:
        stdout, stderr = proc.communicate(input=input_text, timeout=timeout)
    except subprocess.TimeoutExpired:
        kill_process_group(proc)
        proc.communicate()
        return Receipt.failure(
            source=source,
            error=f"Command timed out after {timeout}s",
            error_kind="TransientApplyError",
            transient=True,
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata={"command": argv, "timeout": timeout, "timed_out": True},
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout, stderr = stdout.strip(), stderr.strip()

    if proc.returncode == 0:
        return Receipt.success(
            source=source,
            output=stdout,
            duration_ms=elapsed_ms,
            metadata={"command": argv, "return_code": 0, "stderr": stderr},
        )

    transient = bool(classify and classify(stderr))
    return Receipt.failure(
        source=source,
        error=stderr or f"Command exited with code {proc.returncode}",
        error_kind="TransientApplyError" if transient else "DeterministicApplyError",
        transient=transient,
        output=stdout,
        duration_ms=elapsed_ms,
        metadata={"command": argv, "return_code": proc.returncode},
    )
