"""
Docker backend — local image store operations.

Uses the docker CLI — never the Docker API directly.
"""

from __future__ import annotations

import logging
import re
import shutil

from sapphire.adapters.base import ContainerBackend
from sapphire.adapters.shell.command import run_command
from sapphire.core.errors import PlanningError
from sapphire.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_TRANSIENT_RE = re.compile(
    r"timeout|i/o timeout|connection reset|tls handshake|temporary failure|"
    r"too many requests|service unavailable",
    re.IGNORECASE,
)


def _is_transient(stderr: str) -> bool:
    return bool(_TRANSIENT_RE.search(stderr or ""))


class DockerBackend(ContainerBackend):
    """Docker image operations.

    Args:
        timeout: Seconds allowed per docker invocation (pulls can be slow).
    """

    def __init__(self, timeout: float = 900):
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "docker"

    def is_available(self) -> bool:
        return shutil.which("docker") is not None

    def _docker(self, *args: str) -> Receipt:
        return run_command(
            ["docker", *args],
            source=self.name,
            timeout=self.timeout,
            classify=_is_transient,
        )

    def list_images(self) -> set[str]:
        receipt = self._docker("images", "--format", "{{.Repository}}:{{.Tag}}")
        if receipt.failed:
            raise PlanningError(
                f"docker images failed: {receipt.error}",
                target="docker",
                cause=receipt.error or "",
            )
        return {line.strip() for line in receipt.output.splitlines() if line.strip()}

    def pull_image(self, reference: str) -> Receipt:
        logger.info("Pulling image %s", reference)
        return self._docker("pull", reference)

    def remove_image(self, reference: str) -> Receipt:
        return self._docker("rmi", reference)
