"""
Host backend bundle — the set of backends one run talks to.

The engine never constructs backends itself; it receives a
``HostBackend`` so tests (and ``--mock``) can swap every binding
for an in-memory double at once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sapphire.adapters.base import (
    ContainerBackend,
    NetworkBackend,
    PackageBackend,
    PreferenceBackend,
)
from sapphire.adapters.shell.filesystem import FilesystemBackend

logger = logging.getLogger(__name__)


@dataclass
class HostBackend:
    """Backends for every concern a provider may mutate."""

    packages: PackageBackend
    preferences: PreferenceBackend
    network: NetworkBackend
    containers: ContainerBackend
    files: FilesystemBackend = field(default_factory=FilesystemBackend)
    mock: bool = False

    def status(self) -> dict[str, dict[str, Any]]:
        """Availability of each backend, keyed by concern."""
        result: dict[str, dict[str, Any]] = {}
        for concern in ("packages", "preferences", "network", "containers", "files"):
            backend = getattr(self, concern)
            try:
                available = backend.is_available()
            except Exception:
                available = False
            result[concern] = {
                "name": backend.name,
                "available": available,
                "type": backend.__class__.__name__,
            }
        return result


def default_host(mock: bool = False, timeout: float | None = None) -> HostBackend:
    """Build the host bundle.

    Args:
        mock: Use in-memory backends instead of the real tools.
        timeout: Per-call timeout for the package manager, in seconds.
    """
    if mock:
        from sapphire.adapters.mock import (
            MockContainerBackend,
            MockNetworkBackend,
            MockPackageBackend,
            MockPreferenceBackend,
        )

        logger.debug("Using mock host backends")
        return HostBackend(
            packages=MockPackageBackend(),
            preferences=MockPreferenceBackend(),
            network=MockNetworkBackend(),
            containers=MockContainerBackend(),
            mock=True,
        )

    from sapphire.adapters.containers.docker import DockerBackend
    from sapphire.adapters.defaults import DefaultsBackend
    from sapphire.adapters.homebrew import HomebrewBackend
    from sapphire.adapters.networksetup import NetworkSetupBackend

    brew = HomebrewBackend(timeout=timeout) if timeout else HomebrewBackend()
    return HostBackend(
        packages=brew,
        preferences=DefaultsBackend(),
        network=NetworkSetupBackend(),
        containers=DockerBackend(),
    )
