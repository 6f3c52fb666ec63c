"""
Observed state — a lazy, memoized view of the host for one planning pass.

Each backend is queried at most once per key. A fresh ObservedState is
built for every plan, so values never leak between runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sapphire.adapters.host import HostBackend
from sapphire.core.models.manifest import PackageKind
from sapphire.core.models.state import PackageState

logger = logging.getLogger(__name__)

_MISSING = object()


class ObservedState:
    """Current host state as seen through the backends."""

    def __init__(self, host: HostBackend):
        self.host = host
        self._packages: dict[tuple[PackageKind, str], PackageState] | None = None
        self._preferences: dict[tuple[str, str], Any] = {}
        self._dns: dict[str, list[str]] = {}
        self._images: set[str] | None = None
        self._digests: dict[Path, str | None] = {}

    # ── Packages ────────────────────────────────────────────────

    @property
    def packages(self) -> dict[tuple[PackageKind, str], PackageState]:
        """Installed packages keyed by (namespace, name).

        Raises:
            PlanningError: If the package backend cannot be queried.
        """
        if self._packages is None:
            installed = self.host.packages.query_installed()
            self._packages = {(p.kind, p.name): p for p in installed}
            logger.debug("Observed %d installed packages", len(self._packages))
        return self._packages

    def package(self, kind: PackageKind, name: str) -> PackageState | None:
        return self.packages.get((kind, name))

    def installed(self, kind: PackageKind) -> list[PackageState]:
        return [p for (k, _), p in self.packages.items() if k == kind]

    # ── Preferences / network / containers ──────────────────────

    def preference(self, domain: str, key: str) -> Any | None:
        cached = self._preferences.get((domain, key), _MISSING)
        if cached is _MISSING:
            cached = self.host.preferences.read_preference(domain, key)
            self._preferences[(domain, key)] = cached
        return cached

    def dns_servers(self, service: str) -> list[str]:
        if service not in self._dns:
            self._dns[service] = self.host.network.read_dns_servers(service)
        return self._dns[service]

    def images(self) -> set[str]:
        if self._images is None:
            self._images = self.host.containers.list_images()
        return self._images

    # ── Files ───────────────────────────────────────────────────

    def digest(self, path: Path) -> str | None:
        if path not in self._digests:
            self._digests[path] = self.host.files.digest(path)
        return self._digests[path]

    def mode(self, path: Path) -> int | None:
        return self.host.files.mode_of(path)
