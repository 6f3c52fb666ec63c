"""
Backend base — the capability contract between providers and the host.

Providers never call external tools directly. Each concern (packages,
preferences, network, containers) has an abstract backend here; the
concrete bindings wrap ``brew``, ``defaults``, ``networksetup`` and
``docker``, and the mocks keep state in memory for tests.

Mutations return Receipts and NEVER raise: failures are captured in
the Receipt with ``transient`` set when a retry may help. Queries
return plain values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

from sapphire.core.models.manifest import PackageKind
from sapphire.core.models.receipt import Receipt
from sapphire.core.models.state import PackageState


class Backend(ABC):
    """Common surface of every backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g., 'homebrew', 'defaults')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool exists. Fast, never raises."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class PackageBackend(Backend):
    """External package manager (taps, formulas, casks)."""

    @abstractmethod
    def query_installed(self) -> list[PackageState]:
        """Everything currently installed, across all namespaces.

        Raises:
            PlanningError: If the package manager cannot be queried.
        """

    @abstractmethod
    def install(self, kind: PackageKind, name: str, options: Sequence[str] = ()) -> Receipt:
        """Install a formula/cask, or add a tap."""

    @abstractmethod
    def remove(self, kind: PackageKind, name: str) -> Receipt:
        """Uninstall a formula/cask, or remove a tap."""

    @abstractmethod
    def upgrade(self, kind: PackageKind, name: str, options: Sequence[str] = ()) -> Receipt:
        """Upgrade an installed formula/cask."""

    def query_package(self, kind: PackageKind, name: str) -> PackageState | None:
        """One package's installed state, or None. Used to verify a mutation."""
        for state in self.query_installed():
            if state.kind == kind and state.name == name:
                return state
        return None


class PreferenceBackend(Backend):
    """Preference domain/key/value store."""

    @abstractmethod
    def read_preference(self, domain: str, key: str) -> Any | None:
        """Current value, or None when the key is not set."""

    @abstractmethod
    def write_preference(self, domain: str, key: str, value: Any, value_type: str) -> Receipt:
        """Set a typed value."""

    @abstractmethod
    def delete_preference(self, domain: str, key: str) -> Receipt:
        """Remove a key (used to roll back a key that did not exist)."""


class NetworkBackend(Backend):
    """Per-service network settings."""

    @abstractmethod
    def read_dns_servers(self, service: str) -> list[str]:
        """Configured DNS servers; empty when none are set."""

    @abstractmethod
    def write_dns_servers(self, service: str, servers: Sequence[str]) -> Receipt:
        """Replace DNS servers. An empty list clears them."""


class ContainerBackend(Backend):
    """Container image store."""

    @abstractmethod
    def list_images(self) -> set[str]:
        """Local image references as ``name:tag``."""

    @abstractmethod
    def pull_image(self, reference: str) -> Receipt:
        """Fetch an image."""

    @abstractmethod
    def remove_image(self, reference: str) -> Receipt:
        """Delete a local image."""
