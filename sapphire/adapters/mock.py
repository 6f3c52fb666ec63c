"""
Mock backends — in-memory test doubles for every host backend.

Used in mock mode and in tests to simulate the package manager,
preferences, network and container stores without touching the host.
Each mock records its calls and can be told to fail a specific call.
"""

from __future__ import annotations

from typing import Any, Sequence

from sapphire.adapters.base import (
    ContainerBackend,
    NetworkBackend,
    PackageBackend,
    PreferenceBackend,
)
from sapphire.core.models.manifest import PackageKind
from sapphire.core.models.receipt import Receipt
from sapphire.core.models.state import PackageState


class _FailureTable:
    """Scripted failures keyed by (operation, target)."""

    def __init__(self, source: str):
        self._source = source
        self._failures: dict[tuple[str, str], list[Receipt]] = {}
        self.call_log: list[tuple[str, str]] = []

    def set_failure(
        self,
        operation: str,
        target: str,
        error: str = "Mock failure",
        transient: bool = False,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` on ``target`` fail."""
        receipt_kind = "TransientApplyError" if transient else "DeterministicApplyError"
        self._failures[(operation, target)] = [
            Receipt.failure(
                source=self._source,
                error=error,
                error_kind=receipt_kind,
                transient=transient,
            )
            for _ in range(times)
        ]

    def check(self, operation: str, target: str) -> Receipt | None:
        self.call_log.append((operation, target))
        queued = self._failures.get((operation, target))
        if queued:
            return queued.pop(0).model_copy()
        return None

    def count(self, operation: str | None = None) -> int:
        return sum(1 for op, _ in self.call_log if operation is None or op == operation)


class MockPackageBackend(PackageBackend):
    """In-memory package manager.

    By default every mutation succeeds and updates the installed set.
    ``versions`` maps a package name to the version that install and
    upgrade land on; unlisted packages install as 1.0.0.
    """

    def __init__(
        self,
        installed: Sequence[PackageState] = (),
        available: bool = True,
        versions: dict[str, str] | None = None,
    ):
        self._installed: dict[tuple[PackageKind, str], PackageState] = {
            (p.kind, p.name): p for p in installed
        }
        self._available = available
        self.versions: dict[str, str] = dict(versions or {})
        self.failures = _FailureTable(self.name)

    @property
    def name(self) -> str:
        return "mock-packages"

    @property
    def call_log(self) -> list[tuple[str, str]]:
        return self.failures.call_log

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, operation: str, name: str, **kwargs: Any) -> None:
        self.failures.set_failure(operation, name, **kwargs)

    def is_installed(self, kind: PackageKind, name: str) -> bool:
        return (kind, name) in self._installed

    def query_installed(self) -> list[PackageState]:
        return [p.model_copy() for p in self._installed.values()]

    def install(self, kind: PackageKind, name: str, options: Sequence[str] = ()) -> Receipt:
        failure = self.failures.check("install", name)
        if failure:
            return failure
        self._installed[(kind, name)] = PackageState(name=name, kind=kind, version=self.versions.get(name, "1.0.0"))
        return Receipt.success(source=self.name, output=f"[mock] installed {kind} {name}")

    def remove(self, kind: PackageKind, name: str) -> Receipt:
        failure = self.failures.check("remove", name)
        if failure:
            return failure
        self._installed.pop((kind, name), None)
        return Receipt.success(source=self.name, output=f"[mock] removed {kind} {name}")

    def upgrade(self, kind: PackageKind, name: str, options: Sequence[str] = ()) -> Receipt:
        failure = self.failures.check("upgrade", name)
        if failure:
            return failure
        current = self._installed.get((kind, name))
        if current is None:
            return Receipt.failure(
                source=self.name,
                error=f"{name} is not installed",
                error_kind="DeterministicApplyError",
            )
        current.outdated = False
        current.version = self.versions.get(name) or (f"{current.version}+1" if current.version else "1.0.1")
        return Receipt.success(source=self.name, output=f"[mock] upgraded {kind} {name}")


class MockPreferenceBackend(PreferenceBackend):
    """In-memory preference store keyed by (domain, key)."""

    def __init__(self, values: dict[tuple[str, str], Any] | None = None):
        self.values: dict[tuple[str, str], Any] = dict(values or {})
        self.failures = _FailureTable(self.name)

    @property
    def name(self) -> str:
        return "mock-defaults"

    def is_available(self) -> bool:
        return True

    def set_failure(self, operation: str, address: str, **kwargs: Any) -> None:
        self.failures.set_failure(operation, address, **kwargs)

    def read_preference(self, domain: str, key: str) -> Any | None:
        return self.values.get((domain, key))

    def write_preference(self, domain: str, key: str, value: Any, value_type: str) -> Receipt:
        failure = self.failures.check("write", f"{domain}.{key}")
        if failure:
            return failure
        self.values[(domain, key)] = value
        return Receipt.success(source=self.name, output=f"[mock] {domain} {key} = {value!r}")

    def delete_preference(self, domain: str, key: str) -> Receipt:
        failure = self.failures.check("delete", f"{domain}.{key}")
        if failure:
            return failure
        self.values.pop((domain, key), None)
        return Receipt.success(source=self.name, output=f"[mock] deleted {domain} {key}")


class MockNetworkBackend(NetworkBackend):
    def __init__(self, dns: dict[str, list[str]] | None = None):
        self.dns: dict[str, list[str]] = {k: list(v) for k, v in (dns or {}).items()}
        self.failures = _FailureTable(self.name)

    @property
    def name(self) -> str:
        return "mock-network"

    def is_available(self) -> bool:
        return True

    def read_dns_servers(self, service: str) -> list[str]:
        return list(self.dns.get(service, []))

    def write_dns_servers(self, service: str, servers: Sequence[str]) -> Receipt:
        failure = self.failures.check("write", service)
        if failure:
            return failure
        self.dns[service] = list(servers)
        return Receipt.success(source=self.name, output=f"[mock] dns {service} = {list(servers)}")


class MockContainerBackend(ContainerBackend):
    def __init__(self, images: Sequence[str] = ()):
        self.images: set[str] = set(images)
        self.failures = _FailureTable(self.name)

    @property
    def name(self) -> str:
        return "mock-docker"

    def is_available(self) -> bool:
        return True

    def list_images(self) -> set[str]:
        return set(self.images)

    def pull_image(self, reference: str) -> Receipt:
        failure = self.failures.check("pull", reference)
        if failure:
            return failure
        self.images.add(reference)
        return Receipt.success(source=self.name, output=f"[mock] pulled {reference}")

    def remove_image(self, reference: str) -> Receipt:
        failure = self.failures.check("remove", reference)
        if failure:
            return failure
        self.images.discard(reference)
        return Receipt.success(source=self.name, output=f"[mock] removed {reference}")
