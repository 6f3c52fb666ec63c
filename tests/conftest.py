"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from sapphire.adapters.host import HostBackend
from sapphire.adapters.mock import (
    MockContainerBackend,
    MockNetworkBackend,
    MockPackageBackend,
    MockPreferenceBackend,
)
from sapphire.core.config.loader import PathsConfig, SapphireConfig
from sapphire.core.models.policy import ReconcilePolicy
from sapphire.core.persistence.backups import BackupStore
from sapphire.core.providers.base import ProviderContext
from sapphire.core.providers.registry import ProviderRegistry, default_registry


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def mock_host() -> HostBackend:
    """Host bundle backed entirely by in-memory mocks."""
    return HostBackend(
        packages=MockPackageBackend(),
        preferences=MockPreferenceBackend(),
        network=MockNetworkBackend(),
        containers=MockContainerBackend(),
        mock=True,
    )


@pytest.fixture
def config(tmp_path: Path) -> SapphireConfig:
    """Config whose paths all live under tmp_path."""
    home = tmp_path / "sapphire"
    return SapphireConfig(
        paths=PathsConfig(
            manifests_dir=home / "manifests",
            fragments_dir=home / "fragments",
            scripts_dir=home / "scripts",
            backups_dir=home / "backups",
            state_dir=home / "state",
        )
    )


@pytest.fixture
def make_context(mock_host: HostBackend, tmp_path: Path) -> Callable[..., ProviderContext]:
    """Factory for provider contexts bound to the mock host."""

    def _make(**policy: object) -> ProviderContext:
        scratch = tmp_path / "scratch"
        scratch.mkdir(exist_ok=True)
        return ProviderContext(
            host=mock_host,
            backups=BackupStore(tmp_path / "backups"),
            scratch_dir=scratch,
            policy=ReconcilePolicy(retry_base_delay=0, **policy),
            run_id="run-test",
            scripts_dir=tmp_path / "scripts",
        )

    return _make


@pytest.fixture
def registry(make_context: Callable[..., ProviderContext]) -> ProviderRegistry:
    return default_registry(make_context())


@pytest.fixture
def write_yaml(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a dedented YAML document under tmp_path/docs and return its path."""
    docs = tmp_path / "docs"
    docs.mkdir(exist_ok=True)

    def _write(name: str, content: str) -> Path:
        path = docs / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a dedented extension script under tmp_path/scripts."""
    scripts = tmp_path / "scripts"
    scripts.mkdir(exist_ok=True)

    def _write(name: str, content: str) -> Path:
        path = scripts / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write
