"""
Configuration loader — reads config.yml into a SapphireConfig.

Search order:
    explicit path  >  $SAPPHIRE_CONFIG  >  ~/.sapphire/config.yml  >  defaults

A missing file is not an error; an unreadable or invalid one is.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from sapphire.core.errors import ConfigError
from sapphire.core.models.policy import ReconcilePolicy

logger = logging.getLogger(__name__)

CONFIG_ENV = "SAPPHIRE_CONFIG"
CONFIG_FILE = "config.yml"
DEFAULT_HOME = Path("~/.sapphire")


class PathsConfig(BaseModel):
    """Where documents, scripts and run artifacts live."""

    model_config = ConfigDict(validate_default=True)

    manifests_dir: Path = DEFAULT_HOME / "manifests"
    fragments_dir: Path = DEFAULT_HOME / "fragments"
    scripts_dir: Path = DEFAULT_HOME / "scripts"
    backups_dir: Path = DEFAULT_HOME / "backups"
    state_dir: Path = DEFAULT_HOME / "state"

    @field_validator("*", mode="after")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return Path(os.path.expandvars(os.path.expanduser(str(value))))

    def document_dirs(self) -> list[Path]:
        return [self.manifests_dir, self.fragments_dir]


class PolicyDefaults(BaseModel):
    """Per-run defaults; CLI flags override them."""

    rollback_on_error: bool = True
    timeout: float = Field(default=300.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    backup_retention: int | None = Field(default=None, ge=1)
    prune: bool = False


class SapphireConfig(BaseModel):
    """Root configuration document."""

    mode: Literal["standalone", "managed"] = "standalone"
    paths: PathsConfig = Field(default_factory=PathsConfig)
    policy: PolicyDefaults = Field(default_factory=PolicyDefaults)
    protected_manifests: list[str] = Field(default_factory=list)

    source: Path | None = Field(default=None, exclude=True)

    def make_policy(self, **overrides: Any) -> ReconcilePolicy:
        """A run policy from the configured defaults plus explicit overrides."""
        data = self.policy.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return ReconcilePolicy.model_validate(data)


def find_config_file(path: Path | None = None) -> Path | None:
    """The config file to load, or None to use defaults.

    Raises:
        ConfigError: An explicitly named file does not exist.
    """
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}", target=str(path))
        return path

    env = os.environ.get(CONFIG_ENV)
    if env:
        candidate = Path(env).expanduser()
        if not candidate.is_file():
            raise ConfigError(f"{CONFIG_ENV} points to a missing file: {candidate}", target=str(candidate))
        return candidate

    candidate = (DEFAULT_HOME / CONFIG_FILE).expanduser()
    return candidate if candidate.is_file() else None


def load_config(path: Path | None = None) -> SapphireConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file. If None, searches the default locations.

    Raises:
        ConfigError: If the file is unreadable or invalid.
    """
    found = find_config_file(path)
    if found is None:
        logger.debug("No config file found, using defaults")
        return SapphireConfig()

    logger.debug("Loading config from %s", found)
    try:
        raw = found.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {found}: {e}", target=str(found)) from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {found}: {e}", target=str(found)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a YAML mapping in {found}, got {type(data).__name__}", target=str(found)
        )

    try:
        config = SapphireConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration in {found}: {e}", target=str(found)) from e

    config.source = found
    logger.info("Loaded config from %s (mode=%s)", found, config.mode)
    return config
