"""
Homebrew backend — taps, formulas and casks through the ``brew`` CLI.

Argument formatting stays here; nothing above this module knows
brew's command line.
"""

from __future__ import annotations

import logging
import re
import shutil
from typing import Sequence

from sapphire.adapters.base import PackageBackend
from sapphire.adapters.shell.command import run_command
from sapphire.core.errors import PlanningError
from sapphire.core.models.manifest import PackageKind
from sapphire.core.models.receipt import Receipt
from sapphire.core.models.state import PackageState

logger = logging.getLogger(__name__)

# stderr fragments that indicate a network or fetch problem
_TRANSIENT_PATTERNS = (
    r"could not resolve host",
    r"failed to connect",
    r"connection (reset|refused|timed out)",
    r"operation timed out",
    r"curl: \(\d+\)",
    r"download failed",
    r"failed to download",
    r"fetch failed",
    r"temporary failure in name resolution",
    r"ssl_error",
    r"http/2 stream \d+ was not closed cleanly",
    r"another active homebrew update process",
    r"has already locked",
)
_TRANSIENT_RE = re.compile("|".join(_TRANSIENT_PATTERNS), re.IGNORECASE)


def is_transient_brew_error(stderr: str) -> bool:
    """Whether a brew failure is worth retrying."""
    return bool(_TRANSIENT_RE.search(stderr or ""))


def _parse_versions(output: str) -> dict[str, str]:
    """``brew list --versions`` lines: 'name 1.0 1.1' → {'name': '1.1'}."""
    versions: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split()
        if parts:
            versions[parts[0]] = parts[-1] if len(parts) > 1 else ""
    return versions


class HomebrewBackend(PackageBackend):
    """Homebrew bindings.

    Args:
        brew_path: Explicit brew executable (default: found on PATH).
        timeout: Seconds allowed per brew invocation.
    """

    def __init__(self, brew_path: str | None = None, timeout: float = 1800):
        self._brew = brew_path or shutil.which("brew") or "brew"
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "homebrew"

    def is_available(self) -> bool:
        return shutil.which(self._brew) is not None

    def _brew_cmd(self, *args: str) -> Receipt:
        return run_command(
            [self._brew, *args],
            source=self.name,
            timeout=self.timeout,
            classify=is_transient_brew_error,
        )

    def _query(self, *args: str) -> str:
        receipt = self._brew_cmd(*args)
        if receipt.failed:
            raise PlanningError(
                f"brew {' '.join(args)} failed: {receipt.error}",
                target="homebrew",
                cause=receipt.error or "",
            )
        return receipt.output

    # ── Queries ─────────────────────────────────────────────────

    def query_installed(self) -> list[PackageState]:
        formulas = _parse_versions(self._query("list", "--formula", "--versions"))
        casks = _parse_versions(self._query("list", "--cask", "--versions"))
        taps = self._query("tap").split()
        outdated_formulas = set(self._query("outdated", "--formula", "--quiet").split())
        outdated_casks = set(self._query("outdated", "--cask", "--quiet").split())
        leaves = set(self._query("leaves", "--installed-on-request").split())

        installed = [PackageState(name=t, kind=PackageKind.TAP) for t in taps]
        installed += [
            PackageState(
                name=name,
                kind=PackageKind.FORMULA,
                version=version,
                outdated=name in outdated_formulas,
                dependency=name not in leaves,
            )
            for name, version in formulas.items()
        ]
        installed += [
            PackageState(
                name=name,
                kind=PackageKind.CASK,
                version=version,
                outdated=name in outdated_casks,
            )
            for name, version in casks.items()
        ]
        logger.debug(
            "brew reports %d taps, %d formulas, %d casks",
            len(taps), len(formulas), len(casks),
        )
        return installed

    def query_package(self, kind: PackageKind, name: str) -> PackageState | None:
        if kind == PackageKind.TAP:
            taps = self._query("tap").split()
            return PackageState(name=name, kind=kind) if name in taps else None

        flag = "--cask" if kind == PackageKind.CASK else "--formula"
        receipt = self._brew_cmd("list", flag, "--versions", name)
        if receipt.failed or not receipt.output:
            return None
        version = _parse_versions(receipt.output).get(name, "")
        return PackageState(name=name, kind=kind, version=version)

    # ── Mutations ───────────────────────────────────────────────

    def install(self, kind: PackageKind, name: str, options: Sequence[str] = ()) -> Receipt:
        if kind == PackageKind.TAP:
            return self._brew_cmd("tap", name)
        if kind == PackageKind.CASK:
            return self._brew_cmd("install", "--cask", name, *options)
        return self._brew_cmd("install", name, *options)

    def remove(self, kind: PackageKind, name: str) -> Receipt:
        if kind == PackageKind.TAP:
            return self._brew_cmd("untap", name)
        if kind == PackageKind.CASK:
            return self._brew_cmd("uninstall", "--cask", name)
        return self._brew_cmd("uninstall", name)

    def upgrade(self, kind: PackageKind, name: str, options: Sequence[str] = ()) -> Receipt:
        if kind == PackageKind.CASK:
            return self._brew_cmd("upgrade", "--cask", name, *options)
        return self._brew_cmd("upgrade", name, *options)
