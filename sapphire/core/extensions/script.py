"""
Extension scripts — reference resolution and cached validity check.

A script is usable when the file exists, parses, and defines a
top-level ``setup`` function. ``validate`` and ``rollback`` are
optional. The check never imports or runs the script; it reads the
syntax tree, and the result is cached until the file changes.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sapphire.core.errors import ExtensionNotFoundError

logger = logging.getLogger(__name__)

ENTRY_POINTS = ("setup", "validate", "rollback")
REQUIRED_ENTRY_POINT = "setup"


@dataclass(frozen=True)
class ExtensionScript:
    """A validated extension script reference."""

    path: Path
    entry_points: frozenset[str]

    def has(self, entry_point: str) -> bool:
        return entry_point in self.entry_points


_cache: dict[tuple[Path, int], ExtensionScript] = {}


def clear_cache() -> None:
    _cache.clear()


def inspect_script(path: Path) -> ExtensionScript:
    """Validate a script file and list the entry points it defines.

    Raises:
        ExtensionNotFoundError: Missing file, syntax error, or no ``setup``.
    """
    path = path.absolute()
    try:
        stat = path.stat()
    except OSError as e:
        raise ExtensionNotFoundError(
            f"Extension script not found: {path}", target=str(path), cause=str(e)
        ) from e

    key = (path, stat.st_mtime_ns)
    cached = _cache.get(key)
    if cached is not None:
        return cached

    try:
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    except (OSError, SyntaxError, ValueError) as e:
        raise ExtensionNotFoundError(
            f"Extension script {path} cannot be parsed: {e}", target=str(path), cause=str(e)
        ) from e

    defined = {
        node.name
        for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name in ENTRY_POINTS
    }
    if REQUIRED_ENTRY_POINT not in defined:
        raise ExtensionNotFoundError(
            f"Extension script {path} does not define '{REQUIRED_ENTRY_POINT}'",
            target=str(path),
            cause="missing entry point",
        )

    script = ExtensionScript(path=path, entry_points=frozenset(defined))
    _cache[key] = script
    logger.debug("Extension %s provides %s", path, ", ".join(sorted(defined)))
    return script


def resolve_script(script_path: str, search_dirs: Iterable[Path]) -> ExtensionScript:
    """Find a script by absolute path or relative to each search directory in turn.

    Raises:
        ExtensionNotFoundError: No usable script at any candidate location.
    """
    reference = Path(script_path).expanduser()
    if reference.is_absolute():
        return inspect_script(reference)

    candidates = [d / reference for d in search_dirs]
    for candidate in candidates:
        if candidate.is_file():
            return inspect_script(candidate)

    searched = ", ".join(str(c) for c in candidates) or "(no search directories)"
    raise ExtensionNotFoundError(
        f"Extension script {script_path!r} not found (searched {searched})",
        target=script_path,
    )
