"""
State file persistence — atomic read/write for HostState.

State is stored as JSON in <state_dir>/state.json. Every durable write
in sapphire (state, backup log, manifest edits) goes through
``atomic_write_text``: write to a temp file in the same directory,
then rename over the target, so a crash mid-write never leaves a
half-written file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from sapphire.core.models.state import HostState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "state.json"


def default_state_path(state_dir: Path) -> Path:
    """Get the default state file path inside a state directory."""
    return state_dir / DEFAULT_STATE_FILE


def atomic_write_text(path: Path, content: str, prefix: str = ".sapphire_") -> None:
    """Replace ``path`` with ``content`` atomically.

    Args:
        path: Target file.
        content: Full new file content.
        prefix: Temp file prefix (temp lives next to the target).
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=prefix, suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def load_state(path: Path) -> HostState:
    """Load host state from a JSON file.

    Returns:
        HostState model. If the file doesn't exist or is corrupt,
        returns a fresh state.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return HostState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = HostState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
        return HostState()
    except Exception as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
        return HostState()


def save_state(state: HostState, path: Path) -> None:
    """Save host state to a JSON file (atomic write)."""
    state.touch()
    data = state.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    try:
        atomic_write_text(path, content, prefix=".state_")
        logger.debug("State saved to %s", path)
    except Exception as e:
        logger.error("Failed to save state to %s: %s", path, e)
        raise
