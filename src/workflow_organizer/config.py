"""Load optional organizer configuration from `.organizer/config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from .io_utils import _load_data_with_error
from .persistence import DEFAULT_AUTOSAVE_DELAY, PIPELINE_KEY, TREE_KEY

STATE_DIR_NAME = ".organizer"
CONFIG_FILE = "config.yaml"
SNAPSHOT_DIR = "snapshots"

VALID_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class OrganizerConfig:
    autosave_delay: float = DEFAULT_AUTOSAVE_DELAY
    log_level: str = "INFO"
    tree_key: str = TREE_KEY
    pipeline_key: str = PIPELINE_KEY
    confirmation: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrganizerConfig":
        """Build a config, falling back to defaults for invalid values."""
        config = cls()
        delay = data.get("autosave_delay")
        if isinstance(delay, (int, float)) and not isinstance(delay, bool) and delay >= 0:
            config.autosave_delay = float(delay)
        elif delay is not None:
            logger.warning("Ignoring invalid autosave_delay {!r}", delay)

        level = data.get("log_level")
        if isinstance(level, str) and level.upper() in VALID_LOG_LEVELS:
            config.log_level = level.upper()
        elif level is not None:
            logger.warning("Ignoring invalid log_level {!r}", level)

        keys = _get_nested(data, "keys")
        if isinstance(keys, dict):
            if isinstance(keys.get("tree"), str) and keys["tree"]:
                config.tree_key = keys["tree"]
            if isinstance(keys.get("pipeline"), str) and keys["pipeline"]:
                config.pipeline_key = keys["pipeline"]

        confirmation = _get_nested(data, "confirmation")
        if isinstance(confirmation, dict):
            config.confirmation = dict(confirmation)
        return config


def state_dir(project_dir: Path) -> Path:
    return project_dir.resolve() / STATE_DIR_NAME


def snapshot_dir(project_dir: Path) -> Path:
    return state_dir(project_dir) / SNAPSHOT_DIR


def load_organizer_config(project_dir: Path) -> tuple[OrganizerConfig, str | None]:
    """Load the optional organizer config file.

    Args:
        project_dir: Directory holding the `.organizer` state dir.

    Returns:
        A tuple of `(config, error_message)`. A missing file yields the
        defaults and no error; an unreadable one yields the defaults and the
        parse error.
    """
    path = state_dir(project_dir) / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if err:
        return OrganizerConfig(), err
    return OrganizerConfig.from_dict(data), None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur
