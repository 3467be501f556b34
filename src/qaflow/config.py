"""Configuration management for qaflow.

Handles:
- .qaflow/config.yaml parsing
- Environment variable overrides
- .qaflow/ directory discovery
- Fixed locations of the per-project mirror and marker artifacts
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import yaml

from qaflow.errors import CorruptArtifact
from qaflow.utils import parse_duration


CONFIG_YAML = "config.yaml"
QAFLOW_DIR = ".qaflow"
DEFAULT_DB_NAME = "qaflow.db"
DEFAULT_STATE_DIR = ".claude"
MIRROR_FILE_NAME = "ralph-state.json"
MARKER_FILE_NAME = ".review-completed"
DEFAULT_MARKER_MAX_AGE = "30m"


@dataclass
class QaflowConfig:
    """User-facing config from config.yaml."""
    db: str = ""
    json_output: bool = False
    state_dir: str = DEFAULT_STATE_DIR
    review_marker_max_age: str = DEFAULT_MARKER_MAX_AGE
    log_level: str = "WARNING"
    log_json: bool = False

    @classmethod
    def load(cls, qaflow_dir: str | None) -> QaflowConfig:
        """Load config.yaml from the qaflow directory, then apply env overrides.

        Raises CorruptArtifact when the file is not valid YAML, is not a
        mapping, or holds a value of the wrong type.
        """
        cfg = cls()
        config_path = os.path.join(qaflow_dir, CONFIG_YAML) if qaflow_dir else None
        if config_path and os.path.exists(config_path):
            try:
                with open(config_path) as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                raise CorruptArtifact(config_path, str(e)) from e
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise CorruptArtifact(config_path, "expected a mapping of settings")
            cfg.db = _setting(config_path, data, "db", "", str)
            cfg.json_output = _setting(config_path, data, "json", False, bool)
            cfg.state_dir = _setting(config_path, data, "state-dir", DEFAULT_STATE_DIR, str)
            if not cfg.state_dir:
                raise CorruptArtifact(config_path, "state-dir must not be empty")
            cfg.review_marker_max_age = str(_setting(config_path, data, "review-marker-max-age",
                                                     DEFAULT_MARKER_MAX_AGE, (str, int)))
            cfg.log_level = _setting(config_path, data, "log-level", "WARNING", str)
            cfg.log_json = _setting(config_path, data, "log-json", False, bool)

        if os.environ.get("QF_DB"):
            cfg.db = os.environ["QF_DB"]
        if os.environ.get("QF_JSON"):
            cfg.json_output = os.environ["QF_JSON"].lower() in ("1", "true", "yes")
        if os.environ.get("QF_LOG_LEVEL"):
            cfg.log_level = os.environ["QF_LOG_LEVEL"]

        return cfg

    def save(self, qaflow_dir: str) -> None:
        """Save non-default settings to config.yaml."""
        config_path = os.path.join(qaflow_dir, CONFIG_YAML)
        data: dict[str, Any] = {}
        if self.db:
            data["db"] = self.db
        if self.json_output:
            data["json"] = self.json_output
        if self.state_dir != DEFAULT_STATE_DIR:
            data["state-dir"] = self.state_dir
        if self.review_marker_max_age != DEFAULT_MARKER_MAX_AGE:
            data["review-marker-max-age"] = self.review_marker_max_age
        if self.log_level != "WARNING":
            data["log-level"] = self.log_level
        if self.log_json:
            data["log-json"] = self.log_json

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)

    @property
    def marker_max_age(self) -> timedelta:
        """Freshness window for the review marker. Falls back to 30 minutes."""
        return parse_duration(self.review_marker_max_age) or timedelta(minutes=30)

    def mirror_path(self, project_path: str) -> str:
        return os.path.join(project_path, self.state_dir, MIRROR_FILE_NAME)

    def marker_path(self, project_path: str) -> str:
        return os.path.join(project_path, self.state_dir, MARKER_FILE_NAME)


def _setting(config_path: str, data: dict, key: str, default: Any,
             types: type | tuple[type, ...]) -> Any:
    if key not in data:
        return default
    value = data[key]
    allowed = types if isinstance(types, tuple) else (types,)
    if not isinstance(value, allowed) or (isinstance(value, bool) and bool not in allowed):
        raise CorruptArtifact(config_path, f"{key} has an invalid value: {value!r}")
    return value


def find_qaflow_dir(start: str | None = None) -> str | None:
    """Walk up from start directory to find .qaflow/ directory.

    Returns absolute path to .qaflow/ directory, or None if not found.
    """
    if start is None:
        start = os.getcwd()
    current = os.path.abspath(start)
    while True:
        candidate = os.path.join(current, QAFLOW_DIR)
        if os.path.isdir(candidate):
            return candidate
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def get_db_path(qaflow_dir: str, config: QaflowConfig | None = None) -> str:
    """Get the full path to the SQLite database."""
    env_db = os.environ.get("QF_DB")
    if env_db:
        return env_db
    if config and config.db:
        if os.path.isabs(config.db):
            return config.db
        return os.path.join(qaflow_dir, config.db)
    return os.path.join(qaflow_dir, DEFAULT_DB_NAME)

