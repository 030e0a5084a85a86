"""Configuration loaded from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ValidationError

PROJECT_ROOT_ENV = "PLANTRACK_PROJECT_ROOT"
DB_PATH_ENV = "PLANTRACK_DB_PATH"
LOG_LEVEL_ENV = "PLANTRACK_LOG_LEVEL"
LOG_FILE_ENV = "PLANTRACK_LOG_FILE"
MAX_CHAIN_DEPTH_ENV = "PLANTRACK_MAX_CHAIN_DEPTH"

STORAGE_DIR = ".plantrack"
DB_FILENAME = "plantrack.db"
DEFAULT_MAX_CHAIN_DEPTH = 10


@dataclass
class PlanTrackConfig:
    """Server-level settings."""
    project_root: Path
    db_path: Path
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PlanTrackConfig":
        """Load configuration; unset variables fall back to defaults under the project root."""
        env = os.environ if environ is None else environ

        root_value = env.get(PROJECT_ROOT_ENV)
        if root_value:
            project_root = Path(root_value).expanduser().resolve()
            if not project_root.exists():
                raise ValidationError(
                    f"Environment variable {PROJECT_ROOT_ENV} points to '{root_value}', which does not exist."
                )
        else:
            project_root = Path.cwd().resolve()

        db_value = env.get(DB_PATH_ENV)
        db_path = Path(db_value).expanduser() if db_value else project_root / STORAGE_DIR / DB_FILENAME

        log_level = env.get(LOG_LEVEL_ENV, "INFO").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValidationError(f"{LOG_LEVEL_ENV} must be a logging level name, got '{log_level}'")

        log_file_value = env.get(LOG_FILE_ENV)
        log_file = Path(log_file_value).expanduser() if log_file_value else None

        return cls(
            project_root=project_root,
            db_path=db_path,
            log_level=log_level,
            log_file=log_file,
            max_chain_depth=_parse_positive_int(env.get(MAX_CHAIN_DEPTH_ENV), DEFAULT_MAX_CHAIN_DEPTH),
        )


def _parse_positive_int(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValidationError(f"{MAX_CHAIN_DEPTH_ENV} must be an integer, got '{value}'")
    if parsed < 1:
        raise ValidationError(f"{MAX_CHAIN_DEPTH_ENV} must be at least 1, got {parsed}")
    return parsed
