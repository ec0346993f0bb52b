"""AgentGate configuration: Pydantic model, YAML load, environment overrides."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agentgate.errors import ConfigError

ENV_DB_PATH = "AGENTGATE_DB"
ENV_LOG_LEVEL = "AGENTGATE_LOG_LEVEL"
DEFAULT_DB_FILENAME = "agentgate.db"


class GateConfig(BaseModel):
    """
    Runtime settings.

    Attributes:
        db_path: SQLite database file
        compliance_window_days: Trailing window for compliance rates
        violations_limit: Default cap on violation listings
        batch_max_workers: Thread pool size for batch evaluation
        log_level: Root log level name
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: Path = Field(default=Path(DEFAULT_DB_FILENAME))
    compliance_window_days: int = Field(default=90, gt=0)
    violations_limit: int = Field(default=50, gt=0)
    batch_max_workers: int = Field(default=8, gt=0, le=64)
    log_level: str = "WARNING"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            msg = f"Unknown log level: {v}"
            raise ValueError(msg)
        return level


def load_config(path: Path | str | None = None) -> GateConfig:
    """
    Load configuration from an optional YAML file plus the environment.

    Environment variables win over the file: AGENTGATE_DB, AGENTGATE_LOG_LEVEL.

    Raises:
        ConfigError: If the file is unreadable or values are invalid
    """
    data: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        try:
            with path.open() as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(
                config_path=str(path),
                message=f"Cannot read config {path}: {e}",
            ) from e
        if not isinstance(data, dict):
            raise ConfigError(
                config_path=str(path),
                message=f"Config {path} must be a mapping",
            )

    if os.environ.get(ENV_DB_PATH):
        data["db_path"] = os.environ[ENV_DB_PATH]
    if os.environ.get(ENV_LOG_LEVEL):
        data["log_level"] = os.environ[ENV_LOG_LEVEL]

    try:
        return GateConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            config_path=str(path or "<environment>"),
            message=f"Invalid configuration: {e}",
        ) from e
