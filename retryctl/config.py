import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .log import LEVEL_MAP
from .models import DEFAULTS
from .storage import config_all

ENV_LOG_LEVEL = "RETRYCTL_LOG_LEVEL"


class ExecutorConfig(BaseModel):
    """Settings handed to an Executor at construction."""

    default_queue: str = DEFAULTS["default_queue"]
    default_priority: int = DEFAULTS["default_priority"]
    poll_interval: float = Field(default=DEFAULTS["poll_interval"], gt=0)
    max_error_length: int = Field(default=DEFAULTS["max_error_length"], ge=16)
    log_level: str = DEFAULTS["log_level"]

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in LEVEL_MAP:
            raise ValueError(f"unknown log level {value!r}")
        return value


def config_from_mapping(values: Dict[str, str]) -> ExecutorConfig:
    known = {k: v for k, v in values.items() if k in ExecutorConfig.model_fields}
    try:
        return ExecutorConfig(**known)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(overrides: Optional[Dict[str, str]] = None) -> ExecutorConfig:
    """
    Defaults, then the SQLite ``config`` table, then the environment, then
    ``overrides``.
    """
    values: Dict[str, str] = {k: str(v) for k, v in DEFAULTS.items()}
    values.update(config_all())
    env_level = os.environ.get(ENV_LOG_LEVEL, "").strip()
    if env_level:
        values["log_level"] = env_level
    if overrides:
        values.update(overrides)
    return config_from_mapping(values)
