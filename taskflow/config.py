"""Settings for TaskFlow.

Settings are resolved once at process start and passed explicitly to the
store and services. Each key is looked up in the process environment first,
then in a local settings file, and a missing required key is an error.

The settings file uses dotenv syntax; ``export KEY="value"`` lines are
accepted as well, so a shell-sourceable file works unchanged.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "taskflow.env"
SETTINGS_FILE_VAR = "TASKFLOW_SETTINGS_FILE"

REQUIRED_KEYS = ("DATABASE_URL", "DATABASE_NAME")
OPTIONAL_KEYS = {
    "DB_REQUEST_TIMEOUT_SECONDS": "request_timeout",
    "DB_MAX_RETRIES": "max_retries",
    "DB_RETRY_BACKOFF_SECONDS": "retry_backoff",
    "DB_ECHO": "echo",
}


class Settings(BaseModel):
    """Connection and resilience settings for the record store."""

    database_url: str = Field(..., min_length=1)
    database_name: str = Field(..., min_length=1)
    request_timeout: Optional[float] = Field(default=10.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_backoff: float = Field(default=0.2, ge=0)
    echo: bool = False


def _read_settings_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    values = {key: value for key, value in dotenv_values(path).items() if value is not None}
    logger.info(f"Loaded settings fallback from {path}")
    return values


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    settings_file: Optional[str | Path] = None,
) -> Settings:
    """Build Settings from the environment, falling back to a local file.

    Args:
        environ: Mapping to read instead of ``os.environ`` (tests)
        settings_file: Fallback file; defaults to ``$TASKFLOW_SETTINGS_FILE``
            or ``taskflow.env`` in the working directory

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If a required key is missing everywhere or a
            value does not validate
    """
    env = os.environ if environ is None else environ
    path = Path(settings_file or env.get(SETTINGS_FILE_VAR) or DEFAULT_SETTINGS_FILE)

    file_values = _read_settings_file(path)

    def lookup(key: str) -> Optional[str]:
        return env.get(key) or file_values.get(key) or None

    missing = [key for key in REQUIRED_KEYS if lookup(key) is None]
    if missing:
        raise ConfigurationError(
            f"{' and '.join(missing)} must be set in the environment or in {path}"
        )

    data: dict[str, object] = {
        "database_url": lookup("DATABASE_URL"),
        "database_name": lookup("DATABASE_NAME"),
    }
    for key, field_name in OPTIONAL_KEYS.items():
        raw = lookup(key)
        if raw is not None:
            data[field_name] = raw.strip()

    try:
        return Settings.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e
