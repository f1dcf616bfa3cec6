from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_HOST = "go.seankhliao.com"
DEFAULT_SOURCE = "github.com/seankhliao"

CONFIG_FILE_ENV = "VANITY_CONFIG"

# Environment variable -> dotted config key.
_ENV_KEYS: dict[str, str] = {
    "VANITY_HOST": "host",
    "VANITY_SOURCE": "source",
    "VANITY_BIND": "network.bind_host",
    "VANITY_PORT": "network.port",
    "VANITY_LOG_LEVEL": "logging.level",
    "VANITY_LOG_FILE": "logging.file",
}


class NetworkConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    bind_host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    file: str | None = Field(
        default=None,
        description="Optional log file; rotated by size when set.",
    )
    max_size_mb: int = Field(
        default=10, ge=1, description="Max size of a log file in MB before rolling."
    )
    backup_count: int = Field(default=5, ge=1, description="Number of log archives to keep.")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value!r}")
        return level


class VanityConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = Field(default=DEFAULT_HOST, description="Host this server runs on")
    source: str = Field(default=DEFAULT_SOURCE, description="Where the code is hosted")
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("host", "source")
    @classmethod
    def _strip_slashes(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("must not be empty")
        return value


def _read_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config format at {path}")
    return data


def _set_dotted(target: dict[str, Any], key: str, value: Any) -> None:
    head, _, rest = key.partition(".")
    if not rest:
        target[head] = value
        return
    child = target.get(head)
    if not isinstance(child, dict):
        child = {}
        target[head] = child
    _set_dotted(child, rest, value)


def load_vanity_config(
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> VanityConfig:
    """Build the process configuration.

    Later sources win:
    - defaults
    - JSON file named by $VANITY_CONFIG
    - VANITY_* environment variables
    - ``overrides`` (dotted keys, e.g. ``network.port``), usually from flags

    Blank values are ignored. Validation is performed by Pydantic.
    """

    env = os.environ if environ is None else environ

    raw: dict[str, Any] = {}
    config_file = (env.get(CONFIG_FILE_ENV) or "").strip()
    if config_file:
        raw = _read_json(Path(config_file).expanduser())

    for name, key in _ENV_KEYS.items():
        value = (env.get(name) or "").strip()
        if value:
            _set_dotted(raw, key, value)

    for key, value in (overrides or {}).items():
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        _set_dotted(raw, key, value)

    return VanityConfig.model_validate(raw)
