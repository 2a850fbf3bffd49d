"""
Configuration loading for servicegen.

Configuration values are resolved using the following precedence:

1. Explicit arguments passed to `load_config`
2. Environment variables (e.g., SERVICEGEN_RUNTIME_MODULE)
3. `servicegen.toml` (or `[tool.servicegen]` in `pyproject.toml`) if present
4. Built-in defaults
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from servicegen.exceptions import ConfigError, InvalidLogLevelError
from servicegen.models import LogLevel

__all__ = [
    "ConfigError",
    "ServicegenConfig",
    "ToolLoggingConfig",
    "load_config",
]


DEFAULT_CONFIG_FILE = Path("servicegen.toml")
PYPROJECT_FILE = Path("pyproject.toml")

_DOTTED_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ToolLoggingConfig(BaseModel):
    """Logging of the transformer itself (not of generated programs)."""

    level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = Field(
        "INFO", description="Log level for servicegen's own events"
    )
    format: Literal["console", "json"] = Field("console", description="Log renderer")

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class ServicegenConfig(BaseModel):
    """Top-level configuration for the entry-point transformer."""

    runtime_module: str = Field(
        "service_runtime",
        description="Module providing start/get_resource/Level/... to generated code",
        min_length=1,
    )
    entry_decorator: str = Field(
        "main",
        description="Decorator attribute marking the entry point (`@<runtime>.<decorator>`)",
        min_length=1,
    )
    log_level: Optional[LogLevel] = Field(
        None,
        description="Default log level when the decorator does not set one",
    )
    emit_main_guard: bool = Field(
        True,
        description="Append `if __name__ == \"__main__\": main()` to generated modules",
    )
    logging: ToolLoggingConfig = Field(default_factory=ToolLoggingConfig)

    model_config = ConfigDict(frozen=True)

    @field_validator("runtime_module")
    @classmethod
    def _check_runtime_module(cls, value: str) -> str:
        value = value.strip()
        if not _DOTTED_IDENTIFIER.match(value):
            raise ValueError(f"runtime_module must be a dotted module path, got {value!r}")
        return value

    @field_validator("entry_decorator")
    @classmethod
    def _check_entry_decorator(cls, value: str) -> str:
        value = value.strip()
        if not _IDENTIFIER.match(value):
            raise ValueError(f"entry_decorator must be an identifier, got {value!r}")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: Any) -> Any:
        if value is None or isinstance(value, LogLevel):
            return value
        try:
            return LogLevel.parse(value)
        except InvalidLogLevelError as exc:
            raise ValueError(exc.message) from exc


def load_config(
    config_path: Optional[Path | str] = None,
    **overrides: Any,
) -> ServicegenConfig:
    """
    Load servicegen configuration from arguments/environment/file/defaults.

    Args:
        config_path: Optional explicit path to a `servicegen.toml` file.
        overrides: Explicit values; these win over every other source.

    Returns:
        ServicegenConfig populated with the resolved values.

    Raises:
        ConfigError: if the provided config path does not exist, parsing
            fails or a value does not validate.
    """

    raw_data = _load_toml_data(config_path)
    logging_data = raw_data.get("logging", {}) or {}

    data: Dict[str, Any] = {
        "runtime_module": _env_or_value(
            "SERVICEGEN_RUNTIME_MODULE",
            raw_data.get("runtime_module"),
            ServicegenConfig.model_fields["runtime_module"].default,
        ),
        "entry_decorator": _env_or_value(
            "SERVICEGEN_ENTRY_DECORATOR",
            raw_data.get("entry_decorator"),
            ServicegenConfig.model_fields["entry_decorator"].default,
        ),
        "log_level": os.getenv("SERVICEGEN_LOG_LEVEL") or raw_data.get("log_level"),
        "emit_main_guard": _env_bool(
            "SERVICEGEN_EMIT_MAIN_GUARD",
            raw_data.get("emit_main_guard", True),
        ),
        "logging": {
            "level": _env_or_value(
                "SERVICEGEN_TOOL_LOG_LEVEL",
                logging_data.get("level"),
                "INFO",
            ),
            "format": _env_or_value(
                "SERVICEGEN_TOOL_LOG_FORMAT",
                logging_data.get("format"),
                "console",
            ),
        },
    }

    for key, value in overrides.items():
        if value is None:
            continue
        if key == "logging" and isinstance(value, dict):
            data["logging"].update({k: v for k, v in value.items() if v is not None})
        else:
            data[key] = value

    try:
        return ServicegenConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid servicegen configuration: {exc}") from exc


def _load_toml_data(config_path: Optional[Path | str]) -> Dict[str, Any]:
    """Load data from a TOML file if one can be resolved."""

    resolved = _resolve_config_path(config_path)
    if resolved is None:
        return {}

    if not resolved.exists():
        raise ConfigError(f"Configuration file not found: {resolved}")

    try:
        with resolved.open("rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {resolved}: {exc}") from exc

    if resolved.name == PYPROJECT_FILE.name:
        data = data.get("tool", {}).get("servicegen", {})
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration in {resolved} must be a table")
    return data


def _resolve_config_path(config_path: Optional[Path | str]) -> Optional[Path]:
    """Resolve configuration path with environment fallback."""

    if config_path:
        return Path(config_path)

    env_path = os.getenv("SERVICEGEN_CONFIG_FILE")
    if env_path:
        return Path(env_path)

    if DEFAULT_CONFIG_FILE.exists():
        return DEFAULT_CONFIG_FILE

    if PYPROJECT_FILE.exists() and _has_tool_table(PYPROJECT_FILE):
        return PYPROJECT_FILE
    return None


def _has_tool_table(path: Path) -> bool:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError):
        return False
    return "servicegen" in data.get("tool", {})


def _env_bool(env_var: str, default: Any) -> bool:
    """Resolve boolean from environment with fallback."""

    value = os.getenv(env_var)
    if value is None:
        return bool(default)
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Invalid boolean for {env_var}: {value}")


def _env_or_value(env_var: str, value: Any, default: Any) -> str:
    """Return environment variable value if set, otherwise fallback to provided/default values."""

    env_value = os.getenv(env_var)
    if env_value is not None:
        return env_value
    if value is not None:
        return str(value)
    return str(default)
