from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from execution_monitor.exceptions import ConfigurationError
from execution_monitor.models.cost_table import CostTable

logger = logging.getLogger(__name__)


def expand_env_vars(config_str: str) -> str:
    """
    Expand environment variables in the format ${VAR_NAME} within a YAML string.
    Skips expansion in YAML comments (lines starting with #).

    Args:
        config_str: YAML configuration string potentially containing ${VAR_NAME} placeholders

    Returns:
        YAML string with all ${VAR_NAME} placeholders expanded to environment variable values

    Raises:
        KeyError: If a referenced environment variable is not set
    """
    def replace_var(match: re.Match[str]) -> str:
        var_name = match.group(1)
        try:
            return os.environ[var_name]
        except KeyError:
            msg = f"Environment variable '{var_name}' referenced in config.yaml but not set"
            raise KeyError(msg) from None

    lines = []
    for line in config_str.split("\n"):
        if line.lstrip().startswith("#"):
            lines.append(line)
        else:
            lines.append(re.sub(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}", replace_var, line))

    return "\n".join(lines)


def load_config_from_yaml(config_path: str | None = None) -> dict[str, Any]:
    """
    Load YAML configuration file and expand environment variables.

    Args:
        config_path: Path to config.yaml. If None, uses CONFIG_PATH environment variable.
                     Defaults to /app/config.yaml if neither is set.

    Returns:
        Dictionary containing the parsed configuration

    Raises:
        ConfigurationError: If the file is missing, invalid YAML, or references unset variables
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "/app/config.yaml")

    config_file = Path(config_path)
    if not config_file.exists():
        msg = (
            f"Configuration file not found at {config_path}\n"
            f"Use CONFIG_PATH environment variable to override location."
        )
        raise ConfigurationError(msg, context={"config_file": str(config_file)})

    config_str = config_file.read_text(encoding="utf-8")

    try:
        expanded_config = expand_env_vars(config_str)
    except KeyError as e:
        msg = f"Error expanding environment variables in config.yaml: {e}"
        raise ConfigurationError(msg, context={"config_file": str(config_file)}) from None

    try:
        config_dict = yaml.safe_load(expanded_config)
    except yaml.YAMLError as e:
        msg = f"Invalid YAML in config.yaml: {e}"
        raise ConfigurationError(msg, context={"config_file": str(config_file)}) from None

    if config_dict is None:
        return {}
    if not isinstance(config_dict, dict):
        msg = "config.yaml must contain a YAML mapping/dictionary at root level"
        raise ConfigurationError(msg, context={"config_file": str(config_file)})

    return config_dict


def _get_cors_origins_from_base_url(base_url: str | None, environment: str) -> list[str]:
    """Derive CORS allowed origins from the base URL of the web client."""
    origins: list[str] = []

    if base_url:
        origins.append(base_url.rstrip("/"))

    if environment == "development":
        for origin in ("http://localhost:3000", "http://127.0.0.1:3000"):
            if origin not in origins:
                origins.append(origin)

    return origins


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
    )

    # Security
    auth_token: str  # Required
    environment: str = "development"
    base_url: str | None = None  # Web client origin, used for CORS

    cors_enabled: bool = True
    cors_allowed_origins: list[str] = Field(default=[])

    # Agent backend (list/detail/retry/export/test endpoints)
    backend_base_url: str  # Required
    backend_api_token: str | None = None
    backend_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for backend calls (export may take longer than listing)",
    )

    # Execution history view
    page_size: int = Field(default=20, gt=0)
    search_debounce_ms: int = Field(default=300, ge=0)
    orphan_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="How long a progress event for an unknown execution is buffered",
    )
    refresh_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Fallback list refresh for mounted sessions (push channel may drop events)",
    )
    session_idle_minutes: int = Field(default=60, gt=0)

    # Dry run
    cost_table: CostTable = Field(default_factory=CostTable)

    # Observability
    log_level: str = "INFO"

    @field_validator("backend_base_url")
    @classmethod
    def validate_backend_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = "backend.base_url must be an http(s) URL"
            raise ValueError(msg)
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Invalid log level: {value}"
            raise ValueError(msg)
        return level

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000

    def validate_cors_config(self) -> None:
        """Ensure all production origins use HTTPS."""
        if not self.cors_enabled or self.environment != "production":
            return

        if not self.cors_allowed_origins:
            msg = (
                "Production environment has no CORS origins configured.\n"
                "Set base_url in config.yaml (e.g., base_url: https://app.example.com)"
            )
            raise ValueError(msg)

        for origin in self.cors_allowed_origins:
            if not origin.startswith("https://"):
                msg = f"CORS origin must be HTTPS in production: {origin}"
                raise ValueError(msg)


def _section(config_dict: dict[str, Any], name: str) -> dict[str, Any]:
    value = config_dict.get(name)
    return value if isinstance(value, dict) else {}


def build_settings(config_dict: dict[str, Any]) -> Settings:
    """Flatten the nested YAML structure into Settings."""
    flat_config: dict[str, Any] = {}

    auth = _section(config_dict, "auth")
    if "token" in auth:
        flat_config["auth_token"] = auth["token"]

    backend = _section(config_dict, "backend")
    if "base_url" in backend:
        flat_config["backend_base_url"] = backend["base_url"]
    if "api_token" in backend:
        flat_config["backend_api_token"] = backend["api_token"]
    if "timeout_seconds" in backend:
        flat_config["backend_timeout_seconds"] = backend["timeout_seconds"]

    executions = _section(config_dict, "executions")
    for key in (
        "page_size",
        "search_debounce_ms",
        "orphan_grace_seconds",
        "refresh_interval_seconds",
        "session_idle_minutes",
    ):
        if key in executions:
            flat_config[key] = executions[key]

    dry_run = _section(config_dict, "dry_run")
    if dry_run:
        cost_table: dict[str, Any] = {}
        if "credits" in dry_run:
            cost_table["credits"] = dry_run["credits"]
        if "durations_seconds" in dry_run:
            cost_table["active_seconds"] = dry_run["durations_seconds"]
        if "high_usage_threshold_credits" in dry_run:
            cost_table["high_usage_threshold_credits"] = dry_run["high_usage_threshold_credits"]
        flat_config["cost_table"] = cost_table

    logging_section = _section(config_dict, "logging")
    if "level" in logging_section:
        flat_config["log_level"] = logging_section["level"]

    if "base_url" in config_dict:
        flat_config["base_url"] = config_dict["base_url"]

    environment = config_dict.get("environment", "development")
    flat_config["environment"] = environment

    cors = _section(config_dict, "cors")
    flat_config["cors_enabled"] = cors.get("enabled", True)
    if "allowed_origins" in cors:
        flat_config["cors_allowed_origins"] = cors["allowed_origins"]
    else:
        flat_config["cors_allowed_origins"] = _get_cors_origins_from_base_url(
            flat_config.get("base_url"), environment
        )

    try:
        settings_obj = Settings(**flat_config)
        settings_obj.validate_cors_config()
    except (ValidationError, ValueError) as e:
        msg = f"Configuration validation error: {e}"
        raise ConfigurationError(msg) from e
    return settings_obj


_settings: Settings | None = None


def get_settings() -> Settings:
    """Load settings from CONFIG_PATH once and cache them for the process."""
    global _settings
    if _settings is None:
        _settings = build_settings(load_config_from_yaml())
        logger.info(
            "Configuration loaded",
            extra={
                "environment": _settings.environment,
                "backend_base_url": _settings.backend_base_url,
                "page_size": _settings.page_size,
            },
        )
    return _settings


def reset_settings_cache() -> None:
    """Forget cached settings (tests and explicit reloads)."""
    global _settings
    _settings = None
