"""Configuration management for plugin telemetry.

This module handles configuration from explicit arguments, environment
variables, config files, and package defaults following the priority order:
1. Explicit keyword overrides passed to load_config() (highest priority)
2. Environment variables
3. Configuration file (~/.config/plugin-telemetry/telemetry.json)
4. Package defaults (lowest priority)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class ConfigurationError(ValueError):
    """Raised when the telemetry client is configured with invalid values."""


class ReportInterval(str, Enum):
    """How often queued events are flushed to the analytics endpoint."""

    HOURLY = "hourly"
    TWICEDAILY = "twicedaily"
    DAILY = "daily"
    WEEKLY = "weekly"

    @property
    def seconds(self) -> int:
        """Length of the interval in seconds."""
        return _INTERVAL_SECONDS[self]


_INTERVAL_SECONDS = {
    ReportInterval.HOURLY: 60 * 60,
    ReportInterval.TWICEDAILY: 12 * 60 * 60,
    ReportInterval.DAILY: 24 * 60 * 60,
    ReportInterval.WEEKLY: 7 * 24 * 60 * 60,
}

DEFAULT_ENDPOINT = "https://analytics.linno.io/api/track"

# Config file location
CONFIG_DIR = Path.home() / ".config" / "plugin-telemetry"
CONFIG_FILE = CONFIG_DIR / "telemetry.json"

# Default configuration values
DEFAULTS: Dict[str, Any] = {
    "enabled": True,
    "api_key": "",
    "api_secret": "",
    "plugin_name": "",
    "plugin_slug": "",
    "plugin_version": "unknown",
    "host_name": "python",
    "host_version": "unknown",
    "site_url": "",
    "endpoint": DEFAULT_ENDPOINT,
    "database_url": f"sqlite:///{CONFIG_DIR / 'queue.db'}",
    "report_interval": ReportInterval.DAILY.value,
    "timeout": 5.0,
    "scrub_pii": True,
    "purge_on_revoke": False,
}

# Keys that are written back by save_config(). Credentials stay out of the file.
_PERSISTED_KEYS = (
    "enabled",
    "plugin_name",
    "plugin_slug",
    "plugin_version",
    "host_name",
    "host_version",
    "site_url",
    "endpoint",
    "database_url",
    "report_interval",
    "timeout",
    "scrub_pii",
    "purge_on_revoke",
)


@dataclass
class TelemetryConfig:
    """Configuration for a plugin's telemetry client."""

    api_key: str
    plugin_slug: str
    api_secret: str = ""
    plugin_name: str = ""
    plugin_version: str = "unknown"
    host_name: str = "python"
    host_version: str = "unknown"
    site_url: str = ""
    endpoint: str = DEFAULT_ENDPOINT
    database_url: str = DEFAULTS["database_url"]
    report_interval: ReportInterval = ReportInterval.DAILY
    timeout: float = 5.0
    extra_system_info: Dict[str, Any] = field(default_factory=dict)
    kui_thresholds: Dict[str, int] = field(default_factory=dict)
    scrub_pii: bool = True
    purge_on_revoke: bool = False
    enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.api_key:
            raise ConfigurationError("api_key cannot be empty")
        if not self.plugin_slug:
            raise ConfigurationError("plugin_slug cannot be empty")
        if not self.plugin_name:
            self.plugin_name = self.plugin_slug
        try:
            self.report_interval = ReportInterval(self.report_interval)
        except ValueError:
            raise ConfigurationError(
                f"report_interval must be one of "
                f"{[i.value for i in ReportInterval]}, got {self.report_interval!r}"
            ) from None
        if not 0.0 < self.timeout <= 30.0:
            raise ConfigurationError(f"timeout must be within (0, 30] seconds, got {self.timeout}")
        for name, threshold in self.kui_thresholds.items():
            if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 1:
                raise ConfigurationError(
                    f"KUI threshold for {name!r} must be a positive integer, got {threshold!r}"
                )


def _parse_bool(value: str) -> bool:
    """Parse a boolean from a string value."""
    return value.lower() in ("true", "1", "yes", "on")


def _load_config_file() -> dict[str, Any]:
    """Load configuration from file if it exists."""
    if not CONFIG_FILE.exists():
        return {}

    try:
        with open(CONFIG_FILE) as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


def _get_env_config() -> dict[str, Any]:
    """Get configuration from environment variables."""
    config: dict[str, Any] = {}

    # Universal opt-out (DO_NOT_TRACK standard)
    if os.getenv("DO_NOT_TRACK", "").lower() in ("1", "true"):
        config["enabled"] = False

    # Package-specific opt-out
    enabled_env = os.getenv("PLUGIN_TELEMETRY_ENABLED", "")
    if enabled_env:
        config["enabled"] = _parse_bool(enabled_env)

    string_vars = {
        "PLUGIN_TELEMETRY_API_KEY": "api_key",
        "PLUGIN_TELEMETRY_API_SECRET": "api_secret",
        "PLUGIN_TELEMETRY_ENDPOINT": "endpoint",
        "PLUGIN_TELEMETRY_DATABASE_URL": "database_url",
        "PLUGIN_TELEMETRY_REPORT_INTERVAL": "report_interval",
    }
    for var, key in string_vars.items():
        value = os.getenv(var)
        if value:
            config[key] = value

    timeout = os.getenv("PLUGIN_TELEMETRY_TIMEOUT")
    if timeout:
        try:
            config["timeout"] = float(timeout)
        except ValueError:
            pass

    return config


def load_config(**overrides: Any) -> TelemetryConfig:
    """Load telemetry configuration from all sources.

    Priority order (highest to lowest):
    1. Keyword overrides
    2. Environment variables
    3. Configuration file
    4. Package defaults

    Args:
        **overrides: Explicit field values, typically the plugin's identity
            and credentials.

    Returns:
        TelemetryConfig: The merged configuration.

    Raises:
        ConfigurationError: If the merged values are invalid.
    """
    # Start with defaults
    merged = dict(DEFAULTS)

    # Layer in config file
    merged.update(_load_config_file())

    # Layer in environment variables
    merged.update(_get_env_config())

    # Explicit arguments win
    merged.update({k: v for k, v in overrides.items() if v is not None})

    return TelemetryConfig(**merged)


def save_config(config: TelemetryConfig) -> None:
    """Save configuration to file.

    Credentials are never written.

    Args:
        config: The configuration to save.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    config_dict = {key: getattr(config, key) for key in _PERSISTED_KEYS}
    config_dict["report_interval"] = config.report_interval.value

    with open(CONFIG_FILE, "w") as f:
        json.dump(config_dict, f, indent=2)
