"""Application configuration repository.

Centralizes access to configuration values loaded from environment variables.
The MCP settings file itself (which servers to run) is a separate concern
handled by ``server_config`` and ``config_watcher``; this module only holds
process-level knobs such as where that file lives.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_DIR = "~/.mcp_hub"


@dataclass
class AppConfig:
    """Application configuration container.

    Values are typically loaded from environment variables during
    initialization.
    """

    app_name: str = "mcp-hub"
    app_version: str = "0.1.0"

    # Settings files
    settings_dir: str = DEFAULT_SETTINGS_DIR
    project_settings_path: Optional[str] = None

    # Hub behaviour
    cache_ttl_seconds: float = 60.0
    watch_interval_seconds: float = 1.0

    def validate(self) -> list[str]:
        """Validate configuration and return list of warnings.

        Returns:
            list[str]: List of warning messages for invalid configuration.
        """
        issues = []

        if not self.settings_dir:
            issues.append("MCP_HUB_SETTINGS_DIR is empty - using default location")

        if self.cache_ttl_seconds <= 0:
            issues.append(f"Invalid MCP_HUB_CACHE_TTL_SECONDS: {self.cache_ttl_seconds}")

        if self.watch_interval_seconds <= 0:
            issues.append(
                f"Invalid MCP_HUB_WATCH_INTERVAL_SECONDS: {self.watch_interval_seconds}"
            )

        return issues


# Global configuration instance (set once at startup)
_config: Optional[AppConfig] = None


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables.

    This should be called once during application initialization
    (typically from init_runtime()).

    Returns:
        AppConfig: Configuration instance populated from environment variables.
    """

    def _get_env_float(key: str, default: float) -> float:
        """Safely parse float from environment variable with fallback."""
        val_str = os.getenv(key)
        if val_str is None:
            return default
        try:
            return float(val_str)
        except (ValueError, TypeError):
            logger.warning(f"Invalid value for {key}: '{val_str}'. Using default value: {default}.")
            return default

    config = AppConfig(
        app_name=os.getenv("MCP_HUB_APP_NAME", "mcp-hub"),
        app_version=os.getenv("MCP_HUB_APP_VERSION", "0.1.0"),
        settings_dir=os.getenv("MCP_HUB_SETTINGS_DIR") or DEFAULT_SETTINGS_DIR,
        project_settings_path=os.getenv("MCP_HUB_PROJECT_SETTINGS") or None,
        cache_ttl_seconds=_get_env_float("MCP_HUB_CACHE_TTL_SECONDS", 60.0),
        watch_interval_seconds=_get_env_float("MCP_HUB_WATCH_INTERVAL_SECONDS", 1.0),
    )

    # Log validation issues
    issues = config.validate()
    for issue in issues:
        logger.warning(issue)

    return config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance.

    Raises:
        RuntimeError: If configuration has already been set.
    """
    global _config
    if _config is not None:
        raise RuntimeError("Configuration already set. Call reset_config() first.")
    _config = config
    logger.debug("Configuration initialized")


def get_config() -> AppConfig:
    """Get the global configuration instance.

    Raises:
        RuntimeError: If configuration has not been initialized.
                     Call init_runtime() first.
    """
    if _config is None:
        raise RuntimeError(
            "Configuration not initialized. Call init_runtime() at application startup."
        )
    return _config


def reset_config() -> None:
    """Reset configuration state.

    This function is intended for testing purposes only.
    """
    global _config
    _config = None
