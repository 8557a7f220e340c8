"""Runtime initialization for applications embedding the MCP hub.

Call init_runtime() once at application startup. It loads ``.env``,
initializes the configuration repository and installs the process-wide
``McpHubRegistry``; acquire_hub() then hands out the shared hub.
"""

import asyncio
import atexit
import logging
import threading
from typing import Optional

from dotenv import load_dotenv

from .config import get_config, load_config_from_env, reset_config, set_config
from .lifecycle import McpHubHandle, McpHubRegistry
from .provider import AppProvider, DefaultAppProvider

logger = logging.getLogger(__name__)
_initialized = False
_init_lock = threading.Lock()
_cleanup_registered = False


def init_runtime(log_level: Optional[str] = None) -> None:
    """Initialize runtime environment.

    This function:
    1. Loads environment variables from .env file
    2. Initializes the global configuration repository
    3. Installs the shared hub registry (if none is installed yet)
    4. Optionally configures logging

    Thread-safe: Uses double-checked locking to prevent race conditions.

    Args:
        log_level: Optional log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   If None, logging configuration is not modified.

    Note:
        This function is idempotent. Once initialized, subsequent calls
        are silently ignored, including log_level settings.

    Raises:
        ValueError: If an invalid log_level is provided.
    """
    global _initialized

    if _initialized:
        logger.debug("Runtime already initialized, skipping")
        return

    with _init_lock:
        if _initialized:
            logger.debug("Runtime already initialized (detected in lock), skipping")
            return

        try:
            if log_level:
                numeric_level = getattr(logging, log_level.upper(), None)
                if not isinstance(numeric_level, int):
                    raise ValueError(f"Invalid log level: {log_level}")
            else:
                numeric_level = None

            load_dotenv()

            config = load_config_from_env()
            set_config(config)

            from . import get_registry, set_registry

            if get_registry() is None:
                set_registry(McpHubRegistry(config=config))
                _register_cleanup()
            else:
                logger.debug("MCP hub registry already installed, skipping")

            if numeric_level is not None:
                logging.basicConfig(level=numeric_level)

            _initialized = True
            logger.debug("Runtime initialized successfully")
        except Exception:
            # Clean up partial initialization on error
            reset_config()
            raise


async def acquire_hub(provider: Optional[AppProvider] = None) -> McpHubHandle:
    """Acquire the shared hub from the runtime registry.

    Args:
        provider: Embedding application. Defaults to a DefaultAppProvider
                  for the configured settings directory, name and version.

    Raises:
        RuntimeError: If init_runtime() has not been called.
    """
    from . import get_registry

    registry = get_registry()
    if registry is None:
        raise RuntimeError("MCP hub registry not installed. Call init_runtime() first.")
    if provider is None:
        provider = DefaultAppProvider.from_config(get_config())
    return await registry.acquire(provider)


def is_initialized() -> bool:
    return _initialized


def reset_runtime() -> None:
    """Reset initialization state (for testing purposes only)."""
    global _initialized
    _initialized = False


def _register_cleanup() -> None:
    """Shut the shared hub down at interpreter exit if it is still alive."""
    global _cleanup_registered
    if _cleanup_registered:
        return

    def cleanup():
        from . import get_registry

        registry = get_registry()
        if registry is None or registry.instance is None:
            return
        logger.info("Stopping MCP servers...")
        try:
            asyncio.run(registry.shutdown())
            logger.debug("MCP servers stopped gracefully")
        except RuntimeError as e:
            logger.warning(f"Could not cleanly stop MCP servers: {e}")

    atexit.register(cleanup)
    _cleanup_registered = True
