"""
MCP hub: connects to many MCP servers and aggregates their capabilities.
"""

import asyncio
import logging
import threading
from typing import Optional

from mcp_hub.client import MCPClient
from mcp_hub.lifecycle import McpHubHandle, McpHubRegistry, create_hub
from mcp_hub.models import (
    CallResult,
    McpServer,
    Prompt,
    Resource,
    ResourceContent,
    ServerSource,
    ServerStatus,
    Tool,
)
from mcp_hub.provider import AppProvider, DefaultAppProvider
from mcp_hub.server_manager import McpHub

__all__ = [
    "AppProvider",
    "CallResult",
    "DefaultAppProvider",
    "MCPClient",
    "McpHub",
    "McpHubHandle",
    "McpHubRegistry",
    "McpServer",
    "Prompt",
    "Resource",
    "ResourceContent",
    "ServerSource",
    "ServerStatus",
    "Tool",
    "create_hub",
    "get_registry",
    "set_registry",
    "reset_registry",
]

logger = logging.getLogger(__name__)


# Process-wide registry; its lifetime is controlled by the embedding process.
_registry: Optional[McpHubRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> Optional[McpHubRegistry]:
    """Get the process-wide hub registry.

    Returns:
        McpHubRegistry or None: The installed registry, or None if
                                init_runtime() has not run.
    """
    with _registry_lock:
        return _registry


def set_registry(registry: McpHubRegistry) -> None:
    """Install the process-wide hub registry.

    Raises:
        RuntimeError: If a registry has already been installed.
    """
    global _registry
    with _registry_lock:
        if _registry is not None:
            raise RuntimeError("MCP hub registry already set. Call reset_registry() first.")
        _registry = registry


def reset_registry() -> None:
    """Shut down and forget the registry (tests and shutdown only).

    Raises:
        RuntimeError: If a hub is alive and an event loop is running; await
                      ``registry.shutdown()`` there instead.
    """
    global _registry
    with _registry_lock:
        registry = _registry
        if registry is not None and registry.instance is not None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                pass
            else:
                raise RuntimeError(
                    "reset_registry() cannot run inside an event loop; "
                    "await registry.shutdown() instead."
                )
        _registry = None

    if registry is not None and registry.instance is not None:
        try:
            asyncio.run(registry.shutdown())
            logger.debug("MCP hub shut down during reset")
        except Exception:
            logger.exception("Failed to shut down MCP hub during reset")
