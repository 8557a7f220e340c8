"""
Shared hub lifecycle.

``McpHubRegistry`` is the single entry point through which independent
consumers ("providers") obtain the shared ``McpHub``. It counts
registrations, builds the hub lazily on first use, and tears it down when
the last provider unregisters.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .config import AppConfig
from .config_watcher import ConfigWatcher
from .models import ServerSource
from .provider import AppProvider
from .server_manager import McpHub

logger = logging.getLogger(__name__)

HubFactory = Callable[[AppProvider], Awaitable[McpHub]]


async def create_hub(provider: AppProvider, config: Optional[AppConfig] = None) -> McpHub:
    """Build a hub and start watching its settings file(s).

    The global settings file is always watched; a project settings file is
    watched as well when configured.
    """
    config = config or AppConfig()
    hub = McpHub(
        provider,
        cache_ttl=config.cache_ttl_seconds,
        watch_interval=config.watch_interval_seconds,
    )
    watchers = [
        ConfigWatcher(
            hub, provider, ServerSource.GLOBAL, poll_interval=config.watch_interval_seconds
        )
    ]
    if config.project_settings_path:
        watchers.append(
            ConfigWatcher(
                hub,
                provider,
                ServerSource.PROJECT,
                settings_path=config.project_settings_path,
                poll_interval=config.watch_interval_seconds,
            )
        )

    try:
        for watcher in watchers:
            hub.attach_watcher(watcher)
            await watcher.start()
    except Exception:
        await hub.dispose()
        raise
    provider.log(f"MCP hub ready with {len(hub.get_all_servers())} server(s)")
    return hub


class McpHubHandle:
    """A provider's registration with the registry.

    Use ``release()`` (or ``async with``) to unregister; releasing twice is a
    no-op.
    """

    def __init__(self, registry: "McpHubRegistry", provider: AppProvider, hub: McpHub):
        self.registry = registry
        self.provider = provider
        self.hub = hub
        self.released = False

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        await self.registry.unregister_provider(self.provider)

    async def __aenter__(self) -> McpHub:
        return self.hub

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()


class McpHubRegistry:
    """Reference-counted owner of the shared McpHub."""

    def __init__(
        self, hub_factory: Optional[HubFactory] = None, config: Optional[AppConfig] = None
    ):
        """Initialize the registry.

        Args:
            hub_factory: Coroutine building a hub for the first provider.
                         Defaults to create_hub() with ``config``.
            config: Configuration passed to the default factory
        """
        if hub_factory is None:

            async def hub_factory(provider):
                return await create_hub(provider, config)

        self._hub_factory = hub_factory
        self._providers: set = set()
        self._ref_count = 0
        self._instance: Optional[McpHub] = None
        self._init_task: Optional[asyncio.Task] = None

    @property
    def ref_count(self) -> int:
        return self._ref_count

    @property
    def providers(self) -> frozenset:
        return frozenset(self._providers)

    @property
    def instance(self) -> Optional[McpHub]:
        return self._instance

    @property
    def is_initializing(self) -> bool:
        return self._init_task is not None

    async def get_instance(self, provider: AppProvider) -> McpHub:
        """Register ``provider`` and return the shared hub, building it if needed.

        Concurrent first calls share one initialization; exactly one hub is
        built. If that construction fails, every waiting caller gets the
        error and its registration is rolled back.
        """
        # Registration completes before the first await.
        self._providers.add(provider)
        self._ref_count += 1

        if self._instance is not None:
            return self._instance

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize(provider))
        task = self._init_task

        try:
            return await asyncio.shield(task)
        except BaseException:
            self._rollback(provider)
            raise

    async def _initialize(self, provider: AppProvider) -> McpHub:
        try:
            logger.info("Creating shared MCP hub")
            hub = await self._hub_factory(provider)
            self._instance = hub
            return hub
        finally:
            self._init_task = None

    def _rollback(self, provider: AppProvider) -> None:
        if self._ref_count > 0:
            self._ref_count -= 1
        if self._ref_count == 0:
            self._providers.clear()
        else:
            self._providers.discard(provider)

    async def acquire(self, provider: AppProvider) -> McpHubHandle:
        hub = await self.get_instance(provider)
        return McpHubHandle(self, provider, hub)

    async def unregister_provider(self, provider: AppProvider) -> None:
        """Drop one registration; the last one tears the hub down."""
        self._providers.discard(provider)
        if self._ref_count == 0:
            logger.warning("unregister_provider() called with no registered providers")
            return
        self._ref_count -= 1
        if self._ref_count > 0:
            logger.debug(f"MCP hub still referenced by {self._ref_count} provider(s)")
            return
        await self._teardown()

    async def shutdown(self) -> None:
        """Tear the hub down regardless of outstanding registrations."""
        self._ref_count = 0
        await self._teardown()

    async def _teardown(self) -> None:
        self._providers.clear()
        hub, self._instance = self._instance, None
        task = self._init_task

        if hub is None and task is not None:
            try:
                hub = await task
            except Exception as e:
                logger.warning(f"MCP hub construction failed during teardown: {e}")
                hub = None
            if self._ref_count > 0:
                # Re-acquired while construction finished; keep it alive.
                return
            self._instance = None

        if hub is not None:
            await hub.dispose()
            logger.info("Shared MCP hub torn down")
