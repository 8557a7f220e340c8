"""
MCP hub for managing multiple MCP servers.

This module provides centralized management of multiple MCP server
connections, including lifecycle management, reconciliation against the
settings file, capability aggregation with a time-bounded cache, and tool
execution routing.
"""

import asyncio
import functools
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Optional

from .client import MCPClient
from .config_watcher import DEFAULT_POLL_INTERVAL_SECONDS, FileChangePoller
from .errors import ConfigParseError, NotFoundError, ToolExecutionError, ToolValidationError
from .models import (
    CallResult,
    McpConnection,
    McpServer,
    Prompt,
    Resource,
    ResourceContent,
    ServerSource,
    ServerStatus,
    Tool,
)
from .provider import AppProvider
from .schema_validator import build_validator
from .server_config import build_unvalidated_config, config_fingerprint, parse_server_config

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60.0

UNKNOWN_TOOL_ERROR = "Unknown error"


@dataclass
class _CacheEntry:
    items: Optional[list] = None
    computed_at: float = 0.0


@dataclass
class _Aggregation:
    """How one capability kind is queried and de-duplicated."""

    kind: str
    query: Callable[[McpConnection], Awaitable[list]]
    identity: Callable[[Any], str]


class McpHub:
    """Registry of MCP server connections and aggregator of their capabilities.

    Connections are keyed by ``(name, source)``. Iteration order is
    insertion order; a replaced connection moves to the end. Aggregation keeps
    the first occurrence of each ``(server, id)`` in that order.
    """

    def __init__(
        self,
        provider: AppProvider,
        cache_ttl: float = CACHE_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        watch_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        """Initialize the MCP hub.

        Args:
            provider: Application provider used for settings, UI and logging
            cache_ttl: Seconds an aggregated capability list stays valid
            clock: Monotonic clock, injectable for tests
            watch_interval: Poll interval for server watch paths
        """
        self.provider = provider
        self.cache_ttl = cache_ttl
        self._clock = clock or time.monotonic
        self._watch_interval = watch_interval
        self._connections: dict[tuple[str, ServerSource], McpConnection] = {}
        self._cache: dict[str, _CacheEntry] = {
            "tools": _CacheEntry(),
            "resources": _CacheEntry(),
            "prompts": _CacheEntry(),
        }
        self._cache_generation = 0
        self._path_pollers: dict[tuple[str, ServerSource], list[FileChangePoller]] = {}
        self._background_tasks: set[asyncio.Task] = set()
        self.watchers: list = []
        self.is_connecting = False

    # ------------------------------------------------------------------
    # Server listings
    # ------------------------------------------------------------------

    @property
    def connections(self) -> list[McpConnection]:
        return list(self._connections.values())

    def get_servers(self) -> list[McpServer]:
        """Enabled servers only, with their current status."""
        return [c.server for c in self._connections.values() if not c.server.disabled]

    def get_all_servers(self) -> list[McpServer]:
        return [c.server for c in self._connections.values()]

    def find_connection(
        self, name: str, source: Optional[ServerSource] = None
    ) -> Optional[McpConnection]:
        """Look up a connection by name, optionally restricted to one source."""
        if source is not None:
            return self._connections.get((name, ServerSource(source)))
        for connection in self._connections.values():
            if connection.server.name == name:
                return connection
        return None

    def get_connection(self, name: str, source: Optional[ServerSource] = None) -> McpConnection:
        """Like find_connection(), but raises NotFoundError when missing."""
        connection = self.find_connection(name, source)
        if connection is None:
            raise NotFoundError(f"Server {name} not found")
        return connection

    # ------------------------------------------------------------------
    # Capability cache
    # ------------------------------------------------------------------

    def invalidate_cache(self) -> None:
        """Drop every aggregated list; the next query recomputes."""
        self._cache_generation += 1
        for entry in self._cache.values():
            entry.items = None
            entry.computed_at = 0.0

    def _cached(self, kind: str) -> Optional[list]:
        entry = self._cache[kind]
        if entry.items is None:
            return None
        if self._clock() - entry.computed_at >= self.cache_ttl:
            return None
        return list(entry.items)

    def _active_connections(self) -> list[McpConnection]:
        return [
            c
            for c in self._connections.values()
            if not c.server.disabled
            and c.server.status == ServerStatus.CONNECTED
            and c.client is not None
        ]

    async def _aggregate(self, aggregation: _Aggregation) -> list:
        cached = self._cached(aggregation.kind)
        if cached is not None:
            return cached

        generation = self._cache_generation
        seen: set[tuple[str, str]] = set()
        items = []
        for connection in self._active_connections():
            for item in await aggregation.query(connection):
                key = (item.server_name, aggregation.identity(item))
                if key in seen:
                    continue
                seen.add(key)
                items.append(item)

        # A mutation while querying means these results may describe a
        # topology that no longer exists; return them but do not cache.
        if generation == self._cache_generation:
            entry = self._cache[aggregation.kind]
            entry.items = items
            entry.computed_at = self._clock()
        return list(items)

    async def aggregate_tools(self) -> list[Tool]:
        return await self._aggregate(_Aggregation("tools", self._query_tools, lambda t: t.id))

    async def aggregate_resources(self) -> list[Resource]:
        return await self._aggregate(
            _Aggregation("resources", self._query_resources, lambda r: r.uri)
        )

    async def aggregate_prompts(self) -> list[Prompt]:
        return await self._aggregate(_Aggregation("prompts", self._query_prompts, lambda p: p.id))

    async def get_tools(self) -> list[Tool]:
        return await self.aggregate_tools()

    async def get_resources(self) -> list[Resource]:
        return await self.aggregate_resources()

    async def get_prompts(self) -> list[Prompt]:
        return await self.aggregate_prompts()

    # ------------------------------------------------------------------
    # Per-server discovery
    # ------------------------------------------------------------------

    async def get_tools_list(
        self, server_name: str, source: Optional[ServerSource] = None
    ) -> list[Tool]:
        connection = self.find_connection(server_name, source)
        if connection is None:
            return []
        return await self._query_tools(connection)

    async def get_resources_list(
        self, server_name: str, source: Optional[ServerSource] = None
    ) -> list[Resource]:
        connection = self.find_connection(server_name, source)
        if connection is None:
            return []
        return await self._query_resources(connection)

    async def get_prompts_list(
        self, server_name: str, source: Optional[ServerSource] = None
    ) -> list[Prompt]:
        connection = self.find_connection(server_name, source)
        if connection is None:
            return []
        return await self._query_prompts(connection)

    async def _query_tools(self, connection: McpConnection) -> list[Tool]:
        server = connection.server
        if connection.client is None:
            return []
        try:
            raw_tools = await connection.client.list_tools()
        except Exception as e:
            logger.warning(f"Failed to list tools for server '{server.name}': {e}")
            return []

        always_allow = set(server.config.always_allow)
        return [
            Tool(
                id=raw["name"],
                name=raw["name"],
                description=raw.get("description") or "",
                input_schema=raw.get("inputSchema") or {},
                output_schema=raw.get("outputSchema"),
                server_name=server.name,
                always_allow=raw["name"] in always_allow,
            )
            for raw in raw_tools
        ]

    async def _query_resources(self, connection: McpConnection) -> list[Resource]:
        server = connection.server
        if connection.client is None:
            return []
        try:
            raw_resources = await connection.client.list_resources()
        except Exception as e:
            logger.warning(f"Failed to list resources for server '{server.name}': {e}")
            return []

        return [
            Resource(
                uri=raw["uri"],
                name=raw.get("name") or raw["uri"],
                description=raw.get("description") or "",
                mime_type=raw.get("mimeType"),
                server_name=server.name,
            )
            for raw in raw_resources
        ]

    async def _query_prompts(self, connection: McpConnection) -> list[Prompt]:
        server = connection.server
        if connection.client is None:
            return []
        try:
            raw_prompts = await connection.client.list_prompts()
        except Exception as e:
            logger.warning(f"Failed to list prompts for server '{server.name}': {e}")
            return []

        return [
            Prompt(
                id=raw["name"],
                name=raw["name"],
                description=raw.get("description") or "",
                template=raw.get("template") or "",
                parameters=list(raw.get("arguments") or []),
                server_name=server.name,
            )
            for raw in raw_prompts
        ]

    # ------------------------------------------------------------------
    # Tool calls and resource reads
    # ------------------------------------------------------------------

    async def call_tool(
        self,
        server_name: str,
        tool_id: str,
        arguments: Optional[dict] = None,
        source: Optional[ServerSource] = None,
    ) -> CallResult:
        """Execute a tool on the named server.

        Never raises: every failure, including argument validation and
        transport errors, is returned as ``CallResult.error``.

        Args:
            server_name: Server owning the tool
            tool_id: Tool id as reported by aggregate_tools()
            arguments: Tool arguments as dict
            source: Restrict the server lookup to one settings scope

        Returns:
            CallResult: ``result`` holds {"content": [...], "isError": False}
        """
        arguments = {} if arguments is None else arguments

        connection = self.find_connection(server_name, source)
        if connection is None:
            return CallResult.failure(f"Server {server_name} not found")
        if connection.server.disabled:
            return CallResult.failure(f"Server {server_name} is disabled")
        if connection.server.status != ServerStatus.CONNECTED or connection.client is None:
            return CallResult.failure(f"Server {server_name} is not connected")

        try:
            tool = await self._find_tool(connection, tool_id)
            if tool is None:
                return CallResult.failure(f"Tool {tool_id} not found on server {server_name}")

            build_validator(tool.input_schema).check(arguments)

            logger.info(f"Calling tool '{tool.name}' on server '{server_name}'")
            response = await connection.client.call_tool(tool.name, arguments)
            if response.get("isError"):
                raise ToolExecutionError(_first_error_text(response))
            return CallResult(result=response)
        except (ToolValidationError, ToolExecutionError) as e:
            logger.warning(f"Tool '{tool_id}' on server '{server_name}' failed: {e}")
            return CallResult.failure(str(e))
        except Exception as e:
            logger.warning(f"Error calling tool '{tool_id}' on server '{server_name}': {e}")
            return CallResult.failure(str(e) or type(e).__name__)

    async def _find_tool(self, connection: McpConnection, tool_id: str) -> Optional[Tool]:
        for tool in await self.aggregate_tools():
            if tool.server_name == connection.server.name and tool.id == tool_id:
                return tool
        return None

    async def read_resource(
        self, server_name: str, uri: str, source: Optional[ServerSource] = None
    ) -> ResourceContent:
        """Read one resource. Never raises; failures populate ``error``."""
        connection = self.find_connection(server_name, source)
        if connection is None:
            return ResourceContent(error=f"Server {server_name} not found")
        if connection.server.disabled:
            return ResourceContent(error=f"Server {server_name} is disabled")
        if connection.server.status != ServerStatus.CONNECTED or connection.client is None:
            return ResourceContent(error=f"Server {server_name} is not connected")

        try:
            contents = await connection.client.read_resource(uri)
        except Exception as e:
            logger.warning(f"Error reading resource '{uri}' from server '{server_name}': {e}")
            return ResourceContent(error=str(e) or type(e).__name__)

        if not contents:
            return ResourceContent(error=f"Resource {uri} not found on server {server_name}")
        first = contents[0]
        content = first.get("text") if first.get("text") is not None else first.get("blob")
        return ResourceContent(content=content, mime_type=first.get("mimeType"))

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect_to_server(
        self, name: str, config: Any, source: ServerSource = ServerSource.GLOBAL
    ) -> McpConnection:
        """Connect (or reconnect) one server, replacing any existing connection.

        Connection failures are recorded on the returned connection
        (status=error) rather than raised.

        Raises:
            ConfigParseError: If ``config`` is a raw mapping that fails validation
        """
        source = ServerSource(source)
        config = parse_server_config(config, name)
        key = (name, source)

        if key in self._connections:
            await self.delete_connection(name, source, notify=False)

        server = McpServer(name=name, config=config, source=source)
        connection = McpConnection(server=server)
        self._connections[key] = connection
        self.invalidate_cache()

        if config.disabled:
            server.status = ServerStatus.DISCONNECTED
            logger.info(f"MCP server '{name}' is disabled; not connecting")
            return connection

        client = MCPClient(name, config, on_transport_error=self._on_transport_error)
        connection.client = client
        try:
            await client.connect()
        except Exception as e:
            if self._connections.get(key) is connection:
                connection.client = None
                server.status = ServerStatus.ERROR
                server.errors.append(str(e))
                self.invalidate_cache()
            logger.error(f"Failed to connect to MCP server '{name}': {e}")
            return connection

        if self._connections.get(key) is not connection:
            # Replaced or deleted while the handshake was in flight.
            await client.close()
            return connection

        server.status = ServerStatus.CONNECTED
        self.invalidate_cache()
        await self._start_path_pollers(connection)
        logger.info(f"Connected to MCP server '{name}' ({config.transport_type})")
        return connection

    async def delete_connection(
        self, name: str, source: ServerSource = ServerSource.GLOBAL, notify: bool = True
    ) -> None:
        """Close and forget one connection. Unknown keys are ignored."""
        key = (name, ServerSource(source))
        connection = self._connections.pop(key, None)
        if connection is None:
            return
        self.invalidate_cache()
        connection.server.status = ServerStatus.DISCONNECTED

        await self._stop_path_pollers(key)
        if connection.client is not None:
            client, connection.client = connection.client, None
            await client.close()
        logger.info(f"Disconnected MCP server '{name}'")
        if notify:
            await self.notify_servers_changed()

    async def update_server_connections(
        self, desired_configs: Mapping[str, Any], source: ServerSource = ServerSource.GLOBAL
    ) -> None:
        """Reconcile connections for one source against desired configurations.

        Servers missing from ``desired_configs`` are deleted; new or changed
        servers are (re)connected; unchanged servers are left alone. An entry
        that fails validation is logged and still reconciled with its raw
        values. A failure for one server never stops the others from being
        processed.
        """
        source = ServerSource(source)
        desired = dict(desired_configs or {})
        self.is_connecting = True
        try:
            current = [name for (name, src) in self._connections if src == source]
            for name in current:
                if name in desired:
                    continue
                try:
                    await self.delete_connection(name, source, notify=False)
                    logger.info(f"Deleted MCP server: {name}")
                except Exception:
                    logger.exception(f"Failed to delete MCP server '{name}'")

            for name, raw_config in desired.items():
                try:
                    config = parse_server_config(raw_config, name)
                except ConfigParseError as e:
                    logger.error(str(e))
                    self.provider.log(str(e))
                    config = build_unvalidated_config(raw_config)
                    if config is None:
                        continue

                existing = self._connections.get((name, source))
                if existing is not None and config_fingerprint(
                    existing.server.config
                ) == config_fingerprint(config):
                    continue

                try:
                    await self.connect_to_server(name, config, source)
                    action = "Reconnected" if existing is not None else "Connected"
                    logger.info(f"{action} MCP server: {name}")
                except Exception:
                    logger.exception(f"Failed to connect to MCP server '{name}'")
        finally:
            self.is_connecting = False
        await self.notify_servers_changed()

    async def restart_connection(
        self, name: str, source: ServerSource = ServerSource.GLOBAL
    ) -> McpConnection:
        """Reconnect one server with its current configuration.

        Raises:
            NotFoundError: If no such server is configured
        """
        connection = self.get_connection(name, source)
        self.provider.log(f"Restarting {name} MCP server...")
        restarted = await self.connect_to_server(name, connection.server.config, source)
        if restarted.server.status == ServerStatus.CONNECTED:
            self.provider.log(f"{name} MCP server connected")
        await self.notify_servers_changed()
        return restarted

    async def toggle_server_disabled(self, name: str, disabled: bool) -> None:
        """Persist the disabled flag of a global server and reconcile.

        Raises:
            NotFoundError: If the server is not in the global settings file
            ConfigParseError: If the settings file cannot be parsed
        """
        settings_path = Path(await self.provider.get_mcp_settings_file_path())
        try:
            text = await asyncio.to_thread(settings_path.read_text, encoding="utf-8")
            settings = json.loads(text)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigParseError(f"Could not read MCP settings {settings_path}: {e}") from e

        servers = settings.get("mcpServers") if isinstance(settings, dict) else None
        if not isinstance(servers, dict) or name not in servers:
            raise NotFoundError(f"Server {name} not found in {settings_path}")

        servers[name]["disabled"] = bool(disabled)
        await asyncio.to_thread(
            settings_path.write_text, json.dumps(settings, indent=2), encoding="utf-8"
        )
        await self.update_server_connections(servers, ServerSource.GLOBAL)

    def _on_transport_error(self, client: MCPClient, error: Exception) -> None:
        for connection in self._connections.values():
            if connection.client is not client:
                continue
            if connection.server.status == ServerStatus.CONNECTED:
                connection.server.status = ServerStatus.DISCONNECTED
                connection.server.errors.append(str(error) or type(error).__name__)
                self.invalidate_cache()
                self._spawn(self.notify_servers_changed())
            return

    # ------------------------------------------------------------------
    # Watch paths
    # ------------------------------------------------------------------

    async def _start_path_pollers(self, connection: McpConnection) -> None:
        config = connection.server.config
        if not config.watch_paths:
            return
        pollers = []
        for path in config.watch_paths:
            poller = FileChangePoller(
                path,
                functools.partial(self._on_watched_path_changed, connection.key),
                self._watch_interval,
            )
            await poller.start()
            pollers.append(poller)
        self._path_pollers[connection.key] = pollers

    async def _stop_path_pollers(self, key) -> None:
        for poller in self._path_pollers.pop(key, []):
            await poller.close()

    async def _on_watched_path_changed(self, key, path: Path) -> None:
        name = key[0]
        # TODO: restart the server here once restarts can be deferred until
        # in-flight calls on the connection have finished.
        logger.info(f"Watched path {path} changed for MCP server '{name}'")
        self.provider.log(f"{path} changed; restart the {name} MCP server to apply it")

    # ------------------------------------------------------------------
    # Notifications and teardown
    # ------------------------------------------------------------------

    async def notify_servers_changed(self) -> None:
        message = {
            "type": "mcpServers",
            "mcpServers": [server.to_dict() for server in self.get_all_servers()],
        }
        try:
            await self.provider.post_message_to_ui(message)
        except Exception as e:
            logger.warning(f"Failed to post MCP server update to UI: {e}")

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def attach_watcher(self, watcher) -> None:
        """Take ownership of a settings watcher; dispose() closes it."""
        self.watchers.append(watcher)

    async def dispose(self) -> None:
        """Close every watcher and connection."""
        logger.info("Disposing MCP hub...")
        for watcher in self.watchers:
            try:
                await watcher.close()
            except Exception as e:
                logger.warning(f"Error closing settings watcher: {e}")
        self.watchers.clear()

        for name, source in list(self._connections):
            try:
                await self.delete_connection(name, source, notify=False)
            except Exception as e:
                logger.warning(f"Error closing MCP server '{name}': {e}")

        for task in list(self._background_tasks):
            task.cancel()
        self._background_tasks.clear()
        self.invalidate_cache()
        logger.info("MCP hub disposed")


def _first_error_text(response: dict) -> str:
    for item in response.get("content") or []:
        if item.get("type") == "text" and item.get("text"):
            return item["text"]
    return UNKNOWN_TOOL_ERROR
