"""
MCP client implementation for connecting to MCP servers.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from pydantic import AnyUrl

from .errors import RequestTimeoutError, ServerConnectionError
from .server_config import ServerConfig
from .transport import Transport, create_transport

logger = logging.getLogger(__name__)


class MCPClient:
    """Client for one MCP server over either transport."""

    def __init__(
        self,
        name: str,
        config: ServerConfig,
        on_transport_error: Optional[Callable[["MCPClient", Exception], None]] = None,
    ):
        """Initialize MCPClient for a configured server.

        Args:
            name: Server name, used in log and error messages
            config: Parsed stdio or sse server configuration
            on_transport_error: Called with (client, error) if the transport dies
                after connecting
        """
        self.name = name
        self.config = config
        self.timeout = config.timeout
        self.on_transport_error = on_transport_error
        self.transport: Transport = create_transport(name, config, self._transport_failed)
        self.session = None

    def _transport_failed(self, error: Exception) -> None:
        self.session = None
        if self.on_transport_error is not None:
            self.on_transport_error(self, error)

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> "MCPClient":
        """Open the transport and run the protocol handshake.

        Raises:
            ServerConnectionError: If the transport or the handshake fails
        """
        try:
            session = await asyncio.wait_for(self.transport.connect(), timeout=self.timeout)
            await asyncio.wait_for(session.initialize(), timeout=self.timeout)
            self.session = session
            return self
        except Exception as e:
            # On any exception during initialization, ensure cleanup
            await self.close()
            if isinstance(e, asyncio.TimeoutError):
                raise ServerConnectionError(
                    f"Timed out connecting to MCP server '{self.name}' after {self.timeout}s"
                ) from e
            raise ServerConnectionError(
                f"Failed to connect to MCP server '{self.name}': {e}"
            ) from e

    async def close(self) -> None:
        """Close the session and cleanup resources."""
        self.session = None
        try:
            await self.transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport for '{self.name}': {e}")

    def _require_session(self):
        if not self.session:
            raise ServerConnectionError(f"Client for '{self.name}' is not connected")
        return self.session

    async def request(self, method: str, params: Optional[dict] = None) -> Any:
        """Issue one protocol request, bounded by the server timeout.

        Args:
            method: Protocol method, e.g. "tools/list" or "tools/call"
            params: Method parameters

        Returns:
            The typed result object from the MCP SDK

        Raises:
            ServerConnectionError: If the client is not connected
            RequestTimeoutError: If the server does not answer in time
            ValueError: If the method is not supported
        """
        session = self._require_session()
        params = params or {}
        if method == "tools/list":
            call = session.list_tools()
        elif method == "resources/list":
            call = session.list_resources()
        elif method == "prompts/list":
            call = session.list_prompts()
        elif method == "tools/call":
            call = session.call_tool(params["name"], params.get("arguments") or {})
        elif method == "resources/read":
            call = session.read_resource(AnyUrl(params["uri"]))
        else:
            raise ValueError(f"Unsupported MCP method: {method}")

        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"Request '{method}' to server '{self.name}' timed out after {self.timeout}s"
            ) from e

    async def list_tools(self) -> list[dict]:
        """List available tools from the connected MCP server.

        Returns:
            List of tool definitions with name, description, inputSchema, outputSchema
        """
        response = await self.request("tools/list")
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": tool.inputSchema,
                "outputSchema": getattr(tool, "outputSchema", None),
            }
            for tool in response.tools
        ]

    async def list_resources(self) -> list[dict]:
        response = await self.request("resources/list")
        return [
            {
                "uri": str(resource.uri),
                "name": resource.name,
                "description": resource.description,
                "mimeType": resource.mimeType,
            }
            for resource in response.resources
        ]

    async def list_prompts(self) -> list[dict]:
        response = await self.request("prompts/list")
        prompts = []
        for prompt in response.prompts:
            arguments = [arg.model_dump(exclude_none=True) for arg in (prompt.arguments or [])]
            prompts.append(
                {
                    "name": prompt.name,
                    "description": prompt.description,
                    "template": getattr(prompt, "template", None),
                    "arguments": arguments,
                }
            )
        return prompts

    async def call_tool(self, name: str, arguments: dict) -> dict:
        """Execute a tool on the MCP server.

        Args:
            name: Tool name (e.g., "get_weather")
            arguments: Tool arguments as dict (e.g., {"location": "Tokyo"})

        Returns:
            Tool result with structure:
            {
                "content": [
                    {"type": "text", "text": "..."},
                    # or {"type": "image", "data": "...", "mimeType": "..."},
                    # or {"type": "resource", "resource": {...}}
                ],
                "isError": bool
            }
        """
        response = await self.request("tools/call", {"name": name, "arguments": arguments})

        content = []
        for item in response.content:
            item_dict = {"type": item.type}
            item_dict.update(item.model_dump(exclude={"type"}, mode="json"))
            content.append(item_dict)

        return {
            "content": content,
            "isError": bool(getattr(response, "isError", False)),
        }

    async def read_resource(self, uri: str) -> list[dict]:
        """Read a resource by URI.

        Returns:
            List of content items with uri, mimeType and either text or blob
        """
        response = await self.request("resources/read", {"uri": uri})
        return [item.model_dump(mode="json") for item in response.contents]
