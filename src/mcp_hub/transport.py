"""
Transports for reaching MCP servers.

There are exactly two variants: ``StdioTransport`` spawns the server as a
subprocess and talks over its standard streams, ``SseTransport`` opens a
Server-Sent Events stream to a URL. Both keep their streams open inside a
dedicated task, because the underlying anyio contexts must be entered and
exited by the same task.
"""

import asyncio
import logging
import os
from typing import Callable, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client

from .errors import ServerConnectionError
from .server_config import ServerConfig, SseServerConfig, StdioServerConfig

logger = logging.getLogger(__name__)


class Transport:
    """Common lifecycle for both transport variants.

    ``connect()`` returns an open ``ClientSession``; ``close()`` tears the
    streams down. If the streams die after ``connect()`` returned,
    ``on_error`` is called with the causing exception.
    """

    kind = ""

    def __init__(self, name: str, on_error: Optional[Callable[[Exception], None]] = None):
        self.name = name
        self.on_error = on_error
        self.session: Optional[ClientSession] = None
        self._ready: Optional[asyncio.Future] = None
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    def _open_streams(self):
        """Return an async context manager yielding (read_stream, write_stream, ...)."""
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done()

    async def connect(self) -> ClientSession:
        if self.is_open:
            raise ServerConnectionError(f"Transport for '{self.name}' is already open")

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._stop = asyncio.Event()
        self._closing = False
        self._task = asyncio.create_task(self._hold_open(), name=f"mcp-transport-{self.name}")
        try:
            return await asyncio.shield(self._ready)
        except asyncio.CancelledError:
            await self.close()
            raise

    async def _hold_open(self) -> None:
        try:
            async with self._open_streams() as streams:
                read_stream, write_stream = streams[0], streams[1]
                async with ClientSession(read_stream, write_stream) as session:
                    self.session = session
                    self._ready.set_result(session)
                    await self._stop.wait()
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            elif not self._closing:
                logger.warning(f"Transport for '{self.name}' terminated: {e}")
                if self.on_error is not None:
                    self.on_error(e)
        finally:
            self.session = None
            if not self._ready.done():
                self._ready.set_exception(
                    ServerConnectionError(f"Transport for '{self.name}' closed before it was ready")
                )

    async def close(self) -> None:
        """Close the streams and wait for the holding task to finish."""
        self._closing = True
        if self._stop is not None:
            self._stop.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await task
        except Exception as e:
            logger.debug(f"Ignoring error while closing transport '{self.name}': {e}")
        if self._ready is not None and self._ready.done() and not self._ready.cancelled():
            # Retrieve the exception so asyncio does not log it as never retrieved.
            self._ready.exception()


class StdioTransport(Transport):
    """Launches the configured command and speaks over stdin/stdout."""

    kind = "stdio"

    def __init__(self, name: str, config: StdioServerConfig, on_error=None):
        super().__init__(name, on_error)
        self.config = config

    def build_parameters(self) -> StdioServerParameters:
        # Server-specific values sit under the ambient process environment.
        env = {**(self.config.env or {}), **os.environ}
        return StdioServerParameters(
            command=self.config.command,
            args=list(self.config.args),
            env=env,
            cwd=self.config.cwd,
        )

    def _open_streams(self):
        return stdio_client(self.build_parameters())


class SseTransport(Transport):
    """Opens a long-lived Server-Sent Events stream to the configured URL."""

    kind = "sse"

    def __init__(self, name: str, config: SseServerConfig, on_error=None):
        super().__init__(name, on_error)
        self.config = config

    def _open_streams(self):
        return sse_client(str(self.config.url), headers=dict(self.config.headers or {}))


def create_transport(name: str, config: ServerConfig, on_error=None) -> Transport:
    """Build the transport variant matching ``config``.

    Raises:
        ValueError: If the configuration is neither stdio nor sse
    """
    if isinstance(config, StdioServerConfig):
        return StdioTransport(name, config, on_error)
    if isinstance(config, SseServerConfig):
        return SseTransport(name, config, on_error)
    raise ValueError(f"Unsupported transport configuration for server '{name}': {config!r}")
