"""
Data structures shared across the hub: server descriptors, connections and
the capability shapes returned to callers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from .server_config import ServerConfig

if TYPE_CHECKING:
    from .client import MCPClient


class ServerSource(str, Enum):
    """Configuration scope a server entry was read from."""

    GLOBAL = "global"
    PROJECT = "project"


class ServerStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class McpServer:
    """Server descriptor as exposed to callers.

    Attributes:
        name: Server name (key in the settings file)
        config: Parsed stdio or sse configuration
        source: Settings scope the entry came from
        status: Current connection status
        errors: Error messages collected for this server, oldest first
    """

    name: str
    config: ServerConfig
    source: ServerSource = ServerSource.GLOBAL
    status: ServerStatus = ServerStatus.CONNECTING
    errors: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, ServerSource]:
        return (self.name, self.source)

    @property
    def disabled(self) -> bool:
        return self.config.disabled

    @property
    def error(self) -> str:
        """All error messages joined for display."""
        return "\n".join(self.errors)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "source": self.source.value,
            "status": self.status.value,
            "disabled": self.disabled,
            "transport": self.config.transport_type,
            "timeout": self.config.timeout,
            "error": self.error,
        }


@dataclass
class McpConnection:
    """A server descriptor paired with its live client (None for placeholders)."""

    server: McpServer
    client: Optional["MCPClient"] = None

    @property
    def key(self) -> tuple[str, ServerSource]:
        return self.server.key


@dataclass
class Tool:
    id: str
    name: str
    description: str
    input_schema: dict
    server_name: str
    output_schema: Optional[dict] = None
    always_allow: bool = False


@dataclass
class Resource:
    uri: str
    name: str
    description: str
    server_name: str
    mime_type: Optional[str] = None


@dataclass
class Prompt:
    id: str
    name: str
    description: str
    template: str
    parameters: list[dict]
    server_name: str


@dataclass
class CallResult:
    """Outcome of a tool call: ``result`` on success, ``error`` on failure."""

    result: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, message: str) -> "CallResult":
        return cls(result=None, error=message)


@dataclass
class ResourceContent:
    """Outcome of a resource read: ``content`` on success, ``error`` on failure."""

    content: Any = None
    mime_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
