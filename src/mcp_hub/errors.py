"""Exception hierarchy for the MCP hub.

Each error also derives from the closest builtin so callers that already
handle ``ConnectionError`` / ``TimeoutError`` / ``ValueError`` keep working.
"""


class McpHubError(Exception):
    """Base class for all MCP hub errors."""


class ConfigParseError(McpHubError):
    """Settings file is malformed JSON or fails schema validation."""

    def __init__(self, message, issues=None):
        super().__init__(message)
        self.issues = list(issues or [])


class ServerConnectionError(McpHubError, ConnectionError):
    """Transport could not be established or is no longer usable."""


class NotFoundError(McpHubError, LookupError):
    """Unknown server, tool, resource or prompt reference."""


class ToolValidationError(McpHubError, ValueError):
    """Arguments do not satisfy a tool's input schema."""

    def __init__(self, message, issues=None):
        super().__init__(message)
        self.issues = list(issues or [])


class RequestTimeoutError(McpHubError, TimeoutError):
    """A round trip exceeded the server's configured timeout."""


class ToolExecutionError(McpHubError):
    """The remote tool reported a failure."""
