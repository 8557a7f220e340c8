"""
MCP server configuration data structures.

This module defines the settings file schema. A server entry is either a
subprocess (stdio) server or a network event stream (sse) server; the two
shapes are mutually exclusive.
"""

from typing import Any, Optional, Union

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import ConfigParseError

DEFAULT_TIMEOUT_SECONDS = 60
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 3600

DEFAULT_SETTINGS = {"mcpServers": {}}


class BaseServerConfig(BaseModel):
    """Fields shared by every server entry.

    Attributes:
        disabled: Disabled servers are listed but never connected
        timeout: Round-trip timeout in seconds (default: 60)
        always_allow: Tool ids that may run without confirmation
        watch_paths: Paths whose changes are reported for this server
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    disabled: bool = False
    timeout: int = Field(
        default=DEFAULT_TIMEOUT_SECONDS, ge=MIN_TIMEOUT_SECONDS, le=MAX_TIMEOUT_SECONDS
    )
    always_allow: list[str] = Field(default_factory=list, alias="alwaysAllow")
    watch_paths: list[str] = Field(default_factory=list, alias="watchPaths")

    @property
    def transport_type(self) -> str:
        raise NotImplementedError


class StdioServerConfig(BaseServerConfig):
    """Server launched as a subprocess and spoken to over stdin/stdout."""

    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    cwd: Optional[str] = None
    env: Optional[dict[str, str]] = None

    @property
    def transport_type(self) -> str:
        return "stdio"


class SseServerConfig(BaseServerConfig):
    """Server reached through a Server-Sent Events stream."""

    url: AnyHttpUrl
    headers: Optional[dict[str, str]] = None

    @property
    def transport_type(self) -> str:
        return "sse"


ServerConfig = Union[StdioServerConfig, SseServerConfig]


class McpSettings(BaseModel):
    """Top-level settings file: ``{"mcpServers": {<name>: ServerConfig}}``."""

    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: dict[str, ServerConfig] = Field(default_factory=dict, alias="mcpServers")


_server_config_adapter = TypeAdapter(ServerConfig)


def format_validation_errors(error: ValidationError, prefix: str = "") -> list[str]:
    """Flatten a pydantic ValidationError into ``path: message`` strings."""
    return [_format_issue(item.get("loc", ()), item, prefix) for item in error.errors()]


def _format_issue(loc: tuple, item: dict, prefix: str) -> str:
    parts = [str(p) for p in loc]
    if prefix:
        parts.insert(0, prefix)
    path = ".".join(parts) or "(root)"
    return f"{path}: {item.get('msg', 'Invalid value')}"


def parse_server_config(raw: Any, name: str = "") -> ServerConfig:
    """Validate a single raw server entry.

    Args:
        raw: Mapping from the settings file, or an already parsed config
        name: Server name used to prefix error paths

    Returns:
        ServerConfig: Parsed stdio or sse configuration

    Raises:
        ConfigParseError: If the entry does not match either shape
    """
    if isinstance(raw, BaseServerConfig):
        return raw
    try:
        return _server_config_adapter.validate_python(raw)
    except ValidationError as e:
        issues = _narrow_union_issues(raw, e, name)
        raise ConfigParseError(
            f"Invalid configuration for server '{name}': {', '.join(issues)}", issues
        ) from e


def build_unvalidated_config(raw: Any) -> Optional[ServerConfig]:
    """Build a config from a raw entry without validating it.

    Lets reconciliation carry on with an entry that failed validation. The
    transport is picked by ``command`` first, then ``url``; unknown keys are
    dropped and every other value is taken as written.

    Returns:
        The unchecked config, or None when the entry names no transport
    """
    if isinstance(raw, BaseServerConfig):
        return raw
    if not isinstance(raw, dict):
        return None
    if "command" in raw:
        return StdioServerConfig.model_construct(**raw)
    if "url" in raw:
        return SseServerConfig.model_construct(**raw)
    return None


def parse_settings(data: Any) -> McpSettings:
    """Validate a full settings document.

    Raises:
        ConfigParseError: With one issue per failing field.
    """
    if not isinstance(data, dict):
        raise ConfigParseError("Settings must be a JSON object", ["(root): Expected object"])
    try:
        return McpSettings.model_validate(data)
    except ValidationError as e:
        issues = _settings_issues(data, e)
        raise ConfigParseError(f"Invalid MCP settings: {', '.join(issues)}", issues) from e


def _settings_issues(data: dict, error: ValidationError) -> list[str]:
    # Entry failures are re-reported per server so each names only its own branch.
    servers = data.get("mcpServers")
    issues = []
    reported = set()
    for item in error.errors():
        loc = item.get("loc", ())
        if len(loc) >= 2 and loc[0] == "mcpServers" and isinstance(servers, dict):
            name = loc[1]
            if name in reported:
                continue
            reported.add(name)
            try:
                parse_server_config(servers.get(name), f"mcpServers.{name}")
            except ConfigParseError as entry_error:
                issues.extend(entry_error.issues)
            continue
        issues.append(_format_issue(loc, item, ""))
    return issues


def _narrow_union_issues(raw: Any, error: ValidationError, name: str) -> list[str]:
    # A union failure reports both branches; keep the branch the entry was meant for.
    if isinstance(raw, dict):
        if "command" in raw and "url" not in raw:
            branch = "StdioServerConfig"
        elif "url" in raw and "command" not in raw:
            branch = "SseServerConfig"
        else:
            return [f"{name or '(root)'}: Entry must define exactly one of 'command' or 'url'"]
        kept = [
            _format_issue(item["loc"][1:], item, name)
            for item in error.errors()
            if item.get("loc") and item["loc"][0] == branch
        ]
        if kept:
            return kept
    return format_validation_errors(error, prefix=name)


def config_fingerprint(config: ServerConfig) -> dict:
    """Structural representation used to detect unchanged configurations."""
    return {"type": config.transport_type, **config.model_dump(mode="json", by_alias=True)}
