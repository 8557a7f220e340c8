"""Shared test doubles for hub, watcher and lifecycle tests."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock


def make_fake_client(tools=None, resources=None, prompts=None, connect_error=None):
    """Build a stand-in for MCPClient with canned discovery results."""
    client = MagicMock()
    client.connect = AsyncMock(side_effect=connect_error)
    client.close = AsyncMock()
    client.list_tools = AsyncMock(return_value=list(tools or []))
    client.list_resources = AsyncMock(return_value=list(resources or []))
    client.list_prompts = AsyncMock(return_value=list(prompts or []))
    client.call_tool = AsyncMock(
        return_value={"content": [{"type": "text", "text": "ok"}], "isError": False}
    )
    client.read_resource = AsyncMock(return_value=[])
    return client


def client_factory(clients_by_name):
    """side_effect for a patched MCPClient class: one fake client per server name.

    Values may be a single client or a list consumed on successive connects.
    """
    created = []

    def factory(name, config, on_transport_error=None):
        entry = clients_by_name.get(name)
        if entry is None:
            entry = make_fake_client()
        elif isinstance(entry, list):
            entry = entry.pop(0)
        entry.name = name
        entry.config = config
        entry.on_transport_error = on_transport_error
        created.append(entry)
        return entry

    factory.created = created
    return factory


def tool(name, description="", input_schema=None):
    return {
        "name": name,
        "description": description,
        "inputSchema": input_schema if input_schema is not None else {"type": "object"},
        "outputSchema": None,
    }


class RecordingProvider:
    """In-memory AppProvider double that records UI messages and log lines."""

    def __init__(self, settings_path=None):
        self.settings_path = settings_path
        self.messages = []
        self.logs = []

    @property
    def app_name(self):
        return "test-app"

    @property
    def app_version(self):
        return "0.0.1"

    async def ensure_directory_exists(self, path):
        return path

    async def get_mcp_settings_file_path(self):
        return self.settings_path

    async def file_exists_at_path(self, path):
        return Path(path).exists()

    async def post_message_to_ui(self, message):
        self.messages.append(message)

    def log(self, message):
        self.logs.append(message)
