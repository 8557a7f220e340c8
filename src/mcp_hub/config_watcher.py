"""
Settings file watching and reconciliation triggers.

Changes are detected by polling the file's modification time; a change is
acted on only when the mtime advanced past the last observed value, which
also collapses duplicate notifications for one write.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from .errors import ConfigParseError
from .models import ServerSource
from .provider import AppProvider
from .server_config import parse_settings

if TYPE_CHECKING:
    from .server_manager import McpHub

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 1.0


def _stat_mtime(path: Path) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except FileNotFoundError:
        return None


class FileChangePoller:
    """Polls one path and awaits ``on_change(path)`` when its mtime advances."""

    def __init__(
        self,
        path,
        on_change: Callable[[Path], Awaitable[None]],
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        self.path = Path(path)
        self.on_change = on_change
        self.interval = interval
        self.last_mtime: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self.last_mtime = await asyncio.to_thread(_stat_mtime, self.path)
        self._task = asyncio.create_task(self._run(), name=f"poll-{self.path.name}")

    async def poll(self) -> bool:
        """Check the path once.

        Returns:
            bool: True if the change callback ran
        """
        mtime = await asyncio.to_thread(_stat_mtime, self.path)
        if mtime is None:
            return False
        if self.last_mtime is not None and mtime <= self.last_mtime:
            return False
        self.last_mtime = mtime
        await self.on_change(self.path)
        return True

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll()
            except Exception:
                logger.exception(f"Error handling change of {self.path}")

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class ConfigWatcher:
    """Reads one settings file and keeps the hub reconciled with it."""

    def __init__(
        self,
        hub: "McpHub",
        provider: AppProvider,
        source: ServerSource = ServerSource.GLOBAL,
        settings_path=None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        self.hub = hub
        self.provider = provider
        self.source = ServerSource(source)
        self.settings_path: Optional[Path] = Path(settings_path) if settings_path else None
        self.poll_interval = poll_interval
        self._poller: Optional[FileChangePoller] = None

    async def start(self) -> None:
        """Resolve the settings file, reconcile once, then start polling."""
        if self.settings_path is None:
            self.settings_path = Path(await self.provider.get_mcp_settings_file_path())
        self._poller = FileChangePoller(self.settings_path, self._on_change, self.poll_interval)
        await self._poller.start()
        await self.reload()
        logger.info(f"Watching {self.source.value} MCP settings at {self.settings_path}")

    async def read_servers(self) -> dict:
        """Read the settings file and return its ``mcpServers`` mapping.

        Schema failures are logged per field and the raw mapping is returned
        so reconciliation can proceed best-effort.

        Raises:
            ConfigParseError: If the file cannot be read or is not valid JSON
        """
        if self.settings_path is None:
            raise ConfigParseError("Settings path has not been resolved")
        if not await self.provider.file_exists_at_path(self.settings_path):
            return {}

        try:
            text = await asyncio.to_thread(self.settings_path.read_text, encoding="utf-8")
        except OSError as e:
            raise ConfigParseError(f"Could not read MCP settings {self.settings_path}: {e}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigParseError(f"Invalid JSON in MCP settings {self.settings_path}: {e}") from e

        try:
            return dict(parse_settings(data).mcp_servers)
        except ConfigParseError as e:
            logger.error(f"MCP settings {self.settings_path} failed validation:")
            for issue in e.issues:
                logger.error(f"  {issue}")
            self.provider.log(f"Invalid MCP settings format: {', '.join(e.issues)}")
            raw = data.get("mcpServers") if isinstance(data, dict) else None
            return raw if isinstance(raw, dict) else {}

    async def reload(self) -> bool:
        """Re-read the settings file and reconcile the hub.

        Returns:
            bool: False if the file could not be parsed (connections untouched)
        """
        try:
            servers = await self.read_servers()
        except ConfigParseError as e:
            logger.error(str(e))
            self.provider.log(str(e))
            return False
        await self.hub.update_server_connections(servers, self.source)
        return True

    async def _on_change(self, path: Path) -> None:
        logger.info(f"MCP settings changed: {path}")
        await self.reload()

    async def close(self) -> None:
        if self._poller is not None:
            await self._poller.close()
            self._poller = None
