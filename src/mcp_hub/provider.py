"""Application provider interface

The hub never touches application concerns directly. Everything it needs from
the embedding application (where settings live, how to notify the UI, where
to log) goes through an ``AppProvider``.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from .config import AppConfig
from .server_config import DEFAULT_SETTINGS

logger = logging.getLogger(__name__)

SETTINGS_FILE_NAME = "mcp_settings.json"


class AppProvider(ABC):
    """Abstract base class for applications embedding the hub"""

    @property
    @abstractmethod
    def app_name(self) -> str:
        pass

    @property
    @abstractmethod
    def app_version(self) -> str:
        pass

    @abstractmethod
    async def ensure_directory_exists(self, path) -> Path:
        """Create the directory if needed

        Returns:
            Path: Absolute path of the directory
        """
        pass

    @abstractmethod
    async def get_mcp_settings_file_path(self) -> Path:
        """Return the settings file path, creating a default file if missing"""
        pass

    @abstractmethod
    async def file_exists_at_path(self, path) -> bool:
        pass

    @abstractmethod
    async def post_message_to_ui(self, message: dict) -> None:
        pass

    @abstractmethod
    def log(self, message: str) -> None:
        pass


class DefaultAppProvider(AppProvider):
    """Provider backed by a settings directory on disk."""

    def __init__(
        self,
        settings_dir,
        app_name: str = "mcp-hub",
        app_version: str = "0.1.0",
        ui_callback: Optional[Callable[[dict], None]] = None,
    ):
        self.settings_dir = Path(settings_dir).expanduser()
        self._app_name = app_name
        self._app_version = app_version
        self._ui_callback = ui_callback

    @classmethod
    def from_config(
        cls, config: AppConfig, ui_callback: Optional[Callable[[dict], None]] = None
    ) -> "DefaultAppProvider":
        """Build a provider for the settings directory and identity in ``config``."""
        return cls(config.settings_dir, config.app_name, config.app_version, ui_callback)

    @property
    def app_name(self) -> str:
        return self._app_name

    @property
    def app_version(self) -> str:
        return self._app_version

    async def ensure_directory_exists(self, path) -> Path:
        resolved = Path(path).expanduser().resolve()
        await asyncio.to_thread(resolved.mkdir, parents=True, exist_ok=True)
        return resolved

    async def get_mcp_settings_file_path(self) -> Path:
        directory = await self.ensure_directory_exists(self.settings_dir)
        settings_path = directory / SETTINGS_FILE_NAME
        if not await self.file_exists_at_path(settings_path):
            logger.info(f"Creating default MCP settings file at {settings_path}")
            await asyncio.to_thread(
                settings_path.write_text, json.dumps(DEFAULT_SETTINGS, indent=2)
            )
        return settings_path

    async def file_exists_at_path(self, path) -> bool:
        return await asyncio.to_thread(Path(path).exists)

    async def post_message_to_ui(self, message: dict) -> None:
        if self._ui_callback is None:
            logger.debug(f"UI message dropped (no UI attached): {message.get('type')}")
            return
        self._ui_callback(message)

    def log(self, message: str) -> None:
        logger.info(f"[{self._app_name}] {message}")
