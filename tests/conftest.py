import pytest

import mcp_hub
from mcp_hub.config import reset_config
from mcp_hub.runtime import reset_runtime


def _clear_registry():
    with mcp_hub._registry_lock:
        mcp_hub._registry = None


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset configuration, runtime and registry state around each test."""
    reset_config()
    reset_runtime()
    _clear_registry()
    yield
    reset_config()
    reset_runtime()
    _clear_registry()
