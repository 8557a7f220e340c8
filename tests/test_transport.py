"""Tests for the stdio and sse transports."""

import os
import unittest
from contextlib import asynccontextmanager
from unittest.mock import MagicMock, patch

from mcp_hub.errors import ServerConnectionError
from mcp_hub.server_config import parse_server_config
from mcp_hub.transport import SseTransport, StdioTransport, create_transport


class FakeClientSession:
    """Async context manager standing in for mcp.ClientSession."""

    instances = []

    def __init__(self, read_stream, write_stream):
        self.read_stream = read_stream
        self.write_stream = write_stream
        self.crash_on_exit = False
        self.exited = False
        FakeClientSession.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.exited = True
        if self.crash_on_exit:
            raise ConnectionResetError("server went away")
        return False


def _fake_streams(opened):
    @asynccontextmanager
    async def open_streams(*args, **kwargs):
        opened.append((args, kwargs))
        yield ("read", "write")

    return open_streams


@asynccontextmanager
async def _failing_streams(*args, **kwargs):
    raise FileNotFoundError("no such command: missing-binary")
    yield  # pragma: no cover


class TestCreateTransport(unittest.TestCase):
    def test_stdio_config(self):
        config = parse_server_config({"command": "echo"}, "a")
        transport = create_transport("a", config)
        self.assertIsInstance(transport, StdioTransport)
        self.assertEqual(transport.kind, "stdio")

    def test_sse_config(self):
        config = parse_server_config({"url": "http://localhost:8080/sse"}, "b")
        transport = create_transport("b", config)
        self.assertIsInstance(transport, SseTransport)
        self.assertEqual(transport.kind, "sse")

    def test_unknown_config(self):
        with self.assertRaises(ValueError):
            create_transport("c", {"command": "echo"})


class TestStdioParameters(unittest.TestCase):
    def test_parameters_carry_command_args_and_cwd(self):
        config = parse_server_config(
            {"command": "node", "args": ["server.js", "--port", "1"], "cwd": "/srv"}, "node"
        )
        params = StdioTransport("node", config).build_parameters()
        self.assertEqual(params.command, "node")
        self.assertEqual(params.args, ["server.js", "--port", "1"])
        self.assertEqual(str(params.cwd), "/srv")

    def test_ambient_environment_overrides_server_env(self):
        config = parse_server_config(
            {"command": "node", "env": {"MCP_HUB_TEST_VAR": "from-config", "ONLY_CONFIG": "1"}},
            "node",
        )
        with patch.dict(os.environ, {"MCP_HUB_TEST_VAR": "from-process"}):
            params = StdioTransport("node", config).build_parameters()
        self.assertEqual(params.env["MCP_HUB_TEST_VAR"], "from-process")
        self.assertEqual(params.env["ONLY_CONFIG"], "1")


class TestTransportLifecycle(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        FakeClientSession.instances = []
        self.config = parse_server_config({"command": "echo", "args": ["x"]}, "a")

    async def test_connect_and_close(self):
        opened = []
        with (
            patch("mcp_hub.transport.stdio_client", _fake_streams(opened)),
            patch("mcp_hub.transport.ClientSession", FakeClientSession),
        ):
            transport = StdioTransport("a", self.config)
            session = await transport.connect()

            self.assertIs(session, FakeClientSession.instances[0])
            self.assertEqual(session.read_stream, "read")
            self.assertTrue(transport.is_open)
            self.assertEqual(len(opened), 1)

            await transport.close()

        self.assertTrue(session.exited)
        self.assertFalse(transport.is_open)
        self.assertIsNone(transport.session)

    async def test_connect_twice_is_rejected(self):
        with (
            patch("mcp_hub.transport.stdio_client", _fake_streams([])),
            patch("mcp_hub.transport.ClientSession", FakeClientSession),
        ):
            transport = StdioTransport("a", self.config)
            await transport.connect()
            with self.assertRaises(ServerConnectionError):
                await transport.connect()
            await transport.close()

    async def test_connect_failure_propagates(self):
        on_error = MagicMock()
        with patch("mcp_hub.transport.stdio_client", _failing_streams):
            transport = StdioTransport("a", self.config, on_error=on_error)
            with self.assertRaises(FileNotFoundError):
                await transport.connect()
            await transport.close()
        on_error.assert_not_called()

    async def test_termination_after_connect_reports_error(self):
        on_error = MagicMock()
        with (
            patch("mcp_hub.transport.stdio_client", _fake_streams([])),
            patch("mcp_hub.transport.ClientSession", FakeClientSession),
        ):
            transport = StdioTransport("a", self.config, on_error=on_error)
            session = await transport.connect()
            session.crash_on_exit = True

            # Stream loss without a close() request
            transport._stop.set()
            await transport._task

        on_error.assert_called_once()
        self.assertIsInstance(on_error.call_args.args[0], ConnectionResetError)
        self.assertIsNone(transport.session)

    async def test_close_does_not_report_error(self):
        on_error = MagicMock()
        with (
            patch("mcp_hub.transport.stdio_client", _fake_streams([])),
            patch("mcp_hub.transport.ClientSession", FakeClientSession),
        ):
            transport = StdioTransport("a", self.config, on_error=on_error)
            session = await transport.connect()
            session.crash_on_exit = True
            await transport.close()

        on_error.assert_not_called()

    async def test_sse_passes_url_and_headers(self):
        opened = []
        config = parse_server_config(
            {"url": "http://localhost:8080/sse", "headers": {"Authorization": "Bearer t"}}, "b"
        )
        with (
            patch("mcp_hub.transport.sse_client", _fake_streams(opened)),
            patch("mcp_hub.transport.ClientSession", FakeClientSession),
        ):
            transport = SseTransport("b", config)
            await transport.connect()
            await transport.close()

        args, kwargs = opened[0]
        self.assertEqual(args[0], "http://localhost:8080/sse")
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer t"})


if __name__ == "__main__":
    unittest.main()
