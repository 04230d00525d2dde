"""Unit tests for ToolRegistry."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from codeplan_agent.core.errors import UnregisteredToolError
from codeplan_agent.core.tool_registry import (
    FILE_TOOLS,
    SHELL_TOOLS,
    ToolClient,
    ToolRegistry,
)

# ------------------------------------------------------------------
# Mock client
# ------------------------------------------------------------------


class MockToolClient(ToolClient):
    """Echoes calls back and records them."""

    def __init__(self, label: str = "mock") -> None:
        self.label = label
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def call_tool(self, name: str, args: dict[str, Any]) -> Any:
        self.calls.append((name, args))
        return {"success": True, "client": self.label, "tool": name}

    async def list_tools(self) -> list[dict[str, str]]:
        return [{"name": "echo", "description": "echo"}]


# ==================================================================
# Test classes
# ==================================================================


class TestRegistration:
    """Client and mapping registration."""

    def test_empty_registry(self) -> None:
        registry = ToolRegistry()
        assert registry.tool_names == []
        assert not registry.has_tool("read_file")

    def test_register_tools_maps_all(self) -> None:
        registry = ToolRegistry()
        registry.register_client("file", MockToolClient())
        registry.register_tools("file", FILE_TOOLS)
        assert registry.tool_names == sorted(FILE_TOOLS)
        assert all(registry.has_tool(name) for name in FILE_TOOLS)

    def test_mapping_before_client(self) -> None:
        """A mapping may be registered before its client."""
        registry = ToolRegistry()
        registry.register_tool_mapping("run_command", "shell")
        assert not registry.has_tool("run_command")
        registry.register_client("shell", MockToolClient())
        assert registry.has_tool("run_command")

    def test_client_overwrite(self) -> None:
        registry = ToolRegistry()
        first, second = MockToolClient("a"), MockToolClient("b")
        registry.register_client("file", first)
        registry.register_client("file", second)
        registry.register_tool_mapping("read_file", "file")
        assert registry.resolve("read_file") is second

    def test_repr(self) -> None:
        registry = ToolRegistry()
        registry.register_client("shell", MockToolClient())
        registry.register_tools("shell", SHELL_TOOLS)
        assert repr(registry) == "ToolRegistry(clients=1, tools=1)"


class TestResolution:
    """resolve() and call() behaviour."""

    def test_unknown_tool(self) -> None:
        with pytest.raises(UnregisteredToolError, match="No client registered for tool: x"):
            ToolRegistry().resolve("x")

    def test_mapping_to_missing_client(self) -> None:
        registry = ToolRegistry()
        registry.register_tool_mapping("navigate", "web")
        with pytest.raises(UnregisteredToolError, match="'web'"):
            registry.resolve("navigate")

    def test_call_dispatches_to_client(self) -> None:
        registry = ToolRegistry()
        file_client, shell_client = MockToolClient("file"), MockToolClient("shell")
        registry.register_client("file", file_client)
        registry.register_client("shell", shell_client)
        registry.register_tools("file", FILE_TOOLS)
        registry.register_tools("shell", SHELL_TOOLS)

        result = asyncio.run(registry.call("run_command", {"command": "ls"}))

        assert result["client"] == "shell"
        assert shell_client.calls == [("run_command", {"command": "ls"})]
        assert file_client.calls == []

    def test_call_unregistered_raises(self) -> None:
        with pytest.raises(UnregisteredToolError):
            asyncio.run(ToolRegistry().call("read_file", {}))
