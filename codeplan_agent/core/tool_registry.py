"""Tool registry: two-level lookup from tool name to backend client.

Tool backends ("clients") are registered under a client name, and each
tool name is mapped to the client that serves it.  Resolution happens at
call time and fails closed: a tool with no mapping, or a mapping to an
unknown client, raises ``UnregisteredToolError``.

This module depends only on ``core.errors`` and the Python standard
library.  It does not import any other ``core/`` modules.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from codeplan_agent.core.errors import UnregisteredToolError

# Standard tool names served by each bundled client.
FILE_TOOLS: tuple[str, ...] = (
    "read_file",
    "list_directory",
    "create_file",
    "apply_patch",
    "search_code",
    "get_ast",
    "rollback",
    "get_snapshots",
)
SHELL_TOOLS: tuple[str, ...] = ("run_command",)


class ToolClient(ABC):
    """Contract for a tool backend.

    ``call_tool`` returns whatever the tool produces; tools that can
    fail softly return a ``dict`` with ``success`` and ``error`` keys.
    """

    @abstractmethod
    async def call_tool(self, name: str, args: dict[str, Any]) -> Any:
        """Invoke tool *name* with *args* and return its result."""

    @abstractmethod
    async def list_tools(self) -> list[dict[str, str]]:
        """Describe the tools this client serves.

        Returns:
            A list of ``{"name": ..., "description": ...}`` dicts.
        """


class ToolRegistry:
    """Maps tool names to client names to clients.

    Example::

        registry = ToolRegistry()
        registry.register_client("file", LocalFileClient(settings))
        registry.register_tools("file", FILE_TOOLS)
        client = registry.resolve("read_file")
    """

    def __init__(self) -> None:
        self._clients: dict[str, ToolClient] = {}
        self._tool_to_client: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_client(self, name: str, client: ToolClient) -> None:
        """Register *client* under *name*.  Overwrites if it exists."""
        self._clients[name] = client

    def register_tool_mapping(self, tool_name: str, client_name: str) -> None:
        """Route *tool_name* to the client registered as *client_name*.

        The client does not have to be registered yet; the mapping is
        checked when the tool is resolved.
        """
        self._tool_to_client[tool_name] = client_name

    def register_tools(self, client_name: str, tool_names: tuple[str, ...] | list[str]) -> None:
        """Route every name in *tool_names* to *client_name*."""
        for tool_name in tool_names:
            self.register_tool_mapping(tool_name, client_name)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, tool_name: str) -> ToolClient:
        """Return the client serving *tool_name*.

        Raises:
            UnregisteredToolError: If the tool has no mapping, or its
                client name has no registered client.
        """
        client_name = self._tool_to_client.get(tool_name)
        if client_name is None:
            raise UnregisteredToolError(f"No client registered for tool: {tool_name}")

        client = self._clients.get(client_name)
        if client is None:
            raise UnregisteredToolError(
                f"Client {client_name!r} for tool {tool_name!r} is not registered"
            )
        return client

    def has_tool(self, tool_name: str) -> bool:
        """Whether *tool_name* resolves to a registered client."""
        client_name = self._tool_to_client.get(tool_name)
        return client_name is not None and client_name in self._clients

    async def call(self, tool_name: str, args: dict[str, Any]) -> Any:
        """Resolve *tool_name* and invoke it with *args*."""
        return await self.resolve(tool_name).call_tool(tool_name, args)

    @property
    def tool_names(self) -> list[str]:
        """All mapped tool names, sorted."""
        return sorted(self._tool_to_client)

    def __repr__(self) -> str:
        return (
            f"ToolRegistry(clients={len(self._clients)}, "
            f"tools={len(self._tool_to_client)})"
        )
