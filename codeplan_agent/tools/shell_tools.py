"""Shell tool backend: ``run_command`` in the project root.

Commands run through ``asyncio`` subprocesses with a timeout.  A
non-zero exit is reported as a soft failure whose ``error`` starts with
``Command failed: <command>`` followed by the captured stderr / stdout;
the executor treats that prefix as skippable for ``run_command`` steps.
Output on stderr alone does not mean failure (many build tools print
warnings there).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.tool_registry import SHELL_TOOLS, ToolClient, ToolRegistry

logger = logging.getLogger(__name__)

ApprovalCallback = Callable[[str], Awaitable[bool]]


class ShellClient(ToolClient):
    """Runs shell commands for ``run_command`` steps.

    Args:
        project_root: Default working directory.
        timeout_seconds: Default per-command timeout.
        approval_callback: Optional coroutine asked before every
            command; returning ``False`` rejects it.
    """

    def __init__(
        self,
        project_root: str | Path,
        timeout_seconds: float = 120.0,
        approval_callback: ApprovalCallback | None = None,
    ) -> None:
        self._root = Path(project_root).resolve()
        self._timeout = timeout_seconds
        self._approval_callback = approval_callback

    async def call_tool(self, name: str, args: dict[str, Any]) -> Any:
        if name != "run_command":
            raise ValueError(f"Unknown tool: {name}")
        return await self.run_command(args)

    async def list_tools(self) -> list[dict[str, str]]:
        return [
            {
                "name": "run_command",
                "description": "Run a shell command in the project root.",
            }
        ]

    async def run_command(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{command, workingDirectory?, timeout?}`` -> command output.

        ``timeout`` is in seconds.

        Returns:
            ``{success, stdout, stderr, exitCode, error?}``.
        """
        command = str(args.get("command", ""))
        cwd = args.get("workingDirectory") or str(self._root)
        timeout = float(args.get("timeout") or self._timeout)

        if self._approval_callback is not None:
            if not await self._approval_callback(command):
                return {
                    "success": False,
                    "error": "Command execution was rejected by user",
                }

        logger.info("running command: %s (cwd=%s)", command, cwd)
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return {
                "success": False,
                "stdout": "",
                "stderr": "",
                "exitCode": 1,
                "error": f"Command failed: {command}\n{exc}",
            }

        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("command timed out after %.0fs: %s", timeout, command)
            return {
                "success": False,
                "stdout": "",
                "stderr": "",
                "exitCode": -1,
                "error": f"Command timed out after {timeout:.0f}s: {command}",
            }

        stdout = stdout_raw.decode("utf-8", errors="replace")
        stderr = stderr_raw.decode("utf-8", errors="replace")
        exit_code = process.returncode or 0

        result: dict[str, Any] = {
            "success": exit_code == 0,
            "stdout": stdout,
            "stderr": stderr,
            "exitCode": exit_code,
        }
        if exit_code != 0:
            parts = [f"Command failed: {command}"]
            if stderr.strip():
                parts.append(f"stderr: {stderr.strip()}")
            if stdout.strip():
                parts.append(f"stdout: {stdout.strip()}")
            result["error"] = "\n".join(parts)
            logger.warning("command exited %d: %s", exit_code, command)
        return result

    def __repr__(self) -> str:
        return f"ShellClient(root={str(self._root)!r}, timeout={self._timeout})"


def register_shell_tools(
    registry: ToolRegistry,
    settings: Settings,
    client_name: str = "shell",
    approval_callback: ApprovalCallback | None = None,
) -> ShellClient:
    """Create a ``ShellClient`` and map ``run_command`` to it.

    Returns:
        The registered client.
    """
    client = ShellClient(
        settings.project_root,
        timeout_seconds=settings.command_timeout_seconds,
        approval_callback=approval_callback,
    )
    registry.register_client(client_name, client)
    registry.register_tools(client_name, SHELL_TOOLS)
    return client
