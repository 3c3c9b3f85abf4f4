"""
MCP-backed tool registry.

Spawns an MCP server as a subprocess and runs its tools via JSON-RPC over
stdio, so data tools can live outside this process (e.g. a Nightscout data
server).
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client

from aianalyst.config.logging import get_logger
from aianalyst.llm.models import ToolResult
from aianalyst.tools.base import ToolRegistry

logger = get_logger(__name__)


class McpToolRegistry(ToolRegistry):
    """
    Tool registry served by an MCP server subprocess.

    Args:
        command: Executable that starts the server, e.g. "node"
        args: Arguments for the command, e.g. ["dist/index.js"]
        env: Extra environment for the subprocess
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        env: dict[str, str] | None = None,
    ):
        if not command:
            raise ValueError("MCP server command not specified")
        self._command = command
        self._args = list(args)
        self._env = env

        self._initialized = False
        self._session: ClientSession | None = None
        self._stdio_context = None
        self._session_context = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Start the MCP server subprocess and perform the handshake."""
        if self._initialized:
            return

        server_params = StdioServerParameters(
            command=self._command,
            args=self._args,
            env=self._env,
        )

        self._stdio_context = stdio_client(server_params)
        read_stream, write_stream = await self._stdio_context.__aenter__()

        self._session_context = ClientSession(read_stream, write_stream)
        self._session = await self._session_context.__aenter__()

        await self._session.initialize()
        self._initialized = True
        logger.info(f"MCP tool server started: {self._command} {' '.join(self._args)}")

    async def shutdown(self) -> None:
        """Close the session and terminate the subprocess."""
        if not self._initialized:
            return

        if self._session_context is not None:
            await self._session_context.__aexit__(None, None, None)
            self._session_context = None
            self._session = None

        if self._stdio_context is not None:
            await self._stdio_context.__aexit__(None, None, None)
            self._stdio_context = None

        self._initialized = False

    async def run(self, name: str, args: Any) -> ToolResult:
        if not self._initialized:
            logger.error(f"MCP tool {name} requested before the registry was initialized")
            return ToolResult.failure("Tool registry not initialized")

        arguments = args if isinstance(args, dict) else {}
        try:
            result = await self._session.call_tool(name, arguments)
        except Exception as e:
            logger.error(f"MCP tool {name} FAILED: {e}")
            return ToolResult.failure(str(e) or f"Tool {name} failed")

        # MCP returns content as a list of blocks; only text blocks matter here
        text = " ".join(
            content.text for content in result.content if hasattr(content, "text")
        )

        if result.isError:
            logger.warning(f"MCP tool {name} reported an error: {text}")
            return ToolResult.failure(text or f"Tool {name} failed")

        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = text
        return ToolResult.success(payload)

    async def list_tools(self) -> list[dict[str, Any]]:
        if not self._initialized:
            raise RuntimeError("Tool registry not initialized")

        result = await self._session.list_tools()
        return [
            {
                "name": tool.name,
                "description": tool.description or "",
                "input_schema": tool.inputSchema,
            }
            for tool in result.tools
        ]
