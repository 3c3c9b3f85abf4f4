"""
Tool registries.

A registry resolves a tool name to something callable and returns a
ToolResult for every call. Tool names and argument shapes belong to the host
application; the loop only dispatches by name.

- ToolRegistry: abstract interface (async context manager)
- LocalToolRegistry: in-process Python callables registered by name
"""

from __future__ import annotations

import inspect
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from aianalyst.config.logging import get_logger
from aianalyst.llm.models import ToolResult

logger = get_logger(__name__)

ToolHandler = Callable[[Any], Any]


class ToolRegistry(ABC):
    """
    Abstract base class for tool registries.

    Registries provide a uniform interface for running tools, whether they are
    local functions over app data or tools exposed by an MCP server.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the registry (start subprocesses, open connections).

        Raises:
            ConnectionError: If initialization fails
        """

    @abstractmethod
    async def shutdown(self) -> None:
        """Release any resources held by the registry."""

    @abstractmethod
    async def run(self, name: str, args: Any) -> ToolResult:
        """
        Run a tool by name.

        Args:
            name: Tool name as requested by the model
            args: Opaque arguments from the tool_call envelope (may be None)

        Returns:
            ToolResult; unknown tools and tool errors come back as ok=False
        """

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """
        List available tools.

        Returns:
            One dict per tool with at least ``name`` and ``description``
        """

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False


@dataclass(frozen=True)
class _RegisteredTool:
    name: str
    handler: ToolHandler
    description: str
    aliases: tuple[str, ...]


_SNAKE_SEGMENT = re.compile(r"_([a-z0-9])")


def snake_to_camel(name: str) -> str:
    """get_settings_change_history -> getSettingsChangeHistory"""
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), name)


class LocalToolRegistry(ToolRegistry):
    """
    Registry of in-process tool handlers.

    Handlers receive the envelope's ``args`` value and may be sync or async.
    A handler may return a ToolResult directly; any other return value is
    wrapped as a success. Exceptions are captured as failures.

    Example:
        registry = LocalToolRegistry()

        @registry.tool("getCgmSamples", aliases=["getCgmData"])
        async def get_cgm_samples(args):
            return {"count": len(samples)}
    """

    def __init__(self) -> None:
        self._tools: dict[str, _RegisteredTool] = {}
        self._aliases: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        aliases: Iterable[str] = (),
    ) -> None:
        if name in self._tools or name in self._aliases:
            raise ValueError(f"Tool already registered: {name}")
        aliases = tuple(aliases)
        for alias in aliases:
            if alias in self._tools or alias in self._aliases:
                raise ValueError(f"Tool alias already registered: {alias}")
        self._tools[name] = _RegisteredTool(name, handler, description, aliases)
        for alias in aliases:
            self._aliases[alias] = name

    def tool(
        self,
        name: str | None = None,
        *,
        description: str = "",
        aliases: Iterable[str] = (),
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of register(); defaults to the function name."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(
                name or handler.__name__,
                handler,
                description=description or (inspect.getdoc(handler) or ""),
                aliases=aliases,
            )
            return handler

        return decorator

    def resolve(self, name: str) -> str | None:
        """Map a requested name (canonical, alias or snake_case) to a tool name."""
        for candidate in (name, snake_to_camel(name)):
            if candidate in self._tools:
                return candidate
            if candidate in self._aliases:
                return self._aliases[candidate]
        return None

    async def initialize(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    async def run(self, name: str, args: Any) -> ToolResult:
        canonical = self.resolve(name)
        if canonical is None:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolResult.failure(f"Unknown tool: {name}")

        tool = self._tools[canonical]
        logger.debug(f"Calling tool: {canonical} {args!r}")
        started = time.monotonic()
        try:
            value = tool.handler(args)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.error(f"Tool {canonical} FAILED after {elapsed_ms:.0f}ms: {e}")
            return ToolResult.failure(str(e) or "Tool failed")

        if isinstance(value, ToolResult):
            return value
        return ToolResult.success(value)

    async def list_tools(self) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "aliases": list(tool.aliases)}
            for tool in self._tools.values()
        ]
