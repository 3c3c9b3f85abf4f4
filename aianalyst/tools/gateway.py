"""
Tool execution gateway.

Sits between the orchestration loop and a ToolRegistry. Every dispatch is
bounded by a deadline and always yields a ToolResult: a tool that raises is
reported back to the model as ``{ok: false, error: ...}`` so one failing tool
informs the conversation instead of aborting it. Only a timeout escapes, as
an OperationTimeoutError labelled "Tool <name>".
"""

from __future__ import annotations

from typing import Any

from aianalyst.config.logging import get_logger
from aianalyst.llm.constants import TOOL_TIMEOUT_SECONDS
from aianalyst.llm.events import LoopEventStream, ToolFinished, ToolStarted
from aianalyst.llm.models import OperationTimeoutError, ToolResult
from aianalyst.llm.timeout import with_timeout
from aianalyst.tools.base import ToolRegistry

logger = get_logger(__name__)


class ToolGateway:
    """
    Args:
        registry: Where tool names are resolved and run
        timeout_seconds: Per-tool deadline
        events: Optional stream receiving ToolStarted / ToolFinished
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout_seconds: float = TOOL_TIMEOUT_SECONDS,
        events: LoopEventStream | None = None,
    ):
        self._registry = registry
        self._timeout_seconds = timeout_seconds
        self._events = events

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def execute(self, name: str, args: Any) -> ToolResult:
        """
        Run one tool.

        Raises:
            OperationTimeoutError: If the tool does not finish in time
        """
        if self._events is not None:
            self._events.emit(ToolStarted(name=name, args=args))

        try:
            result = await with_timeout(
                self._registry.run(name, args),
                self._timeout_seconds,
                f"Tool {name}",
            )
        except OperationTimeoutError:
            raise
        except Exception as e:
            logger.warning(f"Tool '{name}' failed: {e}")
            result = ToolResult.failure(str(e) or "Tool failed")

        if self._events is not None:
            self._events.emit(ToolFinished(name=name, result=result))

        logger.info(f"Tool {name} result: {'SUCCESS' if result.ok else f'FAILED: {result.error}'}")
        return result
