"""
Lifecycle events emitted while a tool loop runs.

The loop and the tool gateway publish events to a LoopEventStream for
progress display and data-used tracking. Publishing never blocks and never
influences control flow, so the loop can be tested without mocking any
callbacks: drain() the stream afterwards and assert on what it recorded.
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from aianalyst.config.logging import get_logger
from aianalyst.llm.models import StructuredQuestion, ToolResult

logger = get_logger(__name__)


class ToolStarted(BaseModel):
    kind: Literal["tool_started"] = "tool_started"
    name: str
    args: Any = None

    model_config = ConfigDict(frozen=True)


class ToolFinished(BaseModel):
    kind: Literal["tool_finished"] = "tool_finished"
    name: str
    result: ToolResult

    model_config = ConfigDict(frozen=True)


class StructuredQuestionAsked(BaseModel):
    kind: Literal["structured_question"] = "structured_question"
    question: StructuredQuestion

    model_config = ConfigDict(frozen=True)


class GuardrailApplied(BaseModel):
    """A guardrail ran on the candidate answer; ``changed`` tells if it replaced it."""

    kind: Literal["guardrail_applied"] = "guardrail_applied"
    guardrail: str
    changed: bool

    model_config = ConfigDict(frozen=True)


LoopEvent = Annotated[
    Union[ToolStarted, ToolFinished, StructuredQuestionAsked, GuardrailApplied],
    Field(discriminator="kind"),
]

_CLOSED = object()


class LoopEventStream:
    """
    Fire-and-forget event channel backed by an asyncio.Queue.

    Consumers either ``async for event in stream`` (ends after close()) or
    call drain() to collect whatever is queued.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: LoopEvent) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug(f"Event stream full, dropping {event.kind}")

    def close(self) -> None:
        """End iteration for consumers once queued events are read."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # A consumer that drains the queue will still see _closed
            pass

    def drain(self) -> list[LoopEvent]:
        """Remove and return every queued event."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return events
            if item is not _CLOSED:
                events.append(item)

    def __aiter__(self) -> LoopEventStream:
        return self

    async def __anext__(self) -> LoopEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item
