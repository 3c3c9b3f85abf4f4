"""
LLM layer: data model, envelope parser, provider, run lifecycle and the
tool-calling orchestration loop.

The orchestrator is imported from ``aianalyst.llm.orchestrator`` directly,
since it depends on the guardrails package which in turn uses this layer.
"""

from aianalyst.llm.envelope import extract_final_content, parse_tool_envelope
from aianalyst.llm.events import LoopEventStream
from aianalyst.llm.lifecycle import CancellationSignal, RunContext, RunLifecycle
from aianalyst.llm.models import (
    ChatMessage,
    IncompleteResponseError,
    LLMError,
    OperationTimeoutError,
    RunCancelledError,
    ToolLoopResult,
    ToolResult,
)
from aianalyst.llm.provider import LiteLLMProvider, LLMProvider
from aianalyst.llm.timeout import with_timeout

__all__ = [
    "CancellationSignal",
    "ChatMessage",
    "IncompleteResponseError",
    "LLMError",
    "LLMProvider",
    "LiteLLMProvider",
    "LoopEventStream",
    "OperationTimeoutError",
    "RunCancelledError",
    "RunContext",
    "RunLifecycle",
    "ToolLoopResult",
    "ToolResult",
    "extract_final_content",
    "parse_tool_envelope",
    "with_timeout",
]
