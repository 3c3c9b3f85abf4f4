"""
Read-only view of the loop state handed to each guardrail.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from aianalyst.llm.constants import LLM_TIMEOUT_SECONDS
from aianalyst.llm.lifecycle import CancellationSignal
from aianalyst.llm.models import ChatMessage
from aianalyst.llm.provider import LLMProvider


@dataclass(frozen=True)
class GuardrailContext:
    """
    Everything a guardrail needs to make its own model calls.

    Guardrails never touch the loop's message list; ``working_messages`` is
    a tuple snapshot and the only output of a guardrail is its return value.
    """

    provider: LLMProvider
    model: str
    system_prompt: str
    working_messages: tuple[ChatMessage, ...]
    temperature: float | None
    is_cancelled: Callable[[], bool]
    cancellation_signal: CancellationSignal | None = None
    timeout_seconds: float = field(default=LLM_TIMEOUT_SECONDS)

    @classmethod
    def snapshot(
        cls,
        *,
        provider: LLMProvider,
        model: str,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        temperature: float | None,
        is_cancelled: Callable[[], bool],
        cancellation_signal: CancellationSignal | None = None,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
    ) -> GuardrailContext:
        return cls(
            provider=provider,
            model=model,
            system_prompt=system_prompt,
            working_messages=tuple(messages),
            temperature=temperature,
            is_cancelled=is_cancelled,
            cancellation_signal=cancellation_signal,
            timeout_seconds=timeout_seconds,
        )
