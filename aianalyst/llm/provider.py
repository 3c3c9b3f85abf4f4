"""
Model provider contract and its LiteLLM implementation.

The tool loop only needs one operation from a provider: send a list of chat
messages and get text back. LiteLLMProvider routes that to any backend
LiteLLM supports (OpenAI, Anthropic, local Ollama models, ...) by model
string, so switching provider is a config change.

Retries happen at two levels. LiteLLM retries rate limits, server errors and
transport timeouts itself (num_retries). Replies that come back empty, or
truncated to nothing, are retried here with a short linear backoff.

Two failure kinds matter to the loop once retries are used up:
- IncompleteResponseError: the model hit its output-token limit and returned
  nothing usable. The loop answers with a fixed apology instead of failing.
- LLMError: anything else. Propagates to the caller.

An empty reply that survives every retry is returned as-is; the session
replaces it with a fallback prompt.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from litellm import acompletion

from aianalyst.config.logging import get_logger
from aianalyst.config.settings import LLMSettings
from aianalyst.llm.lifecycle import CancellationSignal
from aianalyst.llm.models import (
    ChatCompletion,
    ChatMessage,
    IncompleteResponseError,
    LLMError,
    RunCancelledError,
)

logger = get_logger(__name__)

# finish_reason values LiteLLM reports for output cut off by the token limit
_TRUNCATION_REASONS = frozenset({"length", "max_tokens", "max_output_tokens"})


class LLMProvider(ABC):
    """Abstract chat-completion provider."""

    @abstractmethod
    async def send_chat(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        cancellation_signal: CancellationSignal | None = None,
    ) -> ChatCompletion:
        """
        Send one chat request.

        Args:
            model: Model identifier
            messages: Full message list, system prompt first
            temperature: Sampling temperature, or None to omit it
            max_output_tokens: Output token limit, or None to omit it
            cancellation_signal: When set, a pending request is released as
                soon as the signal fires

        Returns:
            The completion text

        Raises:
            IncompleteResponseError: If the output was truncated to nothing
                on every attempt
            RunCancelledError: If the signal fired before the response arrived
            LLMError: On any other failure
        """


class LiteLLMProvider(LLMProvider):
    """
    Provider backed by litellm.acompletion().

    Args:
        settings: LLM configuration (API key; model and limits are per call)
    """

    def __init__(self, settings: LLMSettings):
        self._settings = settings

    async def send_chat(
        self,
        *,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        cancellation_signal: CancellationSignal | None = None,
    ) -> ChatCompletion:
        # Better error message than a cryptic 401
        if not self._settings.api_key:
            raise LLMError("API key not configured. Set LLM__API_KEY in your environment.")

        call_kwargs: dict[str, Any] = {
            "model": model,
            "messages": [message.to_dict() for message in messages],
            "api_key": self._settings.api_key,
            "num_retries": self._settings.num_retries,
        }
        # Reasoning models reject these, so they are only sent when given
        if temperature is not None:
            call_kwargs["temperature"] = temperature
        if max_output_tokens is not None:
            call_kwargs["max_tokens"] = max_output_tokens

        attempts = self._settings.empty_response_retries + 1
        completion: ChatCompletion | None = None
        incomplete: IncompleteResponseError | None = None

        for attempt in range(attempts):
            if attempt:
                kind = "incomplete" if incomplete is not None else "empty"
                logger.warning(
                    f"Retrying LLM request after {kind} response "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                await self._pause(self._settings.retry_delay_seconds * attempt, cancellation_signal)

            try:
                completion = await self._send_once(call_kwargs, model, cancellation_signal)
            except IncompleteResponseError as e:
                incomplete = e
                continue

            incomplete = None
            if completion.content.strip():
                return completion

        if incomplete is not None:
            raise incomplete

        logger.warning(f"LLM returned an empty response after {attempts} attempt(s)")
        return completion

    async def _pause(self, seconds: float, cancellation_signal: CancellationSignal | None) -> None:
        if cancellation_signal is not None:
            await cancellation_signal.guard(asyncio.sleep(seconds))
        else:
            await asyncio.sleep(seconds)

    async def _send_once(
        self,
        call_kwargs: dict[str, Any],
        model: str,
        cancellation_signal: CancellationSignal | None,
    ) -> ChatCompletion:
        """One acompletion() call, unpacked into a ChatCompletion."""
        request = acompletion(**call_kwargs)
        try:
            if cancellation_signal is not None:
                response = await cancellation_signal.guard(request)
            else:
                response = await request
        except RunCancelledError:
            raise
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}", cause=e)

        try:
            choice = response.choices[0]
            content = choice.message.content or ""
            finish_reason = getattr(choice, "finish_reason", None)
        except (AttributeError, IndexError, TypeError) as e:
            raise LLMError("LLM returned no choices", cause=e)

        if not isinstance(finish_reason, str):
            finish_reason = None
        response_model = getattr(response, "model", None)

        if finish_reason in _TRUNCATION_REASONS:
            if not content.strip():
                raise IncompleteResponseError(
                    f"LLM response not completed (reason={finish_reason})",
                    reason=finish_reason,
                )
            logger.warning(
                f"LLM response truncated (reason={finish_reason}); using partial content"
            )

        return ChatCompletion(
            content=content,
            model=response_model if isinstance(response_model, str) else model,
            finish_reason=finish_reason,
        )
