"""
Unit tests for the Loop Settings rewrite guardrail.
"""

from unittest.mock import AsyncMock

import pytest

from aianalyst.guardrails.context import GuardrailContext
from aianalyst.guardrails.loop_settings import (
    build_rewrite_instruction,
    maybe_rewrite_loop_settings_response,
)
from aianalyst.llm.models import (
    ChatCompletion,
    ChatMessage,
    IncompleteResponseError,
    RunCancelledError,
)
from aianalyst.llm.provider import LLMProvider


def _context(provider, *, model="openai/gpt-4o-mini", cancelled=lambda: False) -> GuardrailContext:
    return GuardrailContext.snapshot(
        provider=provider,
        model=model,
        system_prompt="Loop Settings Advisor prompt",
        messages=[ChatMessage(role="user", content="Are my settings right?")],
        temperature=0.3,
        is_cancelled=cancelled,
    )


@pytest.fixture
def provider():
    return AsyncMock(spec=LLMProvider)


class TestRewriteGuardrail:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text",
        [
            "Your ISF of 45 looks right; TIR improved from 70% to 76%.",
            "Consider a 5% CR change at breakfast.",
            "",
        ],
    )
    async def test_clean_text_is_unchanged_without_model_call(self, provider, text):
        assert await maybe_rewrite_loop_settings_response(text, _context(provider)) == text
        provider.send_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_basal_recommendation_is_rewritten(self, provider):
        provider.send_chat.return_value = ChatCompletion(
            content='{"type":"final","content":"Lower ISF by 5%; TIR 70% vs 76%."}'
        )
        text = "Lower your basal rate by 10%."

        result = await maybe_rewrite_loop_settings_response(text, _context(provider))

        assert result == "Lower ISF by 5%; TIR 70% vs 76%."
        provider.send_chat.assert_awaited_once()
        kwargs = provider.send_chat.call_args.kwargs
        messages = kwargs["messages"]
        assert messages[0] == ChatMessage(role="system", content="Loop Settings Advisor prompt")
        assert messages[1].content == "Are my settings right?"
        assert messages[-1] == ChatMessage(role="user", content=build_rewrite_instruction(text))
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_output_tokens"] == 1200

    @pytest.mark.asyncio
    async def test_placeholder_answer_is_rewritten(self, provider):
        provider.send_chat.return_value = ChatCompletion(content="Plain rewritten text")

        result = await maybe_rewrite_loop_settings_response(
            "Change ISF from [X] to [Y].", _context(provider)
        )

        assert result == "Plain rewritten text"

    @pytest.mark.asyncio
    async def test_reasoning_model_gets_larger_limit(self, provider):
        provider.send_chat.return_value = ChatCompletion(content="ok")

        await maybe_rewrite_loop_settings_response("basal", _context(provider, model="openai/o4-mini"))

        assert provider.send_chat.call_args.kwargs["max_output_tokens"] == 16_384

    @pytest.mark.asyncio
    async def test_cancelled_during_call_returns_original(self, provider):
        provider.send_chat.return_value = ChatCompletion(content="rewritten")

        result = await maybe_rewrite_loop_settings_response(
            "basal rate", _context(provider, cancelled=lambda: True)
        )

        assert result == "basal rate"

    @pytest.mark.asyncio
    async def test_released_call_returns_original(self, provider):
        provider.send_chat.side_effect = RunCancelledError()

        result = await maybe_rewrite_loop_settings_response("basal rate", _context(provider))

        assert result == "basal rate"

    @pytest.mark.asyncio
    async def test_truncated_rewrite_returns_original(self, provider):
        provider.send_chat.side_effect = IncompleteResponseError("cut off", reason="length")

        result = await maybe_rewrite_loop_settings_response("basal rate", _context(provider))

        assert result == "basal rate"

    def test_instruction_quotes_answer(self):
        instruction = build_rewrite_instruction("My answer")
        assert "Do NOT recommend basal schedule changes" in instruction
        assert instruction.endswith("Your last answer:\nMy answer")
