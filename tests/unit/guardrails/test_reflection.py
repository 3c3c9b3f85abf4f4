"""
Unit tests for the expert-reflection guardrail.
"""

from unittest.mock import AsyncMock

import pytest

from aianalyst.guardrails.context import GuardrailContext
from aianalyst.guardrails.reflection import (
    CRITIQUE_USER_PROMPT,
    EXPERT_REVIEW_SYSTEM_PROMPT,
    maybe_reflect_as_expert,
)
from aianalyst.llm.models import ChatCompletion, ChatMessage, IncompleteResponseError
from aianalyst.llm.provider import LLMProvider

RECOMMENDATION = "I recommend lowering your ISF from 45 to 43 mg/dL. " + " ".join(["context"] * 80)


def _context(provider, *, model="openai/gpt-4o-mini", cancelled=lambda: False) -> GuardrailContext:
    return GuardrailContext.snapshot(
        provider=provider,
        model=model,
        system_prompt="Advisor prompt",
        messages=[ChatMessage(role="user", content="Should I change ISF?")],
        temperature=0.3,
        is_cancelled=cancelled,
    )


@pytest.fixture
def provider():
    return AsyncMock(spec=LLMProvider)


class TestExpertReflection:

    @pytest.mark.asyncio
    async def test_short_text_skipped_without_call(self, provider):
        result = await maybe_reflect_as_expert("I recommend a smaller CR.", _context(provider))

        assert result == "I recommend a smaller CR."
        provider.send_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_long_non_recommendation_skipped(self, provider):
        text = " ".join(["summary"] * 100)
        assert await maybe_reflect_as_expert(text, _context(provider)) == text
        provider.send_chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_approval_makes_single_critique_call(self, provider):
        provider.send_chat.return_value = ChatCompletion(content="No issues found. Approved.")

        result = await maybe_reflect_as_expert(RECOMMENDATION, _context(provider))

        assert result == RECOMMENDATION
        provider.send_chat.assert_awaited_once()
        kwargs = provider.send_chat.call_args.kwargs
        assert kwargs["messages"] == [
            ChatMessage(role="system", content=EXPERT_REVIEW_SYSTEM_PROMPT),
            ChatMessage(role="user", content="Should I change ISF?"),
            ChatMessage(role="assistant", content=RECOMMENDATION),
            ChatMessage(role="user", content=CRITIQUE_USER_PROMPT),
        ]
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_output_tokens"] == 600

    @pytest.mark.asyncio
    async def test_issues_trigger_revision(self, provider):
        provider.send_chat.side_effect = [
            ChatCompletion(content="- Issue: change exceeds 10%\n- Fix: limit to 5%"),
            ChatCompletion(content='{"type":"final","content":"Lower ISF from 45 to 43 (4%)."}'),
        ]

        result = await maybe_reflect_as_expert(RECOMMENDATION, _context(provider))

        assert result == "Lower ISF from 45 to 43 (4%)."
        assert provider.send_chat.await_count == 2
        revision = provider.send_chat.call_args_list[1].kwargs
        assert revision["messages"][0] == ChatMessage(role="system", content="Advisor prompt")
        assert "change exceeds 10%" in revision["messages"][-1].content
        assert revision["temperature"] == 0.3
        assert revision["max_output_tokens"] == 1200

    @pytest.mark.asyncio
    async def test_hedged_approval_triggers_revision(self, provider):
        provider.send_chat.side_effect = [
            ChatCompletion(content="No issues found, however add a monitoring plan."),
            ChatCompletion(content="Revised with monitoring plan."),
        ]

        result = await maybe_reflect_as_expert(RECOMMENDATION, _context(provider))

        assert result == "Revised with monitoring plan."

    @pytest.mark.asyncio
    async def test_reasoning_model_critique_omits_temperature(self, provider):
        provider.send_chat.return_value = ChatCompletion(content="Approved.")

        await maybe_reflect_as_expert(RECOMMENDATION, _context(provider, model="openai/o3"))

        kwargs = provider.send_chat.call_args.kwargs
        assert kwargs["temperature"] is None
        assert kwargs["max_output_tokens"] == 16_384

    @pytest.mark.asyncio
    async def test_cancelled_after_critique_returns_original(self, provider):
        provider.send_chat.return_value = ChatCompletion(content="- Issue: unsafe")

        result = await maybe_reflect_as_expert(
            RECOMMENDATION, _context(provider, cancelled=lambda: True)
        )

        assert result == RECOMMENDATION
        provider.send_chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_truncated_critique_returns_original(self, provider):
        provider.send_chat.side_effect = IncompleteResponseError("cut off", reason="length")

        result = await maybe_reflect_as_expert(RECOMMENDATION, _context(provider))

        assert result == RECOMMENDATION
        provider.send_chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_truncated_revision_returns_original(self, provider):
        provider.send_chat.side_effect = [
            ChatCompletion(content="- Issue: no monitoring plan"),
            IncompleteResponseError("cut off", reason="length"),
        ]

        result = await maybe_reflect_as_expert(RECOMMENDATION, _context(provider))

        assert result == RECOMMENDATION
        assert provider.send_chat.await_count == 2
