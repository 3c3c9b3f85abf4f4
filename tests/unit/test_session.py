"""
Unit tests for AnalystSession.

Tests cover:
- Per-mode limits, temperature and guardrails
- History bookkeeping across follow-ups
- Filler stripping and the empty-response fallback
- Superseded and cancelled turns
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from aianalyst.config.settings import Settings
from aianalyst.llm.constants import EMPTY_RESPONSE_FALLBACK
from aianalyst.llm.models import ChatCompletion, ChatMessage, LLMError
from aianalyst.llm.prompts import AnalystMode, build_system_prompt
from aianalyst.llm.provider import LLMProvider
from aianalyst.session import AnalystSession, mode_profile, strip_filler
from aianalyst.tools.base import LocalToolRegistry
from aianalyst.tools.gateway import ToolGateway


def _final(content: str) -> ChatCompletion:
    return ChatCompletion(content=json.dumps({"type": "final", "content": content}))


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def provider():
    return AsyncMock(spec=LLMProvider)


@pytest.fixture
def gateway():
    registry = LocalToolRegistry()
    registry.register("getCgmSamples", lambda args: {"count": 10})
    return ToolGateway(registry)


def _session(provider, gateway, settings, mode=AnalystMode.HYPO_DETECTIVE) -> AnalystSession:
    return AnalystSession(provider, gateway, settings, mode=mode)


class TestModeProfiles:

    @pytest.mark.asyncio
    async def test_default_mode_limits(self, provider, gateway, settings):
        provider.send_chat.return_value = _final("ok")

        await _session(provider, gateway, settings).send_follow_up("How are my lows?")

        kwargs = provider.send_chat.call_args.kwargs
        assert kwargs["max_output_tokens"] == 800
        assert kwargs["temperature"] == 0.2
        assert kwargs["messages"][0].content == build_system_prompt(
            AnalystMode.HYPO_DETECTIVE, settings.glucose
        )

    @pytest.mark.asyncio
    async def test_user_behavior_mode_limits(self, provider, gateway, settings):
        provider.send_chat.return_value = _final("ok")

        await _session(provider, gateway, settings, AnalystMode.USER_BEHAVIOR).send_follow_up(
            "What habits hurt my TIR?"
        )

        kwargs = provider.send_chat.call_args.kwargs
        assert kwargs["max_output_tokens"] == 1200
        assert kwargs["temperature"] == 0.4

    @pytest.mark.asyncio
    async def test_loop_settings_mode_enables_guardrails(self, provider, gateway, settings):
        provider.send_chat.side_effect = [
            _final("Reduce your basal rate by 0.1 U/hr."),
            _final("Lower ISF by 5%; TIR 70% vs 75%."),
        ]

        result = await _session(
            provider, gateway, settings, AnalystMode.LOOP_SETTINGS
        ).send_follow_up("Are my settings right?")

        assert result.final_text == "Lower ISF by 5%; TIR 70% vs 75%."
        first = provider.send_chat.call_args_list[0].kwargs
        assert first["max_output_tokens"] == 2000
        assert first["temperature"] == 0.3

    def test_loop_settings_profile(self, settings):
        profile = mode_profile(AnalystMode.LOOP_SETTINGS, settings)
        assert profile.max_tool_calls == 20
        assert profile.loop_settings_mode and profile.expert_reflection

    def test_default_profile_has_no_guardrails(self, settings):
        profile = mode_profile(AnalystMode.HYPO_DETECTIVE, settings)
        assert profile.max_tool_calls == 4
        assert not profile.loop_settings_mode
        assert not profile.expert_reflection

    @pytest.mark.asyncio
    async def test_reasoning_model_scaling(self, provider, gateway):
        settings = Settings(_env_file=None, llm={"model": "openai/o4-mini"})
        provider.send_chat.return_value = _final("ok")

        await _session(provider, gateway, settings).send_follow_up("Hi")

        kwargs = provider.send_chat.call_args.kwargs
        assert kwargs["temperature"] is None
        assert kwargs["max_output_tokens"] == 16_384

    @pytest.mark.asyncio
    async def test_max_tool_calls_override(self, provider, gateway, settings):
        provider.send_chat.side_effect = [
            ChatCompletion(content='{"type":"tool_call","name":"getCgmSamples","args":{}}'),
            _final("unused"),
        ]

        result = await _session(provider, gateway, settings).send_follow_up("Hi", max_tool_calls=0)

        assert result.tool_calls_used == 0
        assert provider.send_chat.await_count == 1


class TestFollowUps:

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, provider, gateway, settings):
        session = _session(provider, gateway, settings)
        with pytest.raises(ValueError):
            await session.send_follow_up("   ")
        assert session.llm_messages == []

    @pytest.mark.asyncio
    async def test_history_accumulates(self, provider, gateway, settings):
        provider.send_chat.side_effect = [
            ChatCompletion(content='{"type":"tool_call","name":"getCgmSamples","args":{}}'),
            _final("First answer."),
            _final("Second answer."),
        ]
        session = _session(provider, gateway, settings)

        await session.send_follow_up("First question")
        result = await session.send_follow_up("Second question")

        assert result.final_text == "Second answer."
        roles = [m.role for m in session.llm_messages]
        assert roles == ["user", "assistant", "user", "assistant", "user", "assistant"]
        assert session.llm_messages[-2] == ChatMessage(role="user", content="Second question")

    @pytest.mark.asyncio
    async def test_filler_is_stripped(self, provider, gateway, settings):
        provider.send_chat.return_value = _final("Your TIR is 80%. One moment please.")

        result = await _session(provider, gateway, settings).send_follow_up("TIR?")

        assert result.final_text == "Your TIR is 80%."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", ["", "Hang on.", "One moment please. Just a moment."])
    async def test_empty_answer_gets_fallback(self, provider, gateway, settings, reply):
        provider.send_chat.return_value = ChatCompletion(content=reply)

        result = await _session(provider, gateway, settings).send_follow_up("Continue")

        assert result.final_text == EMPTY_RESPONSE_FALLBACK

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Done. Hold on.", "Done."),
            ("Checking now, one moment", "Checking now,"),
            ("A moment of clarity.", "A moment of clarity."),
        ],
    )
    def test_strip_filler(self, text, expected):
        assert strip_filler(text) == expected


class TestSupersededTurns:

    @pytest.mark.asyncio
    async def test_newer_follow_up_wins(self, provider, gateway, settings):
        release_first = asyncio.Event()
        first_started = asyncio.Event()

        async def reply(**kwargs):
            if provider.send_chat.await_count == 1:
                first_started.set()
                await release_first.wait()
                return _final("Stale answer.")
            return _final("Fresh answer.")

        provider.send_chat.side_effect = reply
        session = _session(provider, gateway, settings)

        first = asyncio.create_task(session.send_follow_up("First"))
        await first_started.wait()
        second = await session.send_follow_up("Second")
        release_first.set()

        assert await first is None
        assert second.final_text == "Fresh answer."
        assert session.llm_messages[-1] == ChatMessage(role="assistant", content="Fresh answer.")

    @pytest.mark.asyncio
    async def test_cancel_discards_turn(self, provider, gateway, settings):
        session = _session(provider, gateway, settings)

        async def reply(**kwargs):
            session.cancel()
            return _final("Too late.")

        provider.send_chat.side_effect = reply

        assert await session.send_follow_up("Hello") is None
        assert session.llm_messages == [ChatMessage(role="user", content="Hello")]

    @pytest.mark.asyncio
    async def test_error_from_stale_turn_is_silent(self, provider, gateway, settings):
        session = _session(provider, gateway, settings)

        async def reply(**kwargs):
            session.cancel()
            raise LLMError("connection reset")

        provider.send_chat.side_effect = reply

        assert await session.send_follow_up("Hello") is None

    @pytest.mark.asyncio
    async def test_error_from_current_turn_propagates(self, provider, gateway, settings):
        provider.send_chat.side_effect = LLMError("LLM API call failed: 401")

        with pytest.raises(LLMError, match="401"):
            await _session(provider, gateway, settings).send_follow_up("Hello")


class TestFromSettings:

    def test_builds_session(self, settings):
        session = AnalystSession.from_settings(
            settings, LocalToolRegistry(), mode=AnalystMode.LOOP_SETTINGS
        )
        assert session.mode == AnalystMode.LOOP_SETTINGS
        assert session.llm_messages == []
