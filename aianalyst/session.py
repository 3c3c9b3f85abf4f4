"""
Analyst conversation session.

An AnalystSession owns one conversation with the analyst: the model-facing
message history, the run lifecycle that decides which turn is current, and
the per-mode limits applied to every follow-up.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from aianalyst.config.logging import get_logger
from aianalyst.config.settings import Settings
from aianalyst.llm.constants import (
    EMPTY_RESPONSE_FALLBACK,
    max_output_tokens_for_model,
    temperature_for_model,
)
from aianalyst.llm.events import LoopEventStream
from aianalyst.llm.lifecycle import RunLifecycle
from aianalyst.llm.models import ChatMessage, LLMError, ToolLoopResult
from aianalyst.llm.orchestrator import LLMOrchestrator
from aianalyst.llm.prompts import AnalystMode, build_system_prompt
from aianalyst.llm.provider import LiteLLMProvider, LLMProvider
from aianalyst.tools.base import ToolRegistry
from aianalyst.tools.gateway import ToolGateway

logger = get_logger(__name__)

# Models sometimes end with a promise to keep working that never arrives
_FILLER_SUFFIX = re.compile(
    r"(?:\s*(?:one moment(?: please)?|hang on|hold on|just a moment)\.?)+\s*$",
    re.IGNORECASE,
)


def strip_filler(text: str) -> str:
    """Remove trailing "one moment please" style filler."""
    return _FILLER_SUFFIX.sub("", text or "").strip()


@dataclass(frozen=True)
class ModeProfile:
    max_tool_calls: int
    max_output_tokens: int
    temperature: float
    loop_settings_mode: bool = False
    expert_reflection: bool = False


def mode_profile(mode: AnalystMode, settings: Settings) -> ModeProfile:
    """Limits and guardrails for a mode, before per-model scaling."""
    loop = settings.loop
    if mode == AnalystMode.LOOP_SETTINGS:
        return ModeProfile(
            max_tool_calls=loop.loop_settings_max_tool_calls,
            max_output_tokens=loop.loop_settings_max_output_tokens,
            temperature=loop.loop_settings_temperature,
            loop_settings_mode=True,
            expert_reflection=True,
        )
    if mode == AnalystMode.USER_BEHAVIOR:
        return ModeProfile(
            max_tool_calls=loop.max_tool_calls,
            max_output_tokens=loop.user_behavior_max_output_tokens,
            temperature=loop.user_behavior_temperature,
        )
    return ModeProfile(
        max_tool_calls=loop.max_tool_calls,
        max_output_tokens=settings.llm.max_output_tokens,
        temperature=settings.llm.temperature,
    )


class AnalystSession:
    """
    One analyst conversation.

    Starting a follow-up supersedes any turn still in flight: the older turn
    finishes silently and its result is discarded.

    Args:
        provider: Model provider
        gateway: Tool gateway the loop dispatches to
        settings: Application settings (model, limits, thresholds)
        mode: Analyst mode selecting prompt, limits and guardrails
        messages: Existing conversation to continue
        events: Optional stream for structured-question and guardrail events
    """

    def __init__(
        self,
        provider: LLMProvider,
        gateway: ToolGateway,
        settings: Settings,
        mode: AnalystMode = AnalystMode.HYPO_DETECTIVE,
        messages: Iterable[ChatMessage] = (),
        events: LoopEventStream | None = None,
    ):
        self.settings = settings
        self.mode = mode
        self.llm_messages: list[ChatMessage] = list(messages)
        self.lifecycle = RunLifecycle()
        self._orchestrator = LLMOrchestrator(
            provider,
            gateway,
            llm_timeout_seconds=settings.llm.timeout_seconds,
            events=events,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: ToolRegistry,
        mode: AnalystMode = AnalystMode.HYPO_DETECTIVE,
        events: LoopEventStream | None = None,
    ) -> AnalystSession:
        """Wire a LiteLLM provider and a gateway over ``registry``."""
        gateway = ToolGateway(
            registry,
            timeout_seconds=settings.loop.tool_timeout_seconds,
            events=events,
        )
        return cls(LiteLLMProvider(settings.llm), gateway, settings, mode=mode, events=events)

    async def send_follow_up(
        self, text: str, max_tool_calls: int | None = None
    ) -> ToolLoopResult | None:
        """
        Send a user message and run the tool loop.

        Args:
            text: The user's message
            max_tool_calls: Override the mode's tool budget

        Returns:
            The loop result with filler stripped, or None when this turn was
            superseded or cancelled before it finished

        Raises:
            ValueError: If the message is empty
            LLMError: If the model call fails or times out
        """
        content = (text or "").strip()
        if not content:
            raise ValueError("Message must not be empty")

        run = self.lifecycle.begin()
        self.llm_messages.append(ChatMessage(role="user", content=content))

        model = self.settings.llm.model
        profile = mode_profile(self.mode, self.settings)
        logger.info(f"Follow-up run #{run.run_id} in {self.mode.value} mode")

        try:
            result = await self._orchestrator.run_tool_loop(
                model=model,
                system_prompt=build_system_prompt(self.mode, self.settings.glucose),
                initial_messages=self.llm_messages,
                run=run,
                max_tool_calls=profile.max_tool_calls if max_tool_calls is None else max_tool_calls,
                max_output_tokens=max_output_tokens_for_model(model, profile.max_output_tokens),
                temperature=temperature_for_model(model, profile.temperature),
                loop_settings_mode=profile.loop_settings_mode,
                expert_reflection=profile.expert_reflection,
            )
        except LLMError as e:
            if run.is_cancelled():
                logger.debug(f"Ignoring error from superseded run #{run.run_id}: {e}")
                return None
            raise

        if result.cancelled or run.is_cancelled():
            logger.debug(f"Run #{run.run_id} was superseded")
            return None

        self.llm_messages = list(result.messages)
        final_text = strip_filler(result.final_text) or EMPTY_RESPONSE_FALLBACK
        return result.model_copy(update={"final_text": final_text})

    def cancel(self) -> None:
        """Cancel the turn in flight, if any."""
        self.lifecycle.cancel()
