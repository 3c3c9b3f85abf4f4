"""
LLM Orchestrator: the tool-calling loop.

Drives one conversational run: send the history to the model, interpret its
reply as an envelope, run at most ``max_tool_calls`` tools, post-process the
final answer through the guardrails, and return the full message history.

Data flow:
    caller → run_tool_loop()
                  ↓
        provider.send_chat()  (LLM response deadline)
                  ↓
        parse_tool_envelope()
           ├── tool_call, budget left → ToolGateway.execute() → loop again
           ├── tool_call, budget used → TOOL_LIMIT_MESSAGE  ─┐
           ├── final / unparsable     → candidate answer  ───┤
           │                                                 ↓
           │                          rewrite guardrail → expert reflection
           │                                                 ↓
           └── ask_patient ──────────────────────────→  ToolLoopResult

Design decisions:
- The model speaks a JSON envelope protocol in plain text rather than a
  provider's native tool-calling API, so any chat model works, including
  ones without function calling.
- Tool failures never raise here; the gateway turns them into ToolResults
  and the model sees the error and can adapt.
- Unparsable replies are treated as the final answer instead of failing.
- A truncated model reply ends the run with a fixed apology: retrying the
  same request would likely be truncated again.
- Cancellation is polled around every suspension point. A cancelled run
  returns an empty answer and the history built so far; nothing is rolled
  back and no error is raised.
"""

from __future__ import annotations

from collections.abc import Sequence

from aianalyst.config.logging import get_logger
from aianalyst.guardrails.context import GuardrailContext
from aianalyst.guardrails.loop_settings import maybe_rewrite_loop_settings_response
from aianalyst.guardrails.reflection import maybe_reflect_as_expert
from aianalyst.llm.constants import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MAX_TOOL_CALLS,
    INCOMPLETE_RESPONSE_MESSAGE,
    LLM_TIMEOUT_SECONDS,
    STRUCTURED_QUESTION_FOOTER,
    TOOL_LIMIT_MESSAGE,
)
from aianalyst.llm.envelope import parse_tool_envelope
from aianalyst.llm.events import GuardrailApplied, LoopEventStream, StructuredQuestionAsked
from aianalyst.llm.lifecycle import RunContext
from aianalyst.llm.models import (
    AskPatientEnvelope,
    ChatMessage,
    FinalEnvelope,
    IncompleteResponseError,
    LLMError,
    LoopBudget,
    PatientQuestionOption,
    RunCancelledError,
    StructuredQuestion,
    ToolCallEnvelope,
    ToolLoopResult,
    ToolResult,
)
from aianalyst.llm.provider import LLMProvider
from aianalyst.llm.timeout import with_timeout
from aianalyst.tools.gateway import ToolGateway

logger = get_logger(__name__)


def format_tool_result_message(tool_name: str, result: ToolResult) -> str:
    return f"Tool result ({tool_name}):\n{result.to_json()}"


def format_structured_question(question: str, options: Sequence[PatientQuestionOption]) -> str:
    """Render an ask_patient question as readable Markdown."""
    option_lines = "\n".join(f"**{option.key})** {option.label}" for option in options)
    return f"{question}\n\n{option_lines}\n\n{STRUCTURED_QUESTION_FOOTER}"


class LLMOrchestrator:
    """
    Runs the tool-calling loop for one conversation turn at a time.

    The orchestrator holds no per-run state; each run_tool_loop() call owns
    its own message list and tool budget.

    Args:
        provider: Model provider
        gateway: Tool execution gateway
        llm_timeout_seconds: Deadline for each model call (loop and guardrails)
        events: Optional stream receiving structured-question and guardrail events
    """

    def __init__(
        self,
        provider: LLMProvider,
        gateway: ToolGateway,
        llm_timeout_seconds: float = LLM_TIMEOUT_SECONDS,
        events: LoopEventStream | None = None,
    ):
        self._provider = provider
        self._gateway = gateway
        self._llm_timeout_seconds = llm_timeout_seconds
        self._events = events

    async def run_tool_loop(
        self,
        *,
        model: str,
        system_prompt: str,
        initial_messages: Sequence[ChatMessage],
        run: RunContext,
        max_tool_calls: int = DEFAULT_MAX_TOOL_CALLS,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: float | None = None,
        loop_settings_mode: bool = False,
        expert_reflection: bool = False,
    ) -> ToolLoopResult:
        """
        Run the conversation until the model produces a terminal answer.

        Args:
            model: Model identifier passed to the provider
            system_prompt: Prepended to every main-loop request
            initial_messages: Conversation so far, ending with the user's turn
            run: Identity and cancellation signal of this run
            max_tool_calls: Tool budget for this run
            max_output_tokens: Output limit for main-loop requests
            temperature: Sampling temperature, or None to omit it
            loop_settings_mode: Apply the Loop Settings rewrite guardrail
            expert_reflection: Apply the expert-reflection guardrail

        Returns:
            ToolLoopResult with the final text and the full history. When the
            run is cancelled the text is empty and ``cancelled`` is True.

        Raises:
            OperationTimeoutError: If a model call or tool exceeds its deadline
            LLMError: If the provider fails (other than a truncated response)
        """
        working: list[ChatMessage] = list(initial_messages)
        budget = LoopBudget(max_tool_calls=max_tool_calls)

        while True:
            if run.is_cancelled():
                return self._cancelled(working, budget)

            try:
                raw = await self._send(
                    model, system_prompt, working, temperature, max_output_tokens, run
                )
            except RunCancelledError:
                return self._cancelled(working, budget)
            except IncompleteResponseError:
                if run.is_cancelled():
                    return self._cancelled(working, budget)
                logger.warning("LLM response incomplete (likely max output tokens)")
                working.append(ChatMessage(role="assistant", content=INCOMPLETE_RESPONSE_MESSAGE))
                return ToolLoopResult(
                    final_text=INCOMPLETE_RESPONSE_MESSAGE,
                    messages=working,
                    tool_calls_used=budget.tool_calls_used,
                )
            except LLMError:
                if run.is_cancelled():
                    return self._cancelled(working, budget)
                raise

            if run.is_cancelled():
                return self._cancelled(working, budget)

            envelope = parse_tool_envelope(raw)

            if isinstance(envelope, ToolCallEnvelope) and not budget.exhausted:
                count = budget.consume()
                logger.info(f"Tool call #{count}: {envelope.name} {envelope.args!r}")

                try:
                    result = await self._gateway.execute(envelope.name, envelope.args)
                except LLMError:
                    if run.is_cancelled():
                        return self._cancelled(working, budget)
                    raise

                if run.is_cancelled():
                    return self._cancelled(working, budget)

                working.append(ChatMessage(role="assistant", content=raw))
                working.append(
                    ChatMessage(role="user", content=format_tool_result_message(envelope.name, result))
                )
                continue

            if isinstance(envelope, AskPatientEnvelope):
                logger.info(f"Structured question for patient: {envelope.question}")
                question = StructuredQuestion(question=envelope.question, options=envelope.options)
                if self._events is not None:
                    self._events.emit(StructuredQuestionAsked(question=question))

                working.append(ChatMessage(role="assistant", content=raw))
                return ToolLoopResult(
                    final_text=format_structured_question(envelope.question, envelope.options).strip(),
                    messages=working,
                    structured_question=question,
                    tool_calls_used=budget.tool_calls_used,
                )

            if isinstance(envelope, ToolCallEnvelope):
                logger.warning(f"Tool call limit reached ({max_tool_calls})")
                candidate = TOOL_LIMIT_MESSAGE
            elif isinstance(envelope, FinalEnvelope):
                candidate = envelope.content
            else:
                candidate = raw

            try:
                candidate = await self._apply_guardrails(
                    candidate,
                    model=model,
                    system_prompt=system_prompt,
                    working=working,
                    temperature=temperature,
                    run=run,
                    loop_settings_mode=loop_settings_mode,
                    expert_reflection=expert_reflection,
                )
            except LLMError:
                if run.is_cancelled():
                    return self._cancelled(working, budget)
                raise

            if run.is_cancelled():
                return self._cancelled(working, budget)

            final_text = candidate.strip()
            working.append(ChatMessage(role="assistant", content=final_text))
            return ToolLoopResult(
                final_text=final_text,
                messages=working,
                tool_calls_used=budget.tool_calls_used,
            )

    async def _send(
        self,
        model: str,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        temperature: float | None,
        max_output_tokens: int,
        run: RunContext,
    ) -> str:
        """Send one main-loop request with the system prompt prepended."""
        completion = await with_timeout(
            self._provider.send_chat(
                model=model,
                messages=[ChatMessage(role="system", content=system_prompt), *messages],
                temperature=temperature,
                max_output_tokens=max_output_tokens,
                cancellation_signal=run.signal,
            ),
            self._llm_timeout_seconds,
            "LLM response",
        )
        return (completion.content or "").strip()

    async def _apply_guardrails(
        self,
        candidate: str,
        *,
        model: str,
        system_prompt: str,
        working: Sequence[ChatMessage],
        temperature: float | None,
        run: RunContext,
        loop_settings_mode: bool,
        expert_reflection: bool,
    ) -> str:
        """Rewrite first, then reflect; each runs at most once, on non-empty text."""
        if not candidate or not (loop_settings_mode or expert_reflection):
            return candidate

        ctx = GuardrailContext.snapshot(
            provider=self._provider,
            model=model,
            system_prompt=system_prompt,
            messages=working,
            temperature=temperature,
            is_cancelled=run.is_cancelled,
            cancellation_signal=run.signal,
            timeout_seconds=self._llm_timeout_seconds,
        )

        if loop_settings_mode and candidate:
            rewritten = await maybe_rewrite_loop_settings_response(candidate, ctx)
            self._emit_guardrail("loop_settings_rewrite", candidate, rewritten)
            candidate = rewritten

        if expert_reflection and candidate:
            reflected = await maybe_reflect_as_expert(candidate, ctx)
            self._emit_guardrail("expert_reflection", candidate, reflected)
            candidate = reflected

        return candidate

    def _emit_guardrail(self, name: str, before: str, after: str) -> None:
        if self._events is not None:
            self._events.emit(GuardrailApplied(guardrail=name, changed=before != after))

    @staticmethod
    def _cancelled(working: list[ChatMessage], budget: LoopBudget) -> ToolLoopResult:
        return ToolLoopResult(
            final_text="",
            messages=working,
            tool_calls_used=budget.tool_calls_used,
            cancelled=True,
        )
