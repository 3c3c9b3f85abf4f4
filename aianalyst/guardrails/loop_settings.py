"""
Loop Settings Advisor rewrite guardrail.

After a final answer is produced in Loop Settings mode, two cheap detectors
look for:
  1. basal-rate recommendations (forbidden for Loop users)
  2. template placeholders such as [X] or [Your current ISF]

If either fires, one more model call rewrites the answer under explicit
constraints. Otherwise the answer passes through untouched.
"""

from __future__ import annotations

from aianalyst.config.logging import get_logger
from aianalyst.guardrails.context import GuardrailContext
from aianalyst.guardrails.detectors import needs_loop_settings_rewrite
from aianalyst.llm.constants import GUARDRAIL_MAX_OUTPUT_TOKENS, max_output_tokens_for_model
from aianalyst.llm.envelope import extract_final_content
from aianalyst.llm.models import ChatMessage, IncompleteResponseError, RunCancelledError
from aianalyst.llm.timeout import with_timeout

logger = get_logger(__name__)


def build_rewrite_instruction(text: str) -> str:
    return (
        "Rewrite your last answer with these constraints:\n"
        "1) Do NOT recommend basal schedule changes.\n"
        "2) Do NOT use placeholders like [X]/[Y]/[Your current...]. Use actual current values "
        "(call tools if needed).\n"
        "3) Include at least one numeric trend comparison (TIR, avg BG, CV) relevant to the "
        "user's issue.\n\n"
        'Return ONLY {"type":"final","content":"..."}.\n\n'
        f"Your last answer:\n{text}"
    )


async def maybe_rewrite_loop_settings_response(text: str, ctx: GuardrailContext) -> str:
    """
    Rewrite the answer if it breaks the Loop Settings rules.

    Returns:
        The rewritten answer, or ``text`` unchanged when no detector fires or
        the rewrite call was cancelled or came back truncated
    """
    if not needs_loop_settings_rewrite(text):
        return text

    logger.warning(
        "Rewriting Loop Settings response to enforce: no basal + no placeholders + include trend"
    )

    messages = [
        ChatMessage(role="system", content=ctx.system_prompt),
        *ctx.working_messages,
        ChatMessage(role="user", content=build_rewrite_instruction(text)),
    ]

    try:
        completion = await with_timeout(
            ctx.provider.send_chat(
                model=ctx.model,
                messages=messages,
                temperature=ctx.temperature,
                max_output_tokens=max_output_tokens_for_model(
                    ctx.model, GUARDRAIL_MAX_OUTPUT_TOKENS
                ),
                cancellation_signal=ctx.cancellation_signal,
            ),
            ctx.timeout_seconds,
            "LLM rewrite",
        )
    except RunCancelledError:
        return text
    except IncompleteResponseError as e:
        logger.warning(f"Rewrite response incomplete ({e.reason}); keeping original answer")
        return text

    if ctx.is_cancelled():
        return text

    return extract_final_content(completion.content.strip())
