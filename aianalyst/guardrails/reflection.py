"""
Expert-reflection guardrail (chain-of-verification).

After a final recommendation is produced, the model reviews it a second time
from the perspective of an endocrinologist. This catches:
  - clinically unsafe suggestions (hypo risk, aggressive adjustments)
  - claims not backed by data from the conversation
  - missing monitoring plans or an unanswered concern
  - recommendations outside the advisor's scope

Flow: critique at low temperature → if the critique approves, keep the answer
→ otherwise ask for a revision that addresses every issue raised.
"""

from __future__ import annotations

from aianalyst.config.logging import get_logger
from aianalyst.guardrails.context import GuardrailContext
from aianalyst.guardrails.detectors import critique_indicates_approval, should_reflect
from aianalyst.llm.constants import (
    GUARDRAIL_MAX_OUTPUT_TOKENS,
    max_output_tokens_for_model,
    temperature_for_model,
)
from aianalyst.llm.envelope import extract_final_content
from aianalyst.llm.models import ChatMessage, IncompleteResponseError, RunCancelledError
from aianalyst.llm.timeout import with_timeout

logger = get_logger(__name__)

CRITIQUE_TEMPERATURE = 0.1
CRITIQUE_MAX_OUTPUT_TOKENS = 600

EXPERT_REVIEW_SYSTEM_PROMPT = (
    "You are a board-certified endocrinologist reviewing a diabetes technology advisor's "
    "recommendation to a patient using an automated insulin delivery (AID) system.\n\n"
    "Your job is to catch problems with the recommendation. Evaluate it on these criteria:\n\n"
    "1. **Safety**: Does the suggestion increase hypoglycemia risk? Are adjustments too "
    "aggressive (>10% change)?\n"
    "2. **Evidence**: Is the recommendation backed by specific data from the conversation "
    "(dates, numbers, trends)? Or is it vague/generic?\n"
    "3. **Completeness**: Does it include a monitoring plan? Does it address the patient's "
    "actual concern?\n"
    "4. **Clinical accuracy**: Are the physiological explanations correct? Is the suggested "
    "direction of change appropriate?\n"
    "5. **Scope**: Does it recommend more than one setting change at a time? Does it recommend "
    "basal schedule changes in a Loop system?\n\n"
    'If the recommendation is sound, respond with: "No issues found. Approved."\n\n'
    "If you find problems, list each one concisely as:\n"
    "- Issue: [description]\n"
    "- Fix: [what should change]\n\n"
    "Be strict but fair. Focus only on clinical and safety issues, not style."
)

CRITIQUE_USER_PROMPT = (
    "Review the assistant's last recommendation from an endocrinology perspective. "
    "Check for: safety concerns, unsupported claims, missing monitoring plans, "
    "aggressive adjustments, and incomplete analysis. "
    'Respond concisely - either "No issues found. Approved." or a list of issues with fixes.'
)


def build_revision_instruction(critique: str) -> str:
    return (
        "An endocrinology expert reviewed your recommendation and found these issues:\n\n"
        f"{critique}\n\n"
        "Please revise your response to address every issue raised above. "
        'Keep the same format. Return ONLY {"type":"final","content":"..."}.'
    )


async def maybe_reflect_as_expert(text: str, ctx: GuardrailContext) -> str:
    """
    Run the expert critique on a recommendation and revise it if needed.

    Returns:
        ``text`` when reflection is skipped or approved, or when a call is
        cancelled or truncated; otherwise the revised answer
    """
    if not should_reflect(text):
        return text

    logger.info("Running endocrinology-expert review on recommendation")

    critique_messages = [
        ChatMessage(role="system", content=EXPERT_REVIEW_SYSTEM_PROMPT),
        *ctx.working_messages,
        ChatMessage(role="assistant", content=text),
        ChatMessage(role="user", content=CRITIQUE_USER_PROMPT),
    ]
    try:
        critique = await with_timeout(
            ctx.provider.send_chat(
                model=ctx.model,
                messages=critique_messages,
                temperature=temperature_for_model(ctx.model, CRITIQUE_TEMPERATURE),
                max_output_tokens=max_output_tokens_for_model(ctx.model, CRITIQUE_MAX_OUTPUT_TOKENS),
                cancellation_signal=ctx.cancellation_signal,
            ),
            ctx.timeout_seconds,
            "Expert critique",
        )
    except RunCancelledError:
        return text
    except IncompleteResponseError as e:
        logger.warning(f"Expert critique incomplete ({e.reason}); keeping original answer")
        return text

    if ctx.is_cancelled():
        return text

    critique_text = critique.content.strip()
    if critique_indicates_approval(critique_text):
        logger.info("Expert approved the response - no revision needed")
        return text

    logger.info("Expert found issues - requesting revision")

    revision_messages = [
        ChatMessage(role="system", content=ctx.system_prompt),
        *ctx.working_messages,
        ChatMessage(role="assistant", content=text),
        ChatMessage(role="user", content=build_revision_instruction(critique_text)),
    ]
    try:
        revision = await with_timeout(
            ctx.provider.send_chat(
                model=ctx.model,
                messages=revision_messages,
                temperature=ctx.temperature,
                max_output_tokens=max_output_tokens_for_model(
                    ctx.model, GUARDRAIL_MAX_OUTPUT_TOKENS
                ),
                cancellation_signal=ctx.cancellation_signal,
            ),
            ctx.timeout_seconds,
            "Expert revision",
        )
    except RunCancelledError:
        return text
    except IncompleteResponseError as e:
        logger.warning(f"Expert revision incomplete ({e.reason}); keeping original answer")
        return text

    if ctx.is_cancelled():
        return text

    return extract_final_content(revision.content.strip())
