"""
Timeouts, limits and fixed user-facing messages for the tool loop.
"""

import re

# Deadline for a single tool execution (seconds)
TOOL_TIMEOUT_SECONDS = 60.0

# Deadline for a single model response (seconds)
LLM_TIMEOUT_SECONDS = 60.0

# Tool calls per follow-up turn
DEFAULT_MAX_TOOL_CALLS = 4
LOOP_SETTINGS_MAX_TOOL_CALLS = 20

DEFAULT_MAX_OUTPUT_TOKENS = 800
USER_BEHAVIOR_MAX_OUTPUT_TOKENS = 1_200
LOOP_SETTINGS_MAX_OUTPUT_TOKENS = 2_000

# Rewrite and revision calls made by the guardrails
GUARDRAIL_MAX_OUTPUT_TOKENS = 1_200

# Reasoning models spend output tokens on thinking; a small limit can leave
# nothing visible
REASONING_MODEL_MIN_OUTPUT_TOKENS = 16_384

DEFAULT_TEMPERATURE = 0.2
USER_BEHAVIOR_TEMPERATURE = 0.4
LOOP_SETTINGS_TEMPERATURE = 0.3

TOOL_LIMIT_MESSAGE = (
    "I tried to fetch additional data, but hit the tool-call limit. "
    "Please try again (or ask for a smaller time range)."
)

INCOMPLETE_RESPONSE_MESSAGE = (
    "My response was cut short - the conversation context may be too large. "
    "Try starting a new session or asking a simpler question."
)

EMPTY_RESPONSE_FALLBACK = (
    "If you'd like me to proceed, reply 'continue' and I'll run the next step."
)

STRUCTURED_QUESTION_FOOTER = "*You can also type your own answer if none of these fit.*"


# o1, o3-mini, o4-mini; not orca-mini or openchat
_REASONING_MODEL = re.compile(r"o\d", re.IGNORECASE)


def is_reasoning_model(model: str) -> bool:
    """o-series models (o1, o3, o4-mini, ...), with or without a provider prefix."""
    name = model.strip().rsplit("/", 1)[-1]
    return _REASONING_MODEL.match(name) is not None


def temperature_for_model(model: str, default: float) -> float | None:
    """Reasoning models reject a temperature; return None for them."""
    return None if is_reasoning_model(model) else default


def max_output_tokens_for_model(model: str, default: int) -> int:
    if is_reasoning_model(model):
        return max(default, REASONING_MODEL_MIN_OUTPUT_TOKENS)
    return default
