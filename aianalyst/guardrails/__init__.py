"""
Guardrail pipeline applied to candidate final answers.

- maybe_rewrite_loop_settings_response: policy rewrite for Loop Settings mode
- maybe_reflect_as_expert: expert critique + conditional revision
"""

from aianalyst.guardrails.context import GuardrailContext
from aianalyst.guardrails.detectors import (
    critique_indicates_approval,
    looks_like_basal_recommendation,
    looks_like_placeholder_values,
    looks_like_recommendation,
    should_reflect,
)
from aianalyst.guardrails.loop_settings import maybe_rewrite_loop_settings_response
from aianalyst.guardrails.reflection import maybe_reflect_as_expert

__all__ = [
    "GuardrailContext",
    "critique_indicates_approval",
    "looks_like_basal_recommendation",
    "looks_like_placeholder_values",
    "looks_like_recommendation",
    "maybe_reflect_as_expert",
    "maybe_rewrite_loop_settings_response",
    "should_reflect",
]
