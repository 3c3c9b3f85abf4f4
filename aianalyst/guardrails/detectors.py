"""
Text detectors used by the guardrails.

Each detector is a pure predicate over the candidate answer so it can be
tested on its own, independently of the model calls that act on it.
"""

import re

# Loop users should not be told to change their scheduled basal
_BASAL_RECOMMENDATION = re.compile(r"\b(basal|basal rate|scheduled basal|u/hr)\b", re.IGNORECASE)

# Template placeholders like [X], [Your current ISF], [Suggested value]
_PLACEHOLDER_VALUES = re.compile(
    r"\[(x|y|your current|adjust to|suggested value|current value)[^\]]*\]",
    re.IGNORECASE,
)

# Signs that an answer contains a therapy recommendation worth reviewing
RECOMMENDATION_INDICATORS = (
    re.compile(r"\bsuggested?\s+value\b", re.IGNORECASE),
    re.compile(r"\bcurrent\s+value\b", re.IGNORECASE),
    re.compile(r"\brecommend", re.IGNORECASE),
    re.compile(r"\badjust", re.IGNORECASE),
    re.compile(r"\bchange.*(?:isf|cr|carb.?ratio|target|dia)\b", re.IGNORECASE),
    re.compile("\U0001F3AF"),  # 🎯
    re.compile(r"\U0001F4CA.*what\s+i\s+found", re.IGNORECASE),  # 📊 ... what I found
)

# Shorter answers are clarifications, not recommendations
MIN_WORDS_FOR_REFLECTION = 60

APPROVAL_PHRASES = ("no issues", "looks good", "approved", "no concerns")
DISQUALIFYING_PHRASES = ("however", "but ", "issue:")


def looks_like_basal_recommendation(text: str) -> bool:
    return bool(_BASAL_RECOMMENDATION.search(text or ""))


def looks_like_placeholder_values(text: str) -> bool:
    return bool(_PLACEHOLDER_VALUES.search(text or ""))


def needs_loop_settings_rewrite(text: str) -> bool:
    return looks_like_basal_recommendation(text) or looks_like_placeholder_values(text)


def word_count(text: str) -> int:
    return len((text or "").split())


def looks_like_recommendation(text: str) -> bool:
    return any(pattern.search(text or "") for pattern in RECOMMENDATION_INDICATORS)


def should_reflect(text: str) -> bool:
    """Only long answers that look like recommendations get an expert review."""
    if word_count(text) < MIN_WORDS_FOR_REFLECTION:
        return False
    return looks_like_recommendation(text)


def critique_indicates_approval(critique: str) -> bool:
    """
    Heuristic: an approval phrase and none of the disqualifying words.

    Substring matching, so "no issues, however ..." is not an approval while
    an objection phrased without these words can slip through as one.
    """
    lower = (critique or "").lower()
    approved = any(phrase in lower for phrase in APPROVAL_PHRASES)
    disqualified = any(phrase in lower for phrase in DISQUALIFYING_PHRASES)
    return approved and not disqualified
