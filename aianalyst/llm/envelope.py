"""
Envelope parser: turn free-form model output into a single ToolEnvelope.

Models are asked to answer with one JSON object, but in practice they wrap it
in code fences, add a sentence before or after it, or use one of several
older shapes that stored prompts still produce. The parser accepts all of
these and never raises; anything it cannot interpret becomes None and the
caller treats the raw text as a plain answer.

Accepted shapes, checked in this order:

1. {"type": "tool_call", "name": ..., "args": ...}
2. {"type": "tool_call", "tool_name": ..., "args": ...}      (legacy key)
3. {"type": "final", "content": ...}
4. {"type": "ask_patient", "question": ..., "options": [...]}
5. {"type": "<toolName>", "args": ...}                       (name in type)
6. {"name": ..., "args": ...}                                (no type)
"""

from __future__ import annotations

import json
import re
from typing import Any

from aianalyst.llm.models import (
    AskPatientEnvelope,
    FinalEnvelope,
    PatientQuestionOption,
    ToolCallEnvelope,
    ToolEnvelope,
)

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```$")

# Sentinel for "key absent", distinct from an explicit JSON null
_MISSING = object()


def parse_tool_envelope(text: str | None) -> ToolEnvelope | None:
    """
    Extract a structured envelope from model output.

    Args:
        text: Raw model output, possibly fenced and surrounded by prose

    Returns:
        The interpreted envelope, or None when the text holds no recognised
        JSON object
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return None

    unfenced = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", trimmed)).strip()

    # Best effort: the span between the first "{" and the last "}"
    first = unfenced.find("{")
    last = unfenced.rfind("}")
    if first < 0 or last <= first:
        return None

    try:
        obj = json.loads(unfenced[first:last + 1])
    except (ValueError, RecursionError):
        return None

    if not isinstance(obj, dict):
        return None
    return _interpret(obj)


def extract_final_content(text: str) -> str:
    """Return the content of a final envelope, or the text itself."""
    envelope = parse_tool_envelope(text)
    if isinstance(envelope, FinalEnvelope):
        return envelope.content
    return text


def _interpret(obj: dict[str, Any]) -> ToolEnvelope | None:
    kind = obj.get("type")
    name = obj.get("name")
    args = obj.get("args", _MISSING)

    if kind == "tool_call" and isinstance(name, str):
        return ToolCallEnvelope(name=name, args=_args_or_none(args))

    if kind == "tool_call" and isinstance(obj.get("tool_name"), str):
        return ToolCallEnvelope(name=obj["tool_name"], args=_args_or_none(args))

    if kind == "final" and isinstance(obj.get("content"), str):
        return FinalEnvelope(content=obj["content"])

    if (
        kind == "ask_patient"
        and isinstance(obj.get("question"), str)
        and isinstance(obj.get("options"), list)
    ):
        options = tuple(
            PatientQuestionOption(key=option["key"], label=option["label"])
            for option in obj["options"]
            if isinstance(option, dict)
            and isinstance(option.get("key"), str)
            and isinstance(option.get("label"), str)
        )
        return AskPatientEnvelope(question=obj["question"], options=options)

    # Back-compat: tool name carried in the type field
    if isinstance(kind, str) and kind not in ("tool_call", "final") and args is not _MISSING:
        return ToolCallEnvelope(name=kind, args=args)

    # Back-compat: no type at all
    if kind is None and isinstance(name, str) and args is not _MISSING:
        return ToolCallEnvelope(name=name, args=args)

    return None


def _args_or_none(args: Any) -> Any:
    return None if args is _MISSING else args
