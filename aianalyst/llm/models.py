"""
Data model for the tool-calling loop.

- ChatMessage: one conversation turn (role + text)
- ToolEnvelope: the single instruction a model turn encodes, one of
  ToolCallEnvelope, FinalEnvelope, AskPatientEnvelope
- ToolResult: uniform outcome of a tool execution
- LoopBudget: tool-call counter owned by one run
- ToolLoopResult: what the loop hands back to its caller
- Error types raised by providers, the timeout wrapper and cancellation
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChatMessage(BaseModel):
    """A single conversation message. Messages are immutable once created."""

    role: Literal["user", "assistant", "system"]
    content: str

    model_config = ConfigDict(frozen=True)

    def to_dict(self) -> dict[str, str]:
        """Plain dict in the OpenAI chat format LiteLLM expects."""
        return {"role": self.role, "content": self.content}


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class PatientQuestionOption(BaseModel):
    """One option of a structured multiple-choice question, e.g. key "a"."""

    key: str
    label: str

    model_config = ConfigDict(frozen=True)


class ToolCallEnvelope(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    name: str
    args: Any = None

    model_config = ConfigDict(frozen=True)


class FinalEnvelope(BaseModel):
    type: Literal["final"] = "final"
    content: str

    model_config = ConfigDict(frozen=True)


class AskPatientEnvelope(BaseModel):
    type: Literal["ask_patient"] = "ask_patient"
    question: str
    options: tuple[PatientQuestionOption, ...] = ()

    model_config = ConfigDict(frozen=True)


ToolEnvelope = Annotated[
    Union[ToolCallEnvelope, FinalEnvelope, AskPatientEnvelope],
    Field(discriminator="type"),
]


class StructuredQuestion(BaseModel):
    """An ask_patient envelope surfaced to the caller for rendering choices."""

    question: str
    options: tuple[PatientQuestionOption, ...] = ()

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Tool results
# ---------------------------------------------------------------------------


class ToolResult(BaseModel):
    """
    Uniform outcome of a tool execution.

    ``error`` is only meaningful when ``ok`` is False, and ``result`` only
    when ``ok`` is True; the validator rejects mixed instances.
    """

    ok: bool
    result: Any = None
    error: str | None = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_exclusive(self) -> ToolResult:
        if self.ok and self.error is not None:
            raise ValueError("A successful ToolResult cannot carry an error")
        if not self.ok:
            if self.result is not None:
                raise ValueError("A failed ToolResult cannot carry a result")
            if not self.error:
                raise ValueError("A failed ToolResult needs an error message")
        return self

    @classmethod
    def success(cls, result: Any = None) -> ToolResult:
        return cls(ok=True, result=result)

    @classmethod
    def failure(cls, error: str) -> ToolResult:
        return cls(ok=False, error=error or "Tool failed")

    def to_json(self) -> str:
        """Serialize for the model; absent fields are omitted."""
        payload: dict[str, Any] = {"ok": self.ok}
        if self.ok:
            if self.result is not None:
                payload["result"] = self.result
        else:
            payload["error"] = self.error
        return json.dumps(payload, default=str)


# ---------------------------------------------------------------------------
# Loop state and result
# ---------------------------------------------------------------------------


class LoopBudget(BaseModel):
    """Tool-call budget of one run. Only ever counts up."""

    max_tool_calls: int = Field(ge=0)
    tool_calls_used: int = Field(default=0, ge=0)

    @property
    def exhausted(self) -> bool:
        return self.tool_calls_used >= self.max_tool_calls

    def consume(self) -> int:
        """Record one dispatched tool call and return the new count."""
        if self.exhausted:
            raise RuntimeError(f"Tool-call budget of {self.max_tool_calls} already used")
        self.tool_calls_used += 1
        return self.tool_calls_used


class ToolLoopResult(BaseModel):
    """
    Caller-facing result of one loop run.

    Attributes:
        final_text: The answer to show (empty string when the run was cancelled)
        messages: Full model-facing history, including tool exchanges
        structured_question: Set when the run ended with an ask_patient envelope
        tool_calls_used: Number of tools dispatched during the run
        cancelled: True when the run was superseded or cancelled
    """

    final_text: str
    messages: list[ChatMessage]
    structured_question: StructuredQuestion | None = None
    tool_calls_used: int = 0
    cancelled: bool = False


class ChatCompletion(BaseModel):
    """What a provider returns for one chat request."""

    content: str
    model: str = ""
    finish_reason: str | None = None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class LLMError(Exception):
    """A model provider call failed."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class IncompleteResponseError(LLMError):
    """
    The model's output was cut short by its output-token limit.

    Kept distinct from LLMError so the loop can answer with a recovery
    message instead of failing the run.
    """

    def __init__(self, message: str, reason: str | None = None, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.reason = reason


class OperationTimeoutError(LLMError):
    """An operation exceeded its deadline. The label names the stage."""

    def __init__(self, label: str, seconds: float):
        super().__init__(f"{label} timed out after {round(seconds)}s")
        self.label = label
        self.seconds = seconds


class RunCancelledError(Exception):
    """A blocked call was released because its run was cancelled."""
