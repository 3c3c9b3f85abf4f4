"""
AI Analyst - LLM tool-calling orchestration for diabetes data conversations.

This package drives a multi-turn conversation between the patient, a language
model and a set of local data-fetching tools, and post-processes the model's
final answer through a guardrail pipeline before it is shown.
"""

__version__ = "0.1.0"
