"""
Deadline wrapper for suspending operations.

Every model request and tool dispatch goes through with_timeout() so a hung
provider or tool cannot stall a conversation. The label ends up in the error
message ("LLM response timed out after 60s") so failure reports can name the
stage that stalled.
"""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from aianalyst.llm.models import OperationTimeoutError

T = TypeVar("T")


async def with_timeout(operation: Awaitable[T], seconds: float, label: str) -> T:
    """
    Race an awaitable against a deadline.

    Args:
        operation: The work to execute
        seconds: Deadline in seconds
        label: Human-readable stage name used in the error message

    Returns:
        The operation's result

    Raises:
        OperationTimeoutError: If the deadline passes first. The operation is
            cancelled. Errors raised by the operation itself propagate unchanged.
    """
    deadline = asyncio.timeout(seconds)
    try:
        async with deadline:
            return await operation
    except TimeoutError as e:
        # A TimeoutError raised by the operation itself is not ours to relabel
        if not deadline.expired():
            raise
        raise OperationTimeoutError(label, seconds) from e
