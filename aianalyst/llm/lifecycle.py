"""
Run lifecycle and cooperative cancellation.

Each conversation turn is a *run*. RunLifecycle.begin() bumps a counter and
hands back a RunContext that captured the new value; a run is cancelled the
moment the counter moves past that value, whether because a newer run began
or because cancel() was called. The latest caller always wins, without locks.

Cancellation is polled: the loop checks RunContext.is_cancelled() around
every suspension point and discards the effect of anything that finished
after its run was superseded. In addition, each run owns a CancellationSignal
that providers can race their network call against, so a blocked request is
released promptly instead of merely being ignored when it completes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from aianalyst.llm.models import RunCancelledError

T = TypeVar("T")


class CancellationSignal:
    """One-shot signal set when the owning run is cancelled."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, operation: Awaitable[T]) -> T:
        """
        Await an operation unless the signal fires first.

        Raises:
            RunCancelledError: If the signal was already set or fires while the
                operation is pending. The operation is cancelled in that case.
        """
        if self.cancelled:
            if asyncio.iscoroutine(operation):
                operation.close()
            raise RunCancelledError("Run cancelled before the operation started")

        task = asyncio.ensure_future(operation)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        raise RunCancelledError("Run cancelled while the operation was pending")


@dataclass(frozen=True)
class RunContext:
    """Identity of one run plus its cancellation signal."""

    run_id: int
    signal: CancellationSignal
    lifecycle: RunLifecycle = field(repr=False, compare=False)

    def is_cancelled(self) -> bool:
        return not self.lifecycle.is_current(self)

    def cancellation_check(self) -> Callable[[], bool]:
        return self.is_cancelled


class RunLifecycle:
    """
    Owner of the run counter for one conversation.

    The counter is only ever incremented and compared; nothing else about a
    run is shared.
    """

    def __init__(self) -> None:
        self._counter = 0
        self._active: RunContext | None = None

    @property
    def current_run_id(self) -> int:
        return self._counter

    @property
    def active(self) -> RunContext | None:
        """The newest run, or None after cancel()."""
        return self._active

    def begin(self) -> RunContext:
        """Start a new run, implicitly cancelling every older one."""
        self._counter += 1
        self._release_active()
        run = RunContext(run_id=self._counter, signal=CancellationSignal(), lifecycle=self)
        self._active = run
        return run

    def cancel(self) -> None:
        """Cancel whatever run is in flight."""
        self._counter += 1
        self._release_active()

    def is_current(self, run: RunContext) -> bool:
        return run.lifecycle is self and run.run_id == self._counter

    def _release_active(self) -> None:
        if self._active is not None:
            self._active.signal.cancel()
            self._active = None
