"""
Cancellable delayed actions driving the batch windows.
"""

from __future__ import annotations

import asyncio
import typing as t

import structlog

log = structlog.get_logger(__name__)


class DelayedAction:
    """
    Run an async callback once a delay elapses, unless cancelled first.

    Parameters
    ----------
    delay_seconds : float
        Delay before the callback runs.
    callback : typing.Callable[[], typing.Awaitable[None]]
        Coroutine function invoked when the delay elapses.
    name : str
        Task name, used in logs.

    Notes
    -----
    Once the callback has started the action can no longer be cancelled
    through ``cancel`` or ``reschedule``.
    """

    def __init__(
        self,
        *,
        delay_seconds: float,
        callback: t.Callable[[], t.Awaitable[None]],
        name: str,
    ) -> None:
        self._delay_seconds = delay_seconds
        self._callback = callback
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._deadline: float | None = None
        self._fired = False
        self._cancelled = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def pending(self) -> bool:
        """Whether the action is scheduled and its delay has not elapsed yet."""
        return (
            self._task is not None
            and not self._task.done()
            and not self._fired
            and not self._cancelled
        )

    @property
    def fired(self) -> bool:
        """Whether the callback has started running."""
        return self._fired

    @property
    def deadline(self) -> float | None:
        """Loop time at which the callback is due, while pending."""
        return self._deadline if self.pending else None

    def start(self) -> None:
        """
        Schedule the action on the running event loop.
        """
        if self.pending or self._fired:
            raise RuntimeError(f"Delayed action {self._name} already started")
        self._launch(delay_seconds=self._delay_seconds)

    def cancel(self) -> bool:
        """
        Cancel the action if its callback has not started.

        Returns
        -------
        bool
            ``True`` if a pending action was cancelled.
        """
        if not self.pending:
            return False
        assert self._task is not None
        self._cancelled = True
        self._task.cancel()
        return True

    def reschedule(self, *, delay_seconds: float | None = None) -> None:
        """
        Cancel the pending run and start over with a fresh delay.

        Parameters
        ----------
        delay_seconds : float | None, optional
            Delay for the new run. Defaults to the configured delay.
        """
        if self._fired:
            raise RuntimeError(f"Delayed action {self._name} already fired")
        self.cancel()
        self._launch(
            delay_seconds=self._delay_seconds if delay_seconds is None else delay_seconds
        )

    async def wait(self) -> None:
        """
        Wait for the current run to finish.

        Notes
        -----
        A run ended by ``cancel`` returns normally. Errors raised by the
        callback propagate.
        """
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise

    def _launch(self, *, delay_seconds: float) -> None:
        loop = asyncio.get_running_loop()
        self._cancelled = False
        self._deadline = loop.time() + delay_seconds
        self._task = loop.create_task(
            self._run(delay_seconds=delay_seconds),
            name=self._name,
        )

    async def _run(self, *, delay_seconds: float) -> None:
        try:
            await asyncio.sleep(delay_seconds)
        except asyncio.CancelledError:
            log.debug(event="Delayed action cancelled", name=self._name)
            raise
        self._fired = True
        await self._callback()
