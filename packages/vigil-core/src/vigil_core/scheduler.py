"""Interval poll loop with change-feed wakeups."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from vigil_core.ports.source import ChangeFeedProtocol

logger = logging.getLogger(__name__)


class PollScheduler:
    """Runs a tick on a fixed interval and whenever it is woken.

    Ticks never overlap: a wake that arrives during a tick causes exactly one
    extra tick after it finishes. Change notifications only wake the loop;
    their payloads are ignored.
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[object]],
        *,
        interval_seconds: float,
        change_feed: ChangeFeedProtocol | None = None,
        workspace_id: str | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            tick: Coroutine function run on every poll.
            interval_seconds: Seconds between polls.
            change_feed: Optional push channel used as a wake hint.
            workspace_id: Workspace to subscribe to on the change feed.

        Raises:
            ValueError: If the interval is not positive or a change feed is
                given without a workspace id.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if change_feed is not None and workspace_id is None:
            raise ValueError("workspace_id is required with a change feed")
        self._tick = tick
        self._interval_seconds = interval_seconds
        self._change_feed = change_feed
        self._workspace_id = workspace_id
        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._feed_task: asyncio.Task[None] | None = None
        self._tick_count = 0

    @property
    def running(self) -> bool:
        """Whether the poll loop is active."""
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def tick_count(self) -> int:
        """Ticks completed since start."""
        return self._tick_count

    async def start(self) -> None:
        """Start the poll loop and the change-feed consumer."""
        if self.running:
            return
        self._wake.clear()
        self._tick_count = 0
        self._loop_task = asyncio.create_task(self._run())
        if self._change_feed is not None and self._workspace_id is not None:
            self._feed_task = asyncio.create_task(
                self._consume(self._change_feed, self._workspace_id)
            )

    async def stop(self) -> None:
        """Cancel the poll loop and change-feed consumer and wait for them."""
        tasks = [task for task in (self._loop_task, self._feed_task) if task]
        self._loop_task = None
        self._feed_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def wake(self) -> None:
        """Request an immediate extra poll."""
        self._wake.set()

    async def __aenter__(self) -> PollScheduler:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _run(self) -> None:
        while True:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._wake.wait(), timeout=self._interval_seconds
                )
            self._wake.clear()
            try:
                await self._tick()
            except Exception:
                logger.exception("Poll tick failed")
            self._tick_count += 1

    async def _consume(self, feed: ChangeFeedProtocol, workspace_id: str) -> None:
        try:
            async for _notification in feed.subscribe(workspace_id):
                self.wake()
        except Exception:
            logger.exception("Change feed stopped; continuing on interval polls")
