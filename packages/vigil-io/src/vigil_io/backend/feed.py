"""In-process change feed used to wake pollers on push notifications."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime

from vigil_core.ports.source import ChangeFeedProtocol, ChangeNotification
from vigil_schemas.primitives import Timestamp


def _now_timestamp() -> Timestamp:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class InMemoryChangeFeed(ChangeFeedProtocol):
    """Fan-out of change notifications to per-workspace subscribers.

    Notifications are hints only: subscribers re-poll the source rather than
    trusting the payload.
    """

    def __init__(self, clock: Callable[[], Timestamp] | None = None) -> None:
        """Initialize the feed.

        Args:
            clock: Timestamp factory for published notifications.
        """
        self._clock = clock or _now_timestamp
        self._subscribers: dict[str, set[asyncio.Queue[ChangeNotification]]] = {}

    def subscriber_count(self, workspace_id: str) -> int:
        """Return the number of live subscriptions for a workspace."""
        return len(self._subscribers.get(workspace_id, ()))

    def publish(self, workspace_id: str, table: str | None = None) -> int:
        """Notify every subscriber of a workspace.

        Args:
            workspace_id: Workspace whose data changed.
            table: Table that changed, if known.

        Returns:
            int: Number of subscribers notified.
        """
        queues = self._subscribers.get(workspace_id, set())
        notification = ChangeNotification(
            workspace_id=workspace_id, table=table, received_at=self._clock()
        )
        for queue in queues:
            queue.put_nowait(notification)
        return len(queues)

    async def subscribe(self, workspace_id: str) -> AsyncIterator[ChangeNotification]:
        """Yield notifications for a workspace until the consumer stops.

        Yields:
            ChangeNotification: Each published notification.
        """
        queue: asyncio.Queue[ChangeNotification] = asyncio.Queue()
        subscribers = self._subscribers.setdefault(workspace_id, set())
        subscribers.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            subscribers.discard(queue)
            if not subscribers:
                self._subscribers.pop(workspace_id, None)
