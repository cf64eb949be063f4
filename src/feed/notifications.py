"""User-facing notification surface."""

from collections import deque
from typing import Deque, List, Protocol

from core.logging import get_logger
from feed.models import Notification, NotificationKind


logger = get_logger(__name__)


class Notifier(Protocol):
    """Fire-and-forget toast/prompt sink. Must never raise."""

    def notify(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        ...


class QueueNotifier:
    """
    Buffers notifications until a client drains them.

    The HTTP layer polls ``drain()``; the oldest entries are dropped once
    ``max_size`` is reached.
    """

    def __init__(self, max_size: int = 50):
        self._queue: Deque[Notification] = deque(maxlen=max_size)

    def notify(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        notification = Notification(message=message, kind=NotificationKind(kind))
        self._queue.append(notification)
        logger.info("Notification queued", kind=notification.kind.value, message=message)

    def drain(self) -> List[Notification]:
        drained = list(self._queue)
        self._queue.clear()
        return drained

    def peek(self) -> List[Notification]:
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue)
