"""Fire-and-forget broadcast of system messages."""

from __future__ import annotations

import inspect
import logging
from collections import deque
from typing import Awaitable, Callable, Union

from hybridqa.models.messages import SystemMessage

logger = logging.getLogger(__name__)

Listener = Callable[[SystemMessage], Union[None, Awaitable[None]]]


class MessageBus:
    """Logs every message and hands it to registered listeners.

    Delivery is best effort: a failing listener is logged and skipped, and
    the publisher never sees its error.
    """

    def __init__(self, history_size: int = 100):
        self._listeners: list[Listener] = []
        self.recent: deque[SystemMessage] = deque(maxlen=history_size)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def publish(self, message: SystemMessage) -> None:
        logger.info("Broadcasting %s message %s (source=%s, correlation=%s)",
                    message.type, message.id, message.metadata.source,
                    message.metadata.correlation_id or "-")
        self.recent.append(message)
        for listener in list(self._listeners):
            try:
                outcome = listener(message)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Message listener failed for %s", message.id)
