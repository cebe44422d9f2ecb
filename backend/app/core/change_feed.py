"""
In-process change feed for order documents.

Writers publish `(order_id, version)` after their transaction commits; each
listener owns an asyncio.Queue per order. Delivery is a wake-up hint only:
listeners re-read the store, so a redelivered or coalesced hint is harmless.
"""
import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Set

from app.core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderMutation:
    order_id: str
    version: int


class OrderChangeFeed:
    def __init__(self, max_pending: int = 100):
        self._listeners: Dict[str, Set[asyncio.Queue]] = {}
        self._max_pending = max_pending

    def publish(self, order_id: str, version: int) -> None:
        mutation = OrderMutation(order_id=order_id, version=version)
        for queue in list(self._listeners.get(order_id, ())):
            try:
                queue.put_nowait(mutation)
            except asyncio.QueueFull:
                # The listener re-reads the store on the next wake-up anyway
                logger.debug("Change feed queue full for order %s, hint dropped", order_id)

    @contextmanager
    def listen(self, order_id: str) -> Iterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_pending)
        self._listeners.setdefault(order_id, set()).add(queue)
        try:
            yield queue
        finally:
            listeners = self._listeners.get(order_id)
            if listeners is not None:
                listeners.discard(queue)
                if not listeners:
                    del self._listeners[order_id]

    def listener_count(self, order_id: str) -> int:
        return len(self._listeners.get(order_id, ()))


change_feed = OrderChangeFeed()
