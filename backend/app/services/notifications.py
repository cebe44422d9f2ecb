"""
Change-notification dispatcher.

Every observer (customer tracking page, vendor board, delivery sink) keeps a
durable marker per order: the last status it was notified about and the
status-change version that produced it. A subscription wakes on change-feed
hints or on a poll timeout, reads status-change records newer than its marker
in version order and emits one StatusChanged per transition. The marker is
advanced with a compare-and-set before the event is handed out, so two sessions
of one observer cannot both emit the same transition.
"""
import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Set, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.change_feed import OrderChangeFeed, change_feed
from app.core.clock import utcnow
from app.core.database import async_session_maker
from app.core.exceptions import NotFound
from app.core.logging_config import get_logger
from app.models import NotificationMarker, Order, OrderStatus, OrderStatusChange
from app.schemas.order import OrderResponse
from app.services.order_status import is_terminal

logger = get_logger(__name__)


@dataclass(frozen=True)
class StatusChanged:
    order_id: str
    from_status: Optional[OrderStatus]
    to_status: OrderStatus
    version: int
    # Order as stored when the event was claimed; may be ahead of to_status on catch-up
    order: OrderResponse


Claim = Tuple[Optional[StatusChanged], bool]


class Subscription:
    """
    Lazy stream of StatusChanged for one (observer, order) pair.
    Iterate with `async for`; stop with `close()` or by leaving `async with`.
    Ends by itself after a terminal status has been delivered.
    """

    def __init__(self, dispatcher: "NotificationDispatcher", observer_id: str, order_id: str):
        self.dispatcher = dispatcher
        self.observer_id = observer_id
        self.order_id = order_id
        self._closed = False
        self._wake: Optional[asyncio.Queue] = None
        self._at_yield = False
        self._iterator: Optional[AsyncIterator[StatusChanged]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[StatusChanged]:
        if self._iterator is None:
            self._iterator = self._events()
        return self._iterator

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        iterator = self._iterator
        if iterator is None:
            return
        if self._wake is not None and not self._at_yield:
            # Mid-read or waiting: the loop sees the flag on its next step
            try:
                self._wake.put_nowait(None)
            except asyncio.QueueFull:
                logger.debug("Wake queue of %s/%s full, pending hints will wake it", self.observer_id, self.order_id)
            return
        await iterator.aclose()

    async def _wait_for_change(self, queue: asyncio.Queue) -> None:
        try:
            await asyncio.wait_for(queue.get(), timeout=self.dispatcher.poll_interval)
        except asyncio.TimeoutError:
            pass
        # Coalesce a burst of hints into one store read
        while not queue.empty():
            queue.get_nowait()

    async def _events(self) -> AsyncIterator[StatusChanged]:
        # Listen before the first read so a write between read and wait is not missed
        with self.dispatcher.feed.listen(self.order_id) as queue:
            self._wake = queue
            try:
                while not self._closed:
                    event, finished = await self.dispatcher.claim_next(self.observer_id, self.order_id)
                    if event is not None:
                        if self._closed:
                            # Closed while the claim was in flight; the marker has moved, the consumer is gone
                            break
                        self._at_yield = True
                        yield event
                        self._at_yield = False
                    if finished:
                        break
                    if event is None:
                        await self._wait_for_change(queue)
            finally:
                self._closed = True
                self._wake = None


class NotificationDispatcher:
    def __init__(
        self,
        session_maker: async_sessionmaker = async_session_maker,
        feed: OrderChangeFeed = change_feed,
        poll_interval: Optional[float] = None,
    ):
        self.session_maker = session_maker
        self.feed = feed
        self.poll_interval = poll_interval or settings.subscription_poll_seconds
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, observer_id: str, order_id: str) -> Subscription:
        return Subscription(self, observer_id, order_id)

    async def claim_next(self, observer_id: str, order_id: str) -> Claim:
        """One step of the protocol in its own short transaction. Returns (event, finished)."""
        async with self.session_maker() as session:
            return await self._claim_next(session, observer_id, order_id)

    async def _claim_next(self, session: AsyncSession, observer_id: str, order_id: str) -> Claim:
        order = await session.get(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")

        r = await session.execute(
            select(NotificationMarker).where(
                NotificationMarker.observer_id == observer_id,
                NotificationMarker.order_id == order_id,
            )
        )
        marker = r.scalar_one_or_none()
        if marker is None:
            return await self._claim_current_status(session, observer_id, order)
        if marker.closed:
            return None, True

        r = await session.execute(
            select(OrderStatusChange)
            .where(OrderStatusChange.order_id == order_id, OrderStatusChange.version > marker.last_version)
            .order_by(OrderStatusChange.version.asc())
        )
        previous_status, seen_version = marker.last_notified_status, marker.last_version
        for change in r.scalars().all():
            if change.to_status == previous_status:
                continue
            snapshot = OrderResponse.model_validate(order)
            finished = is_terminal(change.to_status)
            claimed = await session.execute(
                update(NotificationMarker)
                .where(
                    NotificationMarker.id == marker.id,
                    NotificationMarker.last_version == seen_version,
                )
                .values(
                    last_notified_status=change.to_status,
                    last_version=change.version,
                    closed=finished,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            if claimed.rowcount != 1:
                # Another session of this observer took it; re-read on the next step
                return None, False
            return (
                StatusChanged(
                    order_id=order_id,
                    from_status=previous_status,
                    to_status=change.to_status,
                    version=change.version,
                    order=snapshot,
                ),
                finished,
            )
        return None, False

    async def _claim_current_status(self, session: AsyncSession, observer_id: str, order: Order) -> Claim:
        """A fresh observer hears about the current status once."""
        snapshot = OrderResponse.model_validate(order)
        finished = is_terminal(order.status)
        session.add(
            NotificationMarker(
                observer_id=observer_id,
                order_id=order.id,
                last_notified_status=order.status,
                last_version=order.version,
                closed=finished,
            )
        )
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return None, False
        return (
            StatusChanged(
                order_id=order.id,
                from_status=None,
                to_status=snapshot.status,
                version=snapshot.version,
                order=snapshot,
            ),
            finished,
        )

    def start_background(self, factory: Callable[[], Awaitable[None]], name: str) -> asyncio.Task:
        """Run a long-lived observer; tracked so shutdown can cancel it."""
        task = asyncio.get_running_loop().create_task(factory(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Observer task %s failed: %s", task.get_name(), task.exception())

    @property
    def background_task_count(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


dispatcher = NotificationDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher
