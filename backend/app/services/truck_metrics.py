"""
Read-side snapshots for wait-time estimation: historical prep time of a truck
and its live queue of confirmed/preparing orders. Recomputed on every call.
"""
import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.core.clock import utcnow
from app.core.database import async_session_maker
from app.core.exceptions import MetricsUnavailable, NotFound
from app.core.logging_config import get_logger
from app.models import Order, Truck
from app.services.order_status import ACTIVE_QUEUE_STATUSES, HISTORY_STATUSES, prep_minutes_between
from app.services.wait_time import (
    EstimationPolicy,
    QueueSnapshot,
    TruckMetricsSnapshot,
    WaitTimeEstimate,
    calculate_item_complexity,
    default_estimate,
    estimate_wait_time,
    to_cart_items,
)

logger = get_logger(__name__)


def policy_from_settings() -> EstimationPolicy:
    return EstimationPolicy(queue_overlap_factor=settings.queue_overlap_factor)


def truck_local_time(now: datetime, tz_name: Optional[str]) -> datetime:
    """Naive UTC `now` converted to the truck's wall clock."""
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown truck timezone %r, using UTC", tz_name)
        tz = timezone.utc
    return now.replace(tzinfo=timezone.utc).astimezone(tz)


async def get_truck(db: AsyncSession, truck_id: str) -> Truck:
    try:
        truck = await db.get(Truck, truck_id)
    except (SQLAlchemyError, OSError) as e:
        raise MetricsUnavailable(f"Order store unavailable: {e}") from e
    if truck is None:
        raise NotFound(f"Truck {truck_id} not found")
    return truck


async def get_truck_metrics(
    db: AsyncSession,
    truck: Truck,
    history_limit: Optional[int] = None,
) -> TruckMetricsSnapshot:
    """Average actual prep time over the truck's latest ready/completed orders."""
    limit = history_limit or settings.metrics_history_limit
    default_prep = truck.default_prep_time or settings.default_prep_time_minutes
    q = (
        select(Order.actual_prep_time, Order.preparing_at, Order.ready_at)
        .where(Order.truck_id == truck.id, Order.status.in_(HISTORY_STATUSES))
        .order_by(Order.created_at.desc())
        .limit(limit)
    )
    try:
        rows = (await db.execute(q)).all()
    except (SQLAlchemyError, OSError) as e:
        raise MetricsUnavailable(f"Order store unavailable: {e}") from e

    samples = []
    for actual, preparing_at, ready_at in rows:
        minutes = actual if actual is not None else prep_minutes_between(preparing_at, ready_at)
        if minutes is not None:
            samples.append(float(minutes))

    average = math.ceil(sum(samples) / len(samples)) if samples else default_prep
    return TruckMetricsSnapshot(
        average_prep_time=average,
        max_concurrent_orders=truck.max_concurrent_orders or settings.default_max_concurrent_orders,
        default_prep_time=default_prep,
        sample_size=len(samples),
    )


async def get_queue_snapshot(
    db: AsyncSession,
    truck_id: str,
    average_prep_time: float,
    *,
    created_before: Optional[datetime] = None,
    exclude_order_id: Optional[str] = None,
) -> QueueSnapshot:
    """
    Active (confirmed/preparing) orders of the truck, oldest first.
    `created_before` restricts the count to orders ahead of an existing order.
    """
    q = (
        select(Order.id)
        .where(Order.truck_id == truck_id, Order.status.in_(ACTIVE_QUEUE_STATUSES))
        .order_by(Order.created_at.asc())
    )
    if created_before is not None:
        q = q.where(Order.created_at < created_before)
    if exclude_order_id is not None:
        q = q.where(Order.id != exclude_order_id)
    try:
        order_ids = tuple((await db.execute(q)).scalars().all())
    except (SQLAlchemyError, OSError) as e:
        raise MetricsUnavailable(f"Order store unavailable: {e}") from e

    position = len(order_ids)
    wait = position * average_prep_time * settings.queue_overlap_factor if position else 0
    return QueueSnapshot(
        position=position,
        estimated_wait_minutes=math.ceil(wait),
        active_order_ids=order_ids,
    )


async def estimate_for_truck(
    truck_id: str,
    items: Iterable[Any],
    *,
    now: Optional[datetime] = None,
    ahead_of: Optional[Order] = None,
    timeout: Optional[float] = None,
    session_maker: async_sessionmaker = async_session_maker,
) -> WaitTimeEstimate:
    """
    ETA for `items` at the truck. Malformed items raise EstimationInputError;
    an unreachable or slow store degrades to the default estimate instead.
    `ahead_of` counts only orders queued before that order.

    Snapshots are read in a session of their own, so a failed or cancelled read
    never leaves the caller's transaction needing a rollback.
    """
    now = now or utcnow()
    policy = policy_from_settings()
    items = to_cart_items(items)
    # Reject a bad cart before touching the store
    calculate_item_complexity(items, policy)

    async def _snapshots():
        async with session_maker() as db:
            return await _read_snapshots(db)

    async def _read_snapshots(db: AsyncSession):
        truck = await get_truck(db, truck_id)
        metrics = await get_truck_metrics(db, truck)
        queue = await get_queue_snapshot(
            db,
            truck_id,
            metrics.average_prep_time,
            created_before=ahead_of.created_at if ahead_of is not None else None,
            exclude_order_id=ahead_of.id if ahead_of is not None else None,
        )
        return truck, metrics, queue

    try:
        truck, metrics, queue = await asyncio.wait_for(
            _snapshots(), timeout=timeout or settings.estimation_timeout_seconds
        )
    except (MetricsUnavailable, asyncio.TimeoutError) as e:
        logger.warning("Estimation for truck %s fell back to defaults: %s", truck_id, str(e) or "timeout")
        return default_estimate(now, settings.default_prep_time_minutes)

    return estimate_wait_time(
        items,
        metrics,
        queue,
        now,
        local_now=truck_local_time(now, truck.timezone),
        policy=policy,
    )
