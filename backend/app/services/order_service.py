from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.core.change_feed import change_feed
from app.core.clock import utcnow
from app.core.exceptions import ConcurrentModification, EstimationInputError, InvalidTransition, NotFound, Unauthorized
from app.core.logging_config import get_logger
from app.core.permissions import Actor, is_truck_owner
from app.models import Order, OrderStatus, OrderStatusChange, Truck
from app.schemas.order import OrderCreate
from app.services.order_status import (
    ACTIVE_QUEUE_STATUSES,
    TERMINAL_STATUSES,
    apply_transition,
    check_transition,
)
from app.services.truck_metrics import estimate_for_truck
from app.services.wait_time import WaitTimeEstimate, default_estimate

logger = get_logger(__name__)

_CENT = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def calculate_totals(data: OrderCreate) -> tuple[Decimal, Decimal, Decimal]:
    """Subtotal, tax and total; fixed at placement."""
    subtotal = _money(sum((item.price * item.quantity for item in data.items), Decimal("0")))
    tax = _money(subtotal * Decimal(str(settings.tax_rate)))
    return subtotal, tax, subtotal + tax


async def get_order(db: AsyncSession, order_id: str) -> Order:
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    return order


async def get_truck_owner_id(db: AsyncSession, truck_id: str) -> Optional[str]:
    r = await db.execute(select(Truck.owner_id).where(Truck.id == truck_id))
    return r.scalar_one_or_none()


async def _estimate_or_default(
    truck_id: str, items, now: datetime, ahead_of: Optional[Order] = None
) -> WaitTimeEstimate:
    """Estimation never blocks fulfillment: a stored cart that fails validation gets the default."""
    try:
        return await estimate_for_truck(truck_id, items, now=now, ahead_of=ahead_of)
    except EstimationInputError as e:
        logger.warning("Stored cart of truck %s not estimable (%s), using default", truck_id, e.detail)
        return default_estimate(now, settings.default_prep_time_minutes)


async def _commit_and_publish(db: AsyncSession, order: Order) -> None:
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        raise ConcurrentModification(f"Order {order.id} was modified concurrently, retry") from e
    change_feed.publish(order.id, order.version)


async def create_order(
    db: AsyncSession,
    data: OrderCreate,
    customer_id: str,
    *,
    now: Optional[datetime] = None,
) -> Order:
    """Place an order in `pending` with totals and an initial ETA. Payment is not checked here."""
    now = now or utcnow()
    truck = await db.get(Truck, data.truck_id)
    if truck is None:
        raise NotFound(f"Truck {data.truck_id} not found")

    estimate = await estimate_for_truck(truck.id, data.items, now=now)
    subtotal, tax, total = calculate_totals(data)
    order = Order(
        customer_id=customer_id,
        customer_name=(data.customer_name or "").strip() or None,
        truck_id=truck.id,
        items=[item.model_dump(mode="json") for item in data.items],
        subtotal=subtotal,
        tax=tax,
        total_amount=total,
        status=OrderStatus.PENDING,
        special_instructions=(data.special_instructions or "").strip() or None,
        pickup_preference=data.pickup_preference,
        notify_chat_id=data.notify_chat_id,
        estimated_prep_time=estimate.total_wait_minutes,
        estimated_ready_time=estimate.estimated_ready_time,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    await db.flush()
    db.add(
        OrderStatusChange(
            order_id=order.id,
            version=order.version,
            from_status=None,
            to_status=OrderStatus.PENDING,
            actor_id=customer_id,
            created_at=now,
        )
    )
    await _commit_and_publish(db, order)
    logger.info("Order %s placed at truck %s, eta=%s min", order.id, truck.id, order.estimated_prep_time)
    return order


async def transition_order(
    db: AsyncSession,
    order_id: str,
    target: OrderStatus,
    actor: Actor,
    *,
    now: Optional[datetime] = None,
) -> Order:
    """
    Validate and apply one status transition, then persist it together with its
    status-change record. Re-issuing the current status is a successful no-op.
    """
    now = now or utcnow()
    order = await get_order(db, order_id)
    owner_id = await get_truck_owner_id(db, order.truck_id)
    if not check_transition(order, target, actor, owner_id):
        logger.info("Order %s already %s, transition is a no-op", order.id, target.value)
        return order

    estimate = None
    if target == OrderStatus.PREPARING:
        estimate = await _estimate_or_default(order.truck_id, order.items, now, ahead_of=order)

    previous = apply_transition(order, target, now)
    if estimate is not None:
        order.estimated_prep_time = estimate.total_wait_minutes
        order.estimated_ready_time = estimate.estimated_ready_time
    try:
        await db.flush()
    except StaleDataError as e:
        await db.rollback()
        raise ConcurrentModification(f"Order {order_id} was modified concurrently, retry") from e

    db.add(
        OrderStatusChange(
            order_id=order.id,
            version=order.version,
            from_status=previous,
            to_status=target,
            actor_id=actor.id,
            created_at=order.updated_at,
        )
    )
    await _commit_and_publish(db, order)
    logger.info("Order %s: %s -> %s by %s", order.id, previous.value, target.value, actor.id)
    return order


async def refresh_estimate(
    db: AsyncSession,
    order_id: str,
    actor: Actor,
    *,
    now: Optional[datetime] = None,
) -> Order:
    """Recompute the ETA of an open order without changing its status."""
    now = now or utcnow()
    order = await get_order(db, order_id)
    owner_id = await get_truck_owner_id(db, order.truck_id)
    if not is_truck_owner(actor, owner_id):
        raise Unauthorized(f"Actor {actor.id} may not update order {order.id}")
    if order.status in TERMINAL_STATUSES or order.status == OrderStatus.READY:
        raise InvalidTransition(f"Order {order.id} is {order.status.value}, nothing to estimate")

    ahead_of = order if order.status in ACTIVE_QUEUE_STATUSES else None
    estimate = await _estimate_or_default(order.truck_id, order.items, now, ahead_of=ahead_of)
    order.estimated_prep_time = estimate.total_wait_minutes
    order.estimated_ready_time = estimate.estimated_ready_time
    order.updated_at = max(now, order.updated_at)
    await _commit_and_publish(db, order)
    logger.info("Order %s ETA refreshed: %s min", order.id, order.estimated_prep_time)
    return order


async def list_customer_orders(db: AsyncSession, customer_id: str, active_only: bool = False, limit: int = 50) -> List[Order]:
    q = select(Order).where(Order.customer_id == customer_id).order_by(Order.created_at.desc()).limit(limit)
    if active_only:
        q = q.where(Order.status.not_in(tuple(TERMINAL_STATUSES)))
    result = await db.execute(q)
    return list(result.scalars().all())


async def list_truck_orders(
    db: AsyncSession, truck_id: str, status: Optional[OrderStatus] = None, limit: int = 100
) -> List[Order]:
    """Vendor board: oldest first so the queue reads top-down."""
    q = select(Order).where(Order.truck_id == truck_id).order_by(Order.created_at.asc()).limit(limit)
    if status is not None:
        q = q.where(Order.status == status)
    else:
        q = q.where(Order.status.not_in(tuple(TERMINAL_STATUSES)))
    result = await db.execute(q)
    return list(result.scalars().all())
