"""
Order status state machine. Pure rules: no session, no I/O.
The order service wraps `apply_transition` with persistence and notification.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.core.exceptions import InvalidTransition, Unauthorized
from app.core.permissions import Actor, can_transition_as
from app.models import Order, OrderStatus

ALLOWED_TRANSITIONS: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    OrderStatus.CONFIRMED: [OrderStatus.PREPARING, OrderStatus.CANCELLED],
    OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.CANCELLED],
    OrderStatus.READY: [OrderStatus.COMPLETED],
    OrderStatus.COMPLETED: [],
    OrderStatus.CANCELLED: [],
}

TERMINAL_STATUSES = frozenset((OrderStatus.COMPLETED, OrderStatus.CANCELLED))
ACTIVE_QUEUE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.PREPARING)
HISTORY_STATUSES = (OrderStatus.COMPLETED, OrderStatus.READY)

# Column stamped when the order enters the status
STATUS_TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

# Forward action offered on the vendor board
_VENDOR_ACTIONS: dict[OrderStatus, tuple[OrderStatus, str]] = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, "Confirm Order"),
    OrderStatus.CONFIRMED: (OrderStatus.PREPARING, "Start Cooking"),
    OrderStatus.PREPARING: (OrderStatus.READY, "Order Ready!"),
    OrderStatus.READY: (OrderStatus.COMPLETED, "Complete Order"),
}


@dataclass(frozen=True)
class VendorAction:
    status: OrderStatus
    label: str


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, [])


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def next_vendor_action(status: OrderStatus) -> Optional[VendorAction]:
    action = _VENDOR_ACTIONS.get(status)
    if action is None:
        return None
    return VendorAction(status=action[0], label=action[1])


def check_transition(order: Order, target: OrderStatus, actor: Actor, truck_owner_id: Optional[str]) -> bool:
    """
    Validate a requested transition without touching the order.
    Returns False when the order already has `target` (idempotent retry), True when
    the transition must be applied. Raises Unauthorized / InvalidTransition otherwise.
    """
    if not can_transition_as(actor, order, target, truck_owner_id):
        raise Unauthorized(f"Actor {actor.id} may not move order {order.id} to {target.value}")
    if order.status == target:
        return False
    if not can_transition(order.status, target):
        raise InvalidTransition(
            f"Cannot move order {order.id} from {order.status.value} to {target.value}"
        )
    return True


def prep_minutes_between(started: Optional[datetime], finished: Optional[datetime]) -> Optional[float]:
    if started is None or finished is None or finished < started:
        return None
    return round((finished - started).total_seconds() / 60.0, 2)


def apply_transition(order: Order, target: OrderStatus, now: datetime) -> OrderStatus:
    """
    Move the order to `target` and stamp timestamps. Caller has validated the
    move with `check_transition`. Returns the previous status.
    """
    previous = order.status
    # Never move a stamp backwards if the clock stepped back between transitions
    last_stamp = max(
        (ts for ts in (order.created_at, *(getattr(order, f) for f in STATUS_TIMESTAMP_FIELDS.values())) if ts),
        default=now,
    )
    stamp = max(now, last_stamp)

    order.status = target
    field = STATUS_TIMESTAMP_FIELDS.get(target)
    if field and getattr(order, field) is None:
        setattr(order, field, stamp)
    order.updated_at = stamp
    if target == OrderStatus.READY:
        order.actual_prep_time = prep_minutes_between(order.preparing_at, order.ready_at)
    return previous
