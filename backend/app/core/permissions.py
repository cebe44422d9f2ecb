"""
Access rules: actor role x order ownership.
Vendors act on orders of trucks they own; customers see their own orders and
may cancel them only while the vendor has not confirmed yet.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from app.models.order import Order, OrderStatus


class ActorRole(str, Enum):
    VENDOR = "vendor"
    CUSTOMER = "customer"


class Actor(BaseModel):
    id: str
    role: str
    name: str = ""


def _parse_role(role: str) -> Optional[ActorRole]:
    try:
        return ActorRole(role)
    except ValueError:
        return None


def is_truck_owner(actor: Actor, truck_owner_id: Optional[str]) -> bool:
    return _parse_role(actor.role) == ActorRole.VENDOR and truck_owner_id is not None and actor.id == truck_owner_id


def is_order_customer(actor: Actor, order: Order) -> bool:
    return _parse_role(actor.role) == ActorRole.CUSTOMER and actor.id == order.customer_id


def can_transition_as(actor: Actor, order: Order, target: OrderStatus, truck_owner_id: Optional[str]) -> bool:
    """Vendor owning the truck: any target. Customer: cancel own order while still pending."""
    if is_truck_owner(actor, truck_owner_id):
        return True
    if is_order_customer(actor, order) and target == OrderStatus.CANCELLED:
        # A retried cancel on an already cancelled order is a harmless no-op
        return order.status in (OrderStatus.PENDING, OrderStatus.CANCELLED)
    return False


def can_view_order(actor: Actor, order: Order, truck_owner_id: Optional[str]) -> bool:
    return is_order_customer(actor, order) or is_truck_owner(actor, truck_owner_id)
