from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import RequireAnyAuth, RequireCustomer, RequireVendor
from app.config import settings
from app.core.database import get_db
from app.core.logging_config import get_logger
from app.core.permissions import Actor, can_view_order
from app.models import Truck
from app.schemas.order import OrderCreate, OrderResponse, StatusChangedEvent, TransitionRequest
from app.services.notifications import NotificationDispatcher, StatusChanged, get_dispatcher
from app.services.order_service import (
    create_order,
    get_order,
    get_truck_owner_id,
    list_customer_orders,
    refresh_estimate,
    transition_order,
)
from app.services.telegram_notify import deliver_status_notifications

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def _sse(event: StatusChanged) -> str:
    payload = StatusChangedEvent(
        order_id=event.order_id,
        from_status=event.from_status,
        to_status=event.to_status,
        version=event.version,
        order=event.order,
    ).model_dump_json()
    return f"event: status_changed\nid: {event.version}\ndata: {payload}\n\n"


@router.post("", response_model=OrderResponse)
async def post_order(
    data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireCustomer),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    order = await create_order(db, data, customer_id=user.id)
    if order.notify_chat_id is not None and settings.telegram_bot_token:
        truck = await db.get(Truck, order.truck_id)
        order_id, chat_id, truck_name = order.id, order.notify_chat_id, truck.name
        dispatcher.start_background(
            lambda: deliver_status_notifications(dispatcher, order_id, chat_id, truck_name),
            name=f"telegram-{order_id}",
        )
    return OrderResponse.model_validate(order)


@router.get("", response_model=list[OrderResponse])
async def list_my_orders(
    active: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireCustomer),
):
    """Customer's own orders, newest first; active=true hides completed/cancelled."""
    orders = await list_customer_orders(db, user.id, active_only=active, limit=limit)
    return [OrderResponse.model_validate(o) for o in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order_snapshot(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireAnyAuth),
):
    order = await get_order(db, order_id)
    owner_id = await get_truck_owner_id(db, order.truck_id)
    if not can_view_order(user, order, owner_id):
        raise HTTPException(status_code=403, detail="No access to this order")
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/transition", response_model=OrderResponse)
async def post_transition(
    order_id: str,
    body: TransitionRequest,
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireAnyAuth),
):
    order = await transition_order(db, order_id, body.status, user)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/estimate/refresh", response_model=OrderResponse)
async def post_refresh_estimate(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireVendor),
):
    order = await refresh_estimate(db, order_id, user)
    return OrderResponse.model_validate(order)


@router.get("/{order_id}/events")
async def stream_order_events(
    order_id: str,
    observer_id: Optional[str] = Query(None, max_length=64, description="Per-view id, e.g. tracking page or board"),
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireAnyAuth),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Server-sent StatusChanged events; the stream ends after a terminal status."""
    order = await get_order(db, order_id)
    owner_id = await get_truck_owner_id(db, order.truck_id)
    if not can_view_order(user, order, owner_id):
        raise HTTPException(status_code=403, detail="No access to this order")

    # Markers belong to the user, so a reload or another device resumes where it left off
    observer = f"{user.role}:{user.id}" + (f":{observer_id}" if observer_id else "")
    subscription = dispatcher.subscribe(observer, order_id)

    async def _stream():
        async with subscription:
            async for event in subscription:
                yield _sse(event)

    logger.info("Observer %s subscribed to order %s", observer, order_id)
    return StreamingResponse(_stream(), media_type="text/event-stream")
