from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth import RequireAnyAuth, RequireVendor
from app.core.database import get_db
from app.core.logging_config import get_logger
from app.core.permissions import Actor, is_truck_owner
from app.models import OrderStatus, Truck
from app.schemas.order import EstimateRequest, EstimateResponse, OrderResponse
from app.schemas.truck import NextAction, TruckMetricsResponse, TruckResponse, TruckUpsert, VendorBoardOrder
from app.services.order_service import list_truck_orders
from app.services.order_status import can_transition, next_vendor_action
from app.services.truck_metrics import estimate_for_truck, get_queue_snapshot, get_truck, get_truck_metrics
from app.services.wait_time import queue_status_text

logger = get_logger(__name__)

router = APIRouter(prefix="/trucks", tags=["trucks"])


async def _owned_truck(db: AsyncSession, truck_id: str, user: Actor) -> Truck:
    truck = await get_truck(db, truck_id)
    if not is_truck_owner(user, truck.owner_id):
        raise HTTPException(status_code=403, detail="Not the owner of this truck")
    return truck


@router.put("/{truck_id}", response_model=TruckResponse)
async def upsert_truck(
    truck_id: str,
    data: TruckUpsert,
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireVendor),
):
    """Vendor profile used by estimation: default prep time, capacity, timezone."""
    truck = await db.get(Truck, truck_id)
    if truck is None:
        truck = Truck(id=truck_id, owner_id=user.id)
        db.add(truck)
        logger.info("Truck %s registered by %s", truck_id, user.id)
    elif truck.owner_id != user.id:
        raise HTTPException(status_code=403, detail="Not the owner of this truck")
    truck.name = data.name
    truck.default_prep_time = data.default_prep_time
    truck.max_concurrent_orders = data.max_concurrent_orders
    truck.timezone = data.timezone
    await db.flush()
    return TruckResponse.model_validate(truck)


@router.post("/{truck_id}/estimate", response_model=EstimateResponse)
async def estimate_cart(
    truck_id: str,
    body: EstimateRequest,
    _user: Actor = Depends(RequireAnyAuth),
):
    """Live ETA for a cart before checkout."""
    estimate = await estimate_for_truck(truck_id, body.items)
    return EstimateResponse(
        total_wait_minutes=estimate.total_wait_minutes,
        preparation_time=estimate.preparation_time,
        queue_time=estimate.queue_time,
        peak_adjustment=estimate.peak_adjustment,
        queue_position=estimate.queue_position,
        estimated_ready_time=estimate.estimated_ready_time,
        is_rush_hour=estimate.is_rush_hour,
        is_fallback=estimate.is_fallback,
        display=estimate.display,
        queue_status=queue_status_text(estimate.queue_position),
    )


@router.get("/{truck_id}/metrics", response_model=TruckMetricsResponse)
async def truck_metrics(
    truck_id: str,
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireVendor),
):
    truck = await _owned_truck(db, truck_id, user)
    metrics = await get_truck_metrics(db, truck)
    queue = await get_queue_snapshot(db, truck.id, metrics.average_prep_time)
    return TruckMetricsResponse(
        truck_id=truck.id,
        average_prep_time=metrics.average_prep_time,
        max_concurrent_orders=metrics.max_concurrent_orders,
        default_prep_time=metrics.default_prep_time,
        sample_size=metrics.sample_size,
        queue_position=queue.position,
        queue_wait_minutes=queue.estimated_wait_minutes,
        active_order_ids=list(queue.active_order_ids),
    )


@router.get("/{truck_id}/orders", response_model=list[VendorBoardOrder])
async def vendor_board(
    truck_id: str,
    status: Optional[OrderStatus] = None,
    db: AsyncSession = Depends(get_db),
    user: Actor = Depends(RequireVendor),
):
    """Open orders of the truck (or one status), each with the next forward action."""
    await _owned_truck(db, truck_id, user)
    orders = await list_truck_orders(db, truck_id, status=status)
    out = []
    for o in orders:
        action = next_vendor_action(o.status)
        out.append(VendorBoardOrder(
            order=OrderResponse.model_validate(o),
            next_action=NextAction(status=action.status, label=action.label) if action else None,
            can_cancel=can_transition(o.status, OrderStatus.CANCELLED),
        ))
    return out
