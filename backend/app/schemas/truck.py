from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

from app.models.order import OrderStatus
from app.schemas.order import OrderResponse


class TruckUpsert(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="Food Truck", max_length=255)
    default_prep_time: Optional[int] = Field(default=None, ge=1, le=240)
    max_concurrent_orders: int = Field(default=3, ge=1, le=50)
    timezone: str = "UTC"


class TruckResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    name: str
    default_prep_time: Optional[int] = None
    max_concurrent_orders: int
    timezone: str


class TruckMetricsResponse(BaseModel):
    truck_id: str
    average_prep_time: float
    max_concurrent_orders: int
    default_prep_time: int
    sample_size: int
    queue_position: int
    queue_wait_minutes: int
    active_order_ids: List[str]


class NextAction(BaseModel):
    status: OrderStatus
    label: str


class VendorBoardOrder(BaseModel):
    order: OrderResponse
    next_action: Optional[NextAction] = None
    can_cancel: bool = False
