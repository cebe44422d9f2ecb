from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

from app.models.order import OrderStatus, PickupPreference


class OrderItem(BaseModel):
    """Cart line as placed by the customer; unknown keys are rejected."""
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(default=1, ge=1)
    category: Optional[str] = None
    customizations: List[str] = Field(default_factory=list)


class OrderCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    truck_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    customer_name: Optional[str] = None
    special_instructions: Optional[str] = Field(default=None, max_length=500)
    pickup_preference: PickupPreference = PickupPreference.ASAP
    # Telegram chat for status messages, if the customer linked one
    notify_chat_id: Optional[int] = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    customer_name: Optional[str] = None
    truck_id: str
    items: List[OrderItem]
    subtotal: Decimal
    tax: Decimal
    total_amount: Decimal
    status: OrderStatus
    special_instructions: Optional[str] = None
    pickup_preference: PickupPreference
    estimated_prep_time: Optional[int] = None
    estimated_ready_time: Optional[datetime] = None
    actual_prep_time: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    confirmed_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    version: int


class TransitionRequest(BaseModel):
    status: OrderStatus


class EstimateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: List[OrderItem] = Field(default_factory=list)


class EstimateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_wait_minutes: int
    preparation_time: int
    queue_time: int
    peak_adjustment: int
    queue_position: int
    estimated_ready_time: datetime
    is_rush_hour: bool
    is_fallback: bool
    display: str
    queue_status: str


class StatusChangedEvent(BaseModel):
    order_id: str
    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    version: int
    order: OrderResponse
