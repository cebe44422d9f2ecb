import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy import JSON, BigInteger, String, Enum, Float, Numeric, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.core.database import Base

JSONType = JSON().with_variant(JSONB, "postgresql")


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PickupPreference(str, enum.Enum):
    ASAP = "asap"
    SCHEDULED = "scheduled"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    truck_id: Mapped[str] = mapped_column(ForeignKey("trucks.id"), nullable=False, index=True)
    items: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True
    )
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pickup_preference: Mapped[PickupPreference] = mapped_column(
        Enum(PickupPreference), default=PickupPreference.ASAP, nullable=False
    )
    # Telegram chat that receives customer-facing status messages
    notify_chat_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    estimated_prep_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    estimated_ready_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actual_prep_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    preparing_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ready_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Bumped by every flush that changes the row; UPDATE ... WHERE version = :seen
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    truck = relationship("Truck", back_populates="orders")

    __mapper_args__ = {"version_id_col": version}


class OrderStatusChange(Base):
    """Append-only transition log; one row per applied status change."""
    __tablename__ = "order_status_changes"
    __table_args__ = (UniqueConstraint("order_id", "version", name="uq_status_change_order_version"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[Optional[OrderStatus]] = mapped_column(Enum(OrderStatus), nullable=True)
    to_status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
