"""Per-observer record of the last status delivered for an order."""
from datetime import datetime
from typing import Optional
from sqlalchemy import Boolean, String, Enum, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.clock import utcnow
from app.core.database import Base
from app.models.order import OrderStatus


class NotificationMarker(Base):
    __tablename__ = "notification_markers"
    __table_args__ = (UniqueConstraint("observer_id", "order_id", name="uq_marker_observer_order"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    observer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    last_notified_status: Mapped[Optional[OrderStatus]] = mapped_column(Enum(OrderStatus), nullable=True)
    last_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
