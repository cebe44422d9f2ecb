from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.core.database import Base


class Truck(Base):
    """Vendor profile: who owns the truck and how fast it usually cooks."""
    __tablename__ = "trucks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Food Truck")
    default_prep_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_concurrent_orders: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    # IANA name; rush hours are evaluated on the truck's wall clock
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    orders = relationship("Order", back_populates="truck")
