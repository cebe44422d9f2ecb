from app.core.database import Base
from app.models.truck import Truck
from app.models.order import Order, OrderStatus, OrderStatusChange, PickupPreference
from app.models.notification_marker import NotificationMarker

__all__ = [
    "Base",
    "NotificationMarker",
    "Order",
    "OrderStatus",
    "OrderStatusChange",
    "PickupPreference",
    "Truck",
]
