"""
Wait-time estimation for a cart at a given truck.

Pure functions of their inputs: the caller supplies the truck metrics, the queue
snapshot and the clock, so everything here is testable without a database.
Store access lives in truck_metrics.py.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.core.exceptions import EstimationInputError


@dataclass(frozen=True)
class CartItem:
    quantity: int
    category: Optional[str] = None
    has_customizations: bool = False


@dataclass(frozen=True)
class TruckMetricsSnapshot:
    average_prep_time: float
    max_concurrent_orders: int = 3
    default_prep_time: int = 15
    sample_size: int = 0


@dataclass(frozen=True)
class QueueSnapshot:
    position: int
    estimated_wait_minutes: int = 0
    active_order_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RushWindow:
    weekend: bool
    start_hour: int
    end_hour: int  # exclusive
    multiplier: float

    def matches(self, local_now: datetime) -> bool:
        is_weekend = local_now.weekday() >= 5
        return is_weekend == self.weekend and self.start_hour <= local_now.hour < self.end_hour


DEFAULT_RUSH_WINDOWS: Tuple[RushWindow, ...] = (
    RushWindow(weekend=False, start_hour=11, end_hour=14, multiplier=1.4),
    RushWindow(weekend=False, start_hour=17, end_hour=19, multiplier=1.3),
    RushWindow(weekend=True, start_hour=11, end_hour=14, multiplier=1.3),
    RushWindow(weekend=True, start_hour=17, end_hour=20, multiplier=1.2),
)

# First matching keyword group wins; weights are per unit of quantity
DEFAULT_CATEGORY_WEIGHTS: Tuple[Tuple[Tuple[str, ...], float], ...] = (
    (("grill", "bbq"), 2.0),
    (("fried", "cooked"), 1.5),
    (("sandwich", "wrap"), 1.2),
)


@dataclass(frozen=True)
class EstimationPolicy:
    """Tunable constants of the estimator."""
    base_item_weight: float = 1.0
    customization_weight: float = 0.5
    category_weights: Tuple[Tuple[Tuple[str, ...], float], ...] = DEFAULT_CATEGORY_WEIGHTS
    complexity_divisor: float = 10.0
    min_multiplier: float = 1.0
    max_multiplier: float = 3.0
    minimum_time_floor: float = 5.0
    minutes_per_item: float = 2.0
    # Concurrently preparing orders overlap, so each one ahead costs less than a full prep
    queue_overlap_factor: float = 0.7
    rush_windows: Tuple[RushWindow, ...] = DEFAULT_RUSH_WINDOWS


DEFAULT_POLICY = EstimationPolicy()


@dataclass(frozen=True)
class ItemComplexity:
    complexity_score: float
    total_items: int
    multiplier: float
    minimum_time: float


@dataclass(frozen=True)
class WaitTimeEstimate:
    total_wait_minutes: int
    preparation_time: int
    queue_time: int
    peak_adjustment: int
    queue_position: int
    estimated_ready_time: datetime
    is_rush_hour: bool = False
    rush_multiplier: float = 1.0
    is_fallback: bool = False
    display: str = field(default="")


def _ceil(value: float) -> int:
    # Float noise such as 18.000000000000004 must not add a whole minute
    return math.ceil(round(value, 6))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, Mapping):
        return item.get(name, default)
    return getattr(item, name, default)


def to_cart_items(items: Optional[Iterable[Any]]) -> List[CartItem]:
    """
    Normalize order items (pydantic models, stored dicts or CartItem) for the estimator.
    Raises EstimationInputError on anything that cannot be a cart line.
    """
    if items is None:
        return []
    cart: List[CartItem] = []
    for index, item in enumerate(items):
        if isinstance(item, CartItem):
            cart.append(item)
            continue
        if item is None:
            raise EstimationInputError(f"Item #{index} is empty")
        quantity = _field(item, "quantity", 1)
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise EstimationInputError(f"Item #{index}: quantity must be an integer")
        price = _field(item, "price", 0)
        try:
            negative_price = price is not None and float(price) < 0
        except (TypeError, ValueError):
            raise EstimationInputError(f"Item #{index}: price is not a number")
        if negative_price:
            raise EstimationInputError(f"Item #{index}: price must not be negative")
        category = _field(item, "category")
        if category is not None and not isinstance(category, str):
            raise EstimationInputError(f"Item #{index}: category must be text")
        customizations = _field(item, "customizations") or []
        cart.append(CartItem(quantity=quantity, category=category, has_customizations=len(customizations) > 0))
    return cart


def category_weight(category: Optional[str], policy: EstimationPolicy = DEFAULT_POLICY) -> float:
    if not category:
        return 0.0
    category = category.lower()
    for keywords, weight in policy.category_weights:
        if any(k in category for k in keywords):
            return weight
    return 0.0


def calculate_item_complexity(items: Sequence[CartItem], policy: EstimationPolicy = DEFAULT_POLICY) -> ItemComplexity:
    score = 0.0
    total_items = 0
    for item in items:
        if item.quantity < 1:
            raise EstimationInputError(f"Quantity must be at least 1, got {item.quantity}")
        total_items += item.quantity
        score += item.quantity * policy.base_item_weight
        score += item.quantity * category_weight(item.category, policy)
        if item.has_customizations:
            score += item.quantity * policy.customization_weight

    multiplier = min(policy.max_multiplier, max(policy.min_multiplier, 1 + score / policy.complexity_divisor))
    minimum_time = max(policy.minimum_time_floor, total_items * policy.minutes_per_item)
    return ItemComplexity(
        complexity_score=score,
        total_items=total_items,
        multiplier=multiplier,
        minimum_time=minimum_time,
    )


def rush_hour_multiplier(local_now: datetime, policy: EstimationPolicy = DEFAULT_POLICY) -> float:
    for window in policy.rush_windows:
        if window.matches(local_now):
            return window.multiplier
    return 1.0


def queue_wait_minutes(position: int, average_prep_time: float, policy: EstimationPolicy = DEFAULT_POLICY) -> float:
    if position <= 0:
        return 0.0
    return position * average_prep_time * policy.queue_overlap_factor


def _check_snapshots(metrics: Optional[TruckMetricsSnapshot], queue: Optional[QueueSnapshot]) -> None:
    if metrics is None:
        raise EstimationInputError("Truck metrics are missing")
    if queue is None:
        raise EstimationInputError("Queue snapshot is missing")
    if not _is_number(metrics.average_prep_time) or metrics.average_prep_time < 0:
        raise EstimationInputError(f"Invalid average prep time: {metrics.average_prep_time!r}")
    if not isinstance(queue.position, int) or queue.position < 0:
        raise EstimationInputError(f"Invalid queue position: {queue.position!r}")


def estimate_wait_time(
    items: Iterable[Any],
    metrics: TruckMetricsSnapshot,
    queue: QueueSnapshot,
    now: datetime,
    *,
    local_now: Optional[datetime] = None,
    policy: EstimationPolicy = DEFAULT_POLICY,
) -> WaitTimeEstimate:
    """
    ETA for a cart: complexity-scaled prep time (with a per-item floor), plus
    overlapped queue time, plus the rush-hour surcharge on the prep part.
    `now` anchors the ready time; `local_now` (truck wall clock) picks the rush window.
    """
    _check_snapshots(metrics, queue)
    complexity = calculate_item_complexity(to_cart_items(items), policy)

    base_prep_time = max(metrics.average_prep_time * complexity.multiplier, complexity.minimum_time)
    queue_wait_time = queue_wait_minutes(queue.position, metrics.average_prep_time, policy)
    rush = rush_hour_multiplier(local_now or now, policy)
    peak_adjustment = base_prep_time * (rush - 1)

    total = _ceil(queue_wait_time + base_prep_time + peak_adjustment)
    return WaitTimeEstimate(
        total_wait_minutes=total,
        preparation_time=_ceil(base_prep_time),
        queue_time=_ceil(queue_wait_time),
        peak_adjustment=_ceil(peak_adjustment),
        queue_position=queue.position,
        estimated_ready_time=now + timedelta(minutes=total),
        is_rush_hour=rush > 1.0,
        rush_multiplier=rush,
        display=format_wait_time(total),
    )


def default_estimate(now: datetime, default_prep_time: int = 15) -> WaitTimeEstimate:
    """Used when the store cannot supply metrics: fixed prep time, empty queue."""
    return WaitTimeEstimate(
        total_wait_minutes=default_prep_time,
        preparation_time=default_prep_time,
        queue_time=0,
        peak_adjustment=0,
        queue_position=0,
        estimated_ready_time=now + timedelta(minutes=default_prep_time),
        is_fallback=True,
        display=format_wait_time(default_prep_time),
    )


def format_wait_time(minutes: int) -> str:
    if minutes <= 0:
        return "Ready now!"
    if minutes <= 5:
        return "~5 minutes"
    if minutes <= 30:
        return f"{math.ceil(minutes / 5) * 5} minutes"
    return f"{math.ceil(minutes / 10) * 10} minutes"


def queue_status_text(orders_ahead: int) -> str:
    if orders_ahead <= 0:
        return "You'll be next in line!"
    if orders_ahead == 1:
        return "1 order ahead of you"
    if orders_ahead <= 2:
        return f"{orders_ahead} orders ahead of you"
    return f"{orders_ahead} orders in queue"
