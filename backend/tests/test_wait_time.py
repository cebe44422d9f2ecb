"""Wait-time estimator: pure arithmetic, fixed clocks."""
from datetime import datetime, timedelta

import pytest

from app.core.exceptions import EstimationInputError
from app.services.wait_time import (
    CartItem,
    EstimationPolicy,
    QueueSnapshot,
    TruckMetricsSnapshot,
    calculate_item_complexity,
    default_estimate,
    estimate_wait_time,
    format_wait_time,
    queue_status_text,
    rush_hour_multiplier,
    to_cart_items,
)

WEDNESDAY_NOON = datetime(2024, 1, 10, 12, 0)
WEDNESDAY_3PM = datetime(2024, 1, 10, 15, 0)
SATURDAY_6PM = datetime(2024, 1, 13, 18, 0)

METRICS = TruckMetricsSnapshot(average_prep_time=15)
EMPTY_QUEUE = QueueSnapshot(position=0)
TWO_PLAIN = [CartItem(quantity=1), CartItem(quantity=1)]


def test_two_plain_items_at_weekday_lunch():
    """avg 15, empty queue, two plain items, Wednesday noon -> 26 minutes."""
    est = estimate_wait_time(TWO_PLAIN, METRICS, EMPTY_QUEUE, WEDNESDAY_NOON)
    assert est.preparation_time == 18
    assert est.queue_time == 0
    assert est.is_rush_hour
    assert est.rush_multiplier == 1.4
    assert est.total_wait_minutes == 26
    assert est.estimated_ready_time == WEDNESDAY_NOON + timedelta(minutes=26)
    assert not est.is_fallback


def test_two_plain_items_off_peak():
    est = estimate_wait_time(TWO_PLAIN, METRICS, EMPTY_QUEUE, WEDNESDAY_3PM)
    assert est.total_wait_minutes == 18
    assert est.peak_adjustment == 0
    assert not est.is_rush_hour


def test_empty_cart_uses_floor_and_multiplier_one():
    est = estimate_wait_time([], TruckMetricsSnapshot(average_prep_time=0), EMPTY_QUEUE, WEDNESDAY_3PM)
    assert est.total_wait_minutes == 5


def test_queue_overlap():
    est = estimate_wait_time(TWO_PLAIN, METRICS, QueueSnapshot(position=2), WEDNESDAY_3PM)
    # 2 * 15 * 0.7 = 21 queue + 18 prep
    assert est.queue_time == 21
    assert est.queue_position == 2
    assert est.total_wait_minutes == 39


def test_overlap_factor_is_policy():
    policy = EstimationPolicy(queue_overlap_factor=1.0)
    est = estimate_wait_time(TWO_PLAIN, METRICS, QueueSnapshot(position=2), WEDNESDAY_3PM, policy=policy)
    assert est.queue_time == 30


def test_local_clock_selects_rush_window():
    """UTC 15:00 is off peak, but the truck's local 12:00 is lunch rush."""
    est = estimate_wait_time(
        TWO_PLAIN, METRICS, EMPTY_QUEUE, WEDNESDAY_3PM, local_now=WEDNESDAY_NOON
    )
    assert est.total_wait_minutes == 26
    assert est.estimated_ready_time == WEDNESDAY_3PM + timedelta(minutes=26)


@pytest.mark.parametrize(
    "moment,expected",
    [
        (datetime(2024, 1, 10, 10, 59), 1.0),
        (datetime(2024, 1, 10, 11, 0), 1.4),
        (datetime(2024, 1, 10, 13, 59), 1.4),
        (datetime(2024, 1, 10, 14, 0), 1.0),
        (datetime(2024, 1, 10, 17, 30), 1.3),
        (datetime(2024, 1, 10, 19, 0), 1.0),
        (datetime(2024, 1, 13, 12, 0), 1.3),
        (SATURDAY_6PM, 1.2),
        (datetime(2024, 1, 14, 19, 59), 1.2),
        (datetime(2024, 1, 14, 20, 0), 1.0),
    ],
)
def test_rush_hour_windows(moment, expected):
    assert rush_hour_multiplier(moment) == expected


def test_category_and_customization_weights():
    items = [CartItem(quantity=2, category="BBQ Ribs", has_customizations=True)]
    c = calculate_item_complexity(items)
    # 2 * (1 + 2.0 + 0.5)
    assert c.complexity_score == 7.0
    assert c.total_items == 2
    assert c.multiplier == pytest.approx(1.7)
    assert c.minimum_time == 5


def test_multiplier_is_capped():
    c = calculate_item_complexity([CartItem(quantity=20, category="grill")])
    assert c.multiplier == 3.0
    assert c.minimum_time == 40


def test_more_items_never_shorter():
    previous = 0
    for n in range(1, 12):
        est = estimate_wait_time([CartItem(quantity=n)], METRICS, EMPTY_QUEUE, WEDNESDAY_3PM)
        assert est.total_wait_minutes >= previous
        previous = est.total_wait_minutes


def test_longer_queue_never_shorter():
    previous = 0
    for position in range(0, 6):
        est = estimate_wait_time(TWO_PLAIN, METRICS, QueueSnapshot(position=position), WEDNESDAY_3PM)
        assert est.total_wait_minutes >= previous
        previous = est.total_wait_minutes


def test_zero_quantity_rejected():
    with pytest.raises(EstimationInputError):
        estimate_wait_time([CartItem(quantity=0)], METRICS, EMPTY_QUEUE, WEDNESDAY_3PM)


def test_missing_snapshots_rejected():
    with pytest.raises(EstimationInputError):
        estimate_wait_time(TWO_PLAIN, None, EMPTY_QUEUE, WEDNESDAY_3PM)
    with pytest.raises(EstimationInputError):
        estimate_wait_time(TWO_PLAIN, METRICS, None, WEDNESDAY_3PM)
    with pytest.raises(EstimationInputError):
        estimate_wait_time(TWO_PLAIN, TruckMetricsSnapshot(average_prep_time=float("nan")), EMPTY_QUEUE, WEDNESDAY_3PM)


@pytest.mark.parametrize(
    "item",
    [
        {"quantity": "2"},
        {"quantity": 1, "price": -1},
        {"quantity": 1, "price": "abc"},
        {"quantity": 1, "category": 5},
        None,
    ],
)
def test_malformed_items_rejected(item):
    with pytest.raises(EstimationInputError):
        to_cart_items([item])


def test_stored_items_normalized():
    cart = to_cart_items([{"id": "x", "name": "X", "price": "3.00", "quantity": 2, "category": "wrap", "customizations": ["no onion"]}])
    assert cart == [CartItem(quantity=2, category="wrap", has_customizations=True)]


def test_default_estimate():
    est = default_estimate(WEDNESDAY_NOON)
    assert est.is_fallback
    assert est.total_wait_minutes == 15
    assert est.queue_time == 0
    assert est.queue_position == 0
    assert est.estimated_ready_time == WEDNESDAY_NOON + timedelta(minutes=15)


@pytest.mark.parametrize(
    "minutes,text",
    [(0, "Ready now!"), (4, "~5 minutes"), (12, "15 minutes"), (26, "30 minutes"), (31, "40 minutes")],
)
def test_format_wait_time(minutes, text):
    assert format_wait_time(minutes) == text


@pytest.mark.parametrize(
    "ahead,text",
    [(0, "You'll be next in line!"), (1, "1 order ahead of you"), (2, "2 orders ahead of you"), (5, "5 orders in queue")],
)
def test_queue_status_text(ahead, text):
    assert queue_status_text(ahead) == text
