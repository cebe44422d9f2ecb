"""Truck profile, live estimate, vendor board and metrics over HTTP."""
from app.core.permissions import ActorRole

CART = {"items": [{"id": "taco", "name": "Taco", "price": "4.50", "quantity": 2}]}


def test_upsert_truck(client, auth_headers, vendor_headers):
    owner = auth_headers("vendor-2", ActorRole.VENDOR)
    r = client.put(
        "/trucks/burger-bus",
        json={"name": "Burger Bus", "default_prep_time": 12, "max_concurrent_orders": 4, "timezone": "Europe/Berlin"},
        headers=owner,
    )
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["owner_id"] == "vendor-2"
    assert data["default_prep_time"] == 12

    # Somebody else's truck
    r = client.put("/trucks/burger-bus", json={"name": "Mine now"}, headers=vendor_headers)
    assert r.status_code == 403


def test_upsert_requires_vendor(client, customer_headers):
    assert client.put("/trucks/taco-town", json={}, headers=customer_headers).status_code == 403


def test_estimate_cart(client, customer_headers):
    r = client.post("/trucks/taco-town/estimate", json=CART, headers=customer_headers)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["is_fallback"] is False
    assert data["queue_position"] == 0
    assert data["queue_status"] == "You'll be next in line!"
    assert data["total_wait_minutes"] >= 18
    assert data["display"].endswith("minutes")


def test_estimate_errors(client, customer_headers):
    assert client.post("/trucks/nowhere/estimate", json=CART, headers=customer_headers).status_code == 404
    bad = {"items": [{"id": "taco", "name": "Taco", "price": "4.50", "quantity": 0}]}
    assert client.post("/trucks/taco-town/estimate", json=bad, headers=customer_headers).status_code == 422
    assert client.post("/trucks/taco-town/estimate", json=CART).status_code == 401


def test_vendor_board(client, customer_headers, vendor_headers, order_body):
    first = client.post("/orders", json=order_body(), headers=customer_headers).json()
    second = client.post("/orders", json=order_body(), headers=customer_headers).json()
    done = client.post("/orders", json=order_body(), headers=customer_headers).json()
    client.post(f"/orders/{first['id']}/transition", json={"status": "confirmed"}, headers=vendor_headers)
    client.post(f"/orders/{done['id']}/transition", json={"status": "cancelled"}, headers=vendor_headers)

    r = client.get("/trucks/taco-town/orders", headers=vendor_headers)
    assert r.status_code == 200
    board = r.json()
    assert [row["order"]["id"] for row in board] == [first["id"], second["id"]]
    assert board[0]["next_action"] == {"status": "preparing", "label": "Start Cooking"}
    assert board[1]["next_action"] == {"status": "confirmed", "label": "Confirm Order"}
    assert all(row["can_cancel"] for row in board)

    r = client.get("/trucks/taco-town/orders", params={"status": "cancelled"}, headers=vendor_headers)
    assert [row["order"]["id"] for row in r.json()] == [done["id"]]
    assert r.json()[0]["next_action"] is None


def test_vendor_board_owner_only(client, customer_headers, auth_headers):
    assert client.get("/trucks/taco-town/orders", headers=customer_headers).status_code == 403
    other = auth_headers("vendor-2", ActorRole.VENDOR)
    assert client.get("/trucks/taco-town/orders", headers=other).status_code == 403


def test_truck_metrics(client, customer_headers, vendor_headers, order_body):
    order = client.post("/orders", json=order_body(), headers=customer_headers).json()
    client.post(f"/orders/{order['id']}/transition", json={"status": "confirmed"}, headers=vendor_headers)

    r = client.get("/trucks/taco-town/metrics", headers=vendor_headers)
    assert r.status_code == 200
    data = r.json()
    assert data["average_prep_time"] == 15
    assert data["sample_size"] == 0
    assert data["queue_position"] == 1
    assert data["queue_wait_minutes"] == 11
    assert data["active_order_ids"] == [order["id"]]
