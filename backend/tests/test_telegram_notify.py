"""Telegram status messages as a dispatcher observer."""
import json
from decimal import Decimal

import httpx

from app.config import settings
from app.models import OrderStatus
from app.schemas.order import OrderCreate, OrderItem
from app.services.notifications import NotificationDispatcher
from app.services.order_service import create_order, transition_order
from app.services.telegram_notify import (
    deliver_status_notifications,
    format_status_message,
    observer_id_for_chat,
    send_message,
)

CHAT_ID = 424242


async def place(session):
    data = OrderCreate(
        truck_id="taco-town",
        items=[OrderItem(id="taco", name="Taco", price=Decimal("4.50"))],
        notify_chat_id=CHAT_ID,
    )
    return await create_order(session, data, "customer-1")


def recording_client(sent, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        sent.append((request.url.path, json.loads(request.content)))
        return httpx.Response(status_code, json={"ok": status_code == 200})
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_messages_per_status(session, vendor):
    dispatcher = NotificationDispatcher(poll_interval=0.05)
    order = await place(session)
    observer = observer_id_for_chat(CHAT_ID)

    event, _ = await dispatcher.claim_next(observer, order.id)
    assert format_status_message(event, "Taco Town") is None

    await transition_order(session, order.id, OrderStatus.CONFIRMED, vendor)
    event, _ = await dispatcher.claim_next(observer, order.id)
    text = format_status_message(event, "Taco Town")
    assert text.startswith("✅ Order Confirmed!")
    assert f"#{order.id[:8]}" in text
    assert "Taco Town" in text

    await transition_order(session, order.id, OrderStatus.CANCELLED, vendor)
    event, _ = await dispatcher.claim_next(observer, order.id)
    assert "Order Cancelled" in format_status_message(event)


async def test_send_message_reports_failure():
    sent = []
    async with recording_client(sent, status_code=400) as client:
        assert await send_message(client, "TOKEN", CHAT_ID, "hi") is False
    assert sent == [("/botTOKEN/sendMessage", {"chat_id": CHAT_ID, "text": "hi"})]


async def test_deliver_until_terminal(session, vendor, monkeypatch):
    monkeypatch.setattr(settings, "telegram_bot_token", "TOKEN")
    dispatcher = NotificationDispatcher(poll_interval=0.05)
    order = await place(session)
    await transition_order(session, order.id, OrderStatus.CONFIRMED, vendor)
    await transition_order(session, order.id, OrderStatus.CANCELLED, vendor)

    sent = []
    async with recording_client(sent) as client:
        count = await deliver_status_notifications(dispatcher, order.id, CHAT_ID, "Taco Town", client=client)

    # Late observer: one message for the current (terminal) status
    assert count == 1
    assert "Order Cancelled" in sent[0][1]["text"]
    # Delivered once; a second run has nothing to send
    async with recording_client(sent) as client:
        assert await deliver_status_notifications(dispatcher, order.id, CHAT_ID, client=client) == 0


async def test_deliver_disabled_without_token(session, monkeypatch):
    monkeypatch.setattr(settings, "telegram_bot_token", None)
    order = await place(session)
    assert await deliver_status_notifications(NotificationDispatcher(), order.id, CHAT_ID) == 0
