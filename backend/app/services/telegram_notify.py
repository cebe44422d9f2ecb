"""
Customer status messages through the Telegram Bot API.
Runs as an ordinary observer of the dispatcher, so each transition is sent once;
sending failures are logged and never reach the order pipeline.
"""
from typing import Optional

import httpx

from app.config import settings
from app.core.logging_config import get_logger
from app.models import OrderStatus
from app.services.notifications import NotificationDispatcher, StatusChanged

logger = get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


def _get_bot_token() -> Optional[str]:
    return settings.telegram_bot_token


def observer_id_for_chat(chat_id: int) -> str:
    return f"telegram:{chat_id}"


def format_status_message(event: StatusChanged, truck_name: str = "Food Truck") -> Optional[str]:
    """Text for the new status, or None when the customer is not told (order just placed)."""
    order = event.order
    short_id = order.id[:8]
    if event.to_status == OrderStatus.CONFIRMED:
        eta = f" • ~{order.estimated_prep_time} min" if order.estimated_prep_time else ""
        return f"✅ Order Confirmed!\n{truck_name} confirmed your order #{short_id}{eta}"
    if event.to_status == OrderStatus.PREPARING:
        return f"👨‍🍳 Order Being Prepared\nYour meal is now being prepared by {truck_name}"
    if event.to_status == OrderStatus.READY:
        return f"🔔 Order Ready for Pickup!\nYour order #{short_id} from {truck_name} is ready! Come get it while it's hot!"
    if event.to_status == OrderStatus.COMPLETED:
        return f"✨ Order Complete\nThanks for choosing {truck_name}! Hope you enjoyed your meal!"
    if event.to_status == OrderStatus.CANCELLED:
        return f"❌ Order Cancelled\nYour order #{short_id} was cancelled. Refund will be processed within 3-5 days."
    return None


async def send_message(client: httpx.AsyncClient, token: str, chat_id: int, text: str) -> bool:
    url = f"{TELEGRAM_API_URL}/bot{token}/sendMessage"
    try:
        r = await client.post(url, json={"chat_id": chat_id, "text": text}, timeout=10.0)
    except httpx.HTTPError as e:
        logger.warning("Telegram sendMessage chat_id=%s failed: %s", chat_id, e)
        return False
    if r.status_code != 200:
        logger.warning("Telegram sendMessage %s: %s", r.status_code, r.text)
        return False
    return True


async def deliver_status_notifications(
    dispatcher: NotificationDispatcher,
    order_id: str,
    chat_id: int,
    truck_name: str = "Food Truck",
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Follow one order until it is terminal, sending a message per transition. Returns messages sent."""
    token = _get_bot_token()
    if not token:
        logger.warning("TELEGRAM_BOT_TOKEN not set, status messages for order %s disabled", order_id)
        return 0
    sent = 0
    own_client = client is None
    client = client or httpx.AsyncClient()
    try:
        async with dispatcher.subscribe(observer_id_for_chat(chat_id), order_id) as subscription:
            async for event in subscription:
                text = format_status_message(event, truck_name)
                if text is None:
                    continue
                if await send_message(client, token, chat_id, text):
                    sent += 1
    finally:
        if own_client:
            await client.aclose()
    logger.info("Status messages for order %s finished, %s sent", order_id, sent)
    return sent
