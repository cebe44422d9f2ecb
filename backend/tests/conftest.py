"""Test fixtures: throwaway SQLite database, tokens, app client, sessions."""
import os
import tempfile

# Settings are read at import time, so point the app at a scratch database first
_DB_DIR = tempfile.mkdtemp(prefix="truck-orders-")
_DB_PATH = os.path.join(_DB_DIR, "test.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

from app.core.database import Base, async_session_maker
from app.core.permissions import Actor, ActorRole
from app.models import Truck
from app.services.auth_service import create_access_token

TRUCK_ID = "taco-town"
VENDOR_ID = "vendor-1"
CUSTOMER_ID = "customer-1"

_sync_engine = create_engine(f"sqlite:///{_DB_PATH}")


@pytest.fixture(autouse=True)
def clean_db():
    """Empty schema for every test."""
    Base.metadata.drop_all(_sync_engine)
    Base.metadata.create_all(_sync_engine)
    with _sync_engine.begin() as conn:
        conn.execute(
            Truck.__table__.insert().values(
                id=TRUCK_ID,
                owner_id=VENDOR_ID,
                name="Taco Town",
                max_concurrent_orders=3,
                timezone="UTC",
            )
        )
    yield


@pytest.fixture
def client():
    """Test client with lifespan (tables, dispatcher shutdown)."""
    from app.main import app
    with TestClient(app) as c:
        yield c


def bearer(subject: str, role: ActorRole) -> dict:
    return {"Authorization": f"Bearer {create_access_token(subject, role.value)}"}


@pytest.fixture
def auth_headers():
    """Header factory for any subject, e.g. auth_headers("vendor-2", ActorRole.VENDOR)."""
    return bearer


@pytest.fixture
def vendor_headers():
    return bearer(VENDOR_ID, ActorRole.VENDOR)


@pytest.fixture
def customer_headers():
    return bearer(CUSTOMER_ID, ActorRole.CUSTOMER)


@pytest.fixture
def vendor():
    return Actor(id=VENDOR_ID, role=ActorRole.VENDOR.value)


@pytest.fixture
def customer():
    return Actor(id=CUSTOMER_ID, role=ActorRole.CUSTOMER.value)


@pytest.fixture
async def session():
    async with async_session_maker() as s:
        yield s


@pytest.fixture
def order_body():
    """Factory for a POST /orders body at the test truck."""
    def _make(**overrides) -> dict:
        body = {
            "truck_id": TRUCK_ID,
            "items": [
                {"id": "taco", "name": "Taco", "price": "4.50", "quantity": 2},
                {"id": "soda", "name": "Soda", "price": "2.00", "quantity": 1},
            ],
            "customer_name": "Alex",
        }
        body.update(overrides)
        return body
    return _make
