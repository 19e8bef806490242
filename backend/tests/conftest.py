import os

# Avant tout import applicatif : Settings() est lu à l'import de config
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test_secret_minimum_32_chars_long_ok"
os.environ["FIREBASE_CREDENTIALS_PATH"] = "/nonexistent/firebase.json"

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

import database
from config import settings
from core.security import create_access_token
from main import app
from models.order import Order


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def mock_db(anyio_backend):
    instance = AsyncMongoMockClient()["GigaEatsDriverTest"]
    database.use_database(instance)
    await database.create_indexes()
    yield instance
    database.use_database(None)


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(mock_db):
    async def _make(user_id: str, role: str = "driver", **extra) -> dict:
        now = datetime.now(timezone.utc)
        doc = {
            "user_id":    user_id,
            "name":       user_id,
            "phone":      "+60123456789",
            "role":       role,
            "is_active":  True,
            "created_at": now,
            "updated_at": now,
        }
        if role == "driver":
            doc["driver_status"] = "online"
            doc["deliveries_completed"] = 0
            doc["total_earnings"] = 0.0
        doc.update(extra)
        await mock_db.users.insert_one(doc)
        return {k: v for k, v in doc.items() if k != "_id"}
    return _make


@pytest.fixture
def make_order(mock_db):
    async def _make(order_id: str = "ord_1", status: str = "ready", assigned_driver_id=None, **extra) -> dict:
        now = datetime.now(timezone.utc)
        doc = {
            "order_id":           order_id,
            "order_number":       f"GE-{order_id[-4:].upper()}",
            "vendor_id":          "vnd_1",
            "customer_id":        "cus_1",
            "customer_phone":     "+60123456789",
            "total_amount":       42.5,
            "delivery_fee":       6.0,
            "items":              [{"name": "Nasi lemak", "quantity": 2, "unit_price": 18.25}],
            "delivery_method":    "own_fleet",
            "status":             status,
            "assigned_driver_id": assigned_driver_id,
            "assigned_at":        now if assigned_driver_id else None,
            "status_timestamps":  {status: now} if assigned_driver_id else {},
            "created_at":         now,
            "updated_at":         now,
        }
        doc.update(extra)
        Order(**doc)
        await mock_db.orders.insert_one(doc)
        return {k: v for k, v in doc.items() if k != "_id"}
    return _make


@pytest.fixture
def held_order(make_user, make_order):
    """Commande déjà détenue par un livreur en livraison, au statut demandé."""
    async def _make(status: str, driver_id: str = "drv_1", order_id: str = "ord_1", **extra) -> dict:
        await make_user(driver_id, driver_status="on_delivery")
        return await make_order(order_id, status=status, assigned_driver_id=driver_id, **extra)
    return _make


@pytest.fixture
def full_checklist() -> dict:
    return {item: True for item in settings.PICKUP_CHECKLIST}


def auth_headers(user_id: str) -> dict:
    token = create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers
