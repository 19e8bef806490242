"""
Service gains : crédit du livreur à chaque livraison confirmée.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import DuplicateKeyError

from config import settings
from database import db

logger = logging.getLogger(__name__)


def _earning_id() -> str:
    return f"ern_{uuid.uuid4().hex[:12]}"


async def record_delivery_earnings(order: dict, driver_id: str) -> Optional[dict]:
    """Une seule ligne de gains par commande livrée (index unique sur order_id)."""
    fee = float(order.get("delivery_fee") or 0.0)
    amount = round(fee * settings.DRIVER_RATE, 2)
    now = datetime.now(timezone.utc)

    earning = {
        "earning_id":   _earning_id(),
        "order_id":     order["order_id"],
        "order_number": order.get("order_number"),
        "driver_id":    driver_id,
        "delivery_fee": fee,
        "amount":       amount,
        "currency":     settings.CURRENCY,
        "created_at":   now,
    }
    try:
        await db.driver_earnings.insert_one(earning)
    except DuplicateKeyError:
        logger.info(f"Gains déjà enregistrés pour la commande {order['order_id']}")
        return None

    await db.users.update_one(
        {"user_id": driver_id},
        {"$inc": {"deliveries_completed": 1, "total_earnings": amount}, "$set": {"updated_at": now}},
    )
    logger.info(f"Gains livreur : driver={driver_id} montant={amount} {settings.CURRENCY}")
    return {k: v for k, v in earning.items() if k != "_id"}


async def get_driver_earnings_summary(driver_id: str, limit: int = 20) -> dict:
    pipeline = [
        {"$match": {"driver_id": driver_id}},
        {"$group": {"_id": None, "total": {"$sum": "$amount"}, "count": {"$sum": 1}}},
    ]
    totals = await db.driver_earnings.aggregate(pipeline).to_list(length=1)
    recent = await db.driver_earnings.find(
        {"driver_id": driver_id}, {"_id": 0},
    ).sort("created_at", -1).to_list(length=limit)

    return {
        "driver_id":  driver_id,
        "total":      totals[0]["total"] if totals else 0.0,
        "deliveries": totals[0]["count"] if totals else 0,
        "currency":   settings.CURRENCY,
        "recent":     recent,
    }
