"""
Disponibilité des livreurs : en ligne, hors ligne, en livraison.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from core.exceptions import DriverUnavailable, not_found_exception
from database import db
from models.common import DriverStatus, UserRole

logger = logging.getLogger(__name__)


async def get_driver(driver_id: str) -> Optional[dict]:
    return await db.users.find_one(
        {"user_id": driver_id, "role": UserRole.DRIVER.value},
        {"_id": 0},
    )


async def _switch_status(driver_id: str, expected: DriverStatus, new_status: DriverStatus, **filters) -> bool:
    now = datetime.now(timezone.utc)
    result = await db.users.update_one(
        {"user_id": driver_id, "driver_status": expected.value, **filters},
        {"$set": {"driver_status": new_status.value, "last_seen": now, "updated_at": now}},
    )
    return result.modified_count == 1


async def claim_driver(driver_id: str) -> bool:
    """online → on_delivery en une écriture conditionnelle : un livreur, une commande."""
    return await _switch_status(
        driver_id, DriverStatus.ONLINE, DriverStatus.ON_DELIVERY,
        role=UserRole.DRIVER.value, is_active=True,
    )


async def free_driver(driver_id: str) -> bool:
    """on_delivery → online (fin de livraison, annulation, libération)."""
    return await _switch_status(driver_id, DriverStatus.ON_DELIVERY, DriverStatus.ONLINE)


async def set_availability(driver_id: str, online: bool) -> dict:
    """Bouton en ligne / hors ligne de l'app. Bloqué pendant une livraison."""
    driver = await get_driver(driver_id)
    if not driver:
        raise not_found_exception("Livreur")
    if driver.get("driver_status") == DriverStatus.ON_DELIVERY.value:
        raise DriverUnavailable("Terminez la livraison en cours avant de changer de statut")

    new_status = DriverStatus.ONLINE if online else DriverStatus.OFFLINE
    now = datetime.now(timezone.utc)
    await db.users.update_one(
        {"user_id": driver_id, "driver_status": {"$ne": DriverStatus.ON_DELIVERY.value}},
        {"$set": {"driver_status": new_status.value, "last_seen": now, "updated_at": now}},
    )
    logger.info(f"Livreur {driver_id} → {new_status.value}")
    return {"driver_id": driver_id, "driver_status": new_status.value}
