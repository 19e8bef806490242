"""
Service assignation : prise en charge d'une commande prête par un livreur,
libération (volontaire, opérateur, ou automatique après inactivité).
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

from pymongo import ReturnDocument

from config import settings
from core.exceptions import (
    DriverUnavailable,
    InvalidTransition,
    NotOwner,
    OrderNoLongerAvailable,
    OrderNotFound,
)
from core.utils import mask_phone
from database import db
from models.common import UserRole
from models.order import OWN_FLEET, READY_STATUS, RELEASABLE_STATUSES, Assignment, DeliveryStatus
from services import driver_service
from services.notification_service import notify_workflow_status_change
from services.workflow_service import _record_event

logger = logging.getLogger(__name__)


def _available_query() -> dict:
    return {
        "status":             READY_STATUS,
        "delivery_method":    OWN_FLEET,
        "assigned_driver_id": None,
    }


async def list_available_orders(limit: int = 50) -> list:
    """Commandes prêtes, flotte interne, sans livreur. Toujours lues en direct."""
    cursor = db.orders.find(_available_query(), {"_id": 0}).sort("created_at", 1)
    orders = await cursor.to_list(length=limit)
    # Masquage anti-contournement : le numéro complet n'est visible qu'après acceptation
    for o in orders:
        if o.get("customer_phone"):
            o["customer_phone"] = mask_phone(o["customer_phone"])
    return orders


async def get_current_order(driver_id: str) -> Optional[dict]:
    return await db.orders.find_one(
        {
            "assigned_driver_id": driver_id,
            "status": {"$nin": [DeliveryStatus.DELIVERED.value, DeliveryStatus.CANCELLED.value]},
        },
        {"_id": 0},
    )


async def get_driver_history(driver_id: str, limit: int = 50) -> list:
    cursor = db.orders.find(
        {
            "assigned_driver_id": driver_id,
            "status": {"$in": [DeliveryStatus.DELIVERED.value, DeliveryStatus.CANCELLED.value]},
        },
        {"_id": 0},
    ).sort("updated_at", -1)
    return await cursor.to_list(length=limit)


async def accept_order(order_id: str, driver_id: str) -> Assignment:
    """
    Un seul gagnant par commande : le livreur est d'abord réservé
    (online → on_delivery), puis la commande est prise par écriture
    conditionnelle sur son état « prête, sans livreur ».
    """
    if not await driver_service.claim_driver(driver_id):
        raise DriverUnavailable(driver_id=driver_id)

    now = datetime.now(timezone.utc)
    updates = {
        "status":             DeliveryStatus.ASSIGNED.value,
        "assigned_driver_id": driver_id,
        "assigned_at":        now,
        "updated_at":         now,
        "status_timestamps":  {DeliveryStatus.ASSIGNED.value: now},
    }
    try:
        before = await db.orders.find_one_and_update(
            _available_query() | {"order_id": order_id},
            {"$set": updates},
            projection={"_id": 0},
            return_document=ReturnDocument.BEFORE,
        )
    except Exception:
        await driver_service.free_driver(driver_id)
        raise

    if before is None:
        await driver_service.free_driver(driver_id)
        exists = await db.orders.find_one({"order_id": order_id}, {"_id": 0, "order_id": 1})
        if not exists:
            raise OrderNotFound(order_id=order_id)
        logger.info(f"Acceptation perdue : commande {order_id} n'est plus disponible pour {driver_id}")
        raise OrderNoLongerAvailable(order_id=order_id)

    order = {**before, **updates}
    await _record_event(
        order_id=order_id,
        event_type="ORDER_ASSIGNED",
        from_status=READY_STATUS,
        to_status=DeliveryStatus.ASSIGNED,
        actor_id=driver_id,
        actor_role=UserRole.DRIVER.value,
    )
    logger.info(f"Commande {order_id} acceptée par le livreur {driver_id}")

    try:
        await notify_workflow_status_change(order, DeliveryStatus.ASSIGNED)
    except Exception as e:
        logger.warning(f"Notification d'assignation non envoyée pour {order_id} : {e}")

    return Assignment(order_id=order_id, driver_id=driver_id, assigned_at=now)


async def release_order(
    order_id: str,
    driver_id: str,
    actor_id: Optional[str] = None,
    actor_role: str = UserRole.DRIVER.value,
    reason: Optional[str] = None,
    expected_statuses: Optional[list[DeliveryStatus]] = None,
    assigned_before: Optional[datetime] = None,
) -> dict:
    """
    Rend la commande au pool (statut « prête »). Possible seulement avant la
    confirmation de collecte, et uniquement pour le livreur qui la détient.
    `expected_statuses` et `assigned_before` restreignent l'écriture
    conditionnelle (libération automatique : toujours `assigned` et trop ancienne).
    """
    releasable = [s.value for s in (expected_statuses or RELEASABLE_STATUSES)]
    query = {
        "order_id":           order_id,
        "assigned_driver_id": driver_id,
        "status":             {"$in": releasable},
    }
    if assigned_before is not None:
        query["assigned_at"] = {"$lt": assigned_before}

    now = datetime.now(timezone.utc)
    before = await db.orders.find_one_and_update(
        query,
        {"$set": {
            "status":             READY_STATUS,
            "assigned_driver_id": None,
            "assigned_at":        None,
            "status_timestamps":  {},
            "updated_at":         now,
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.BEFORE,
    )

    if before is None:
        order = await db.orders.find_one({"order_id": order_id}, {"_id": 0})
        if not order:
            raise OrderNotFound(order_id=order_id)
        if order.get("assigned_driver_id") != driver_id:
            raise NotOwner(order_id=order_id)
        raise InvalidTransition(
            f"Libération impossible au statut {order['status']}",
            current_status=order["status"],
        )

    await db.order_rejections.insert_one({
        "order_id":    order_id,
        "driver_id":   driver_id,
        "from_status": before["status"],
        "reason":      reason,
        "released_by": actor_id or driver_id,
        "created_at":  now,
    })
    await _record_event(
        order_id=order_id,
        event_type="ORDER_RELEASED",
        from_status=before["status"],
        to_status=READY_STATUS,
        actor_id=actor_id or driver_id,
        actor_role=actor_role,
        notes=reason,
        metadata={"driver_id": driver_id},
    )
    await driver_service.free_driver(driver_id)
    logger.info(f"Commande {order_id} libérée ({actor_role}) : livreur {driver_id}")

    return {"order_id": order_id, "status": READY_STATUS, "released_driver_id": driver_id}


async def _stale_candidates(cutoff: datetime) -> list:
    cursor = db.orders.find(
        {
            "status":             DeliveryStatus.ASSIGNED.value,
            "assigned_at":        {"$lt": cutoff},
            "assigned_driver_id": {"$ne": None},
        },
        {"_id": 0, "order_id": 1, "assigned_driver_id": 1},
    )
    return await cursor.to_list(length=500)


async def release_stale_assignments(now: Optional[datetime] = None) -> int:
    """
    Libère les commandes acceptées depuis plus de AUTO_RELEASE_MINUTES
    sans que le livreur soit parti vers le restaurant.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.AUTO_RELEASE_MINUTES)

    released = 0
    for order in await _stale_candidates(cutoff):
        try:
            await release_order(
                order["order_id"],
                order["assigned_driver_id"],
                actor_id="system",
                actor_role="system",
                reason=f"Aucun départ après {settings.AUTO_RELEASE_MINUTES} min",
                expected_statuses=[DeliveryStatus.ASSIGNED],
                assigned_before=cutoff,
            )
            released += 1
        except (NotOwner, InvalidTransition):
            # Le livreur a bougé entre la lecture et l'écriture
            continue

    if released:
        logger.info(f"Auto-release : {released} commande(s) libérée(s) après {settings.AUTO_RELEASE_MINUTES} min d'inactivité")
    return released
