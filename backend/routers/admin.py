"""
Router admin : supervision des commandes et de la flotte, actions opérateur.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from core.dependencies import require_admin
from database import db
from models.common import DriverStatus, UserRole
from models.order import AdminReleaseRequest, CancelRequest, DeliveryStatus, Order
from services import assignment_service, evidence_service, workflow_service

router = APIRouter()


@router.get("/dashboard", summary="KPIs temps réel")
async def dashboard(_admin=Depends(require_admin)):
    now = datetime.now(timezone.utc)
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    active = [s.value for s in DeliveryStatus if not s.is_terminal]
    in_progress     = await db.orders.count_documents({"status": {"$in": active}})
    delivered_today = await db.orders.count_documents({
        "status": DeliveryStatus.DELIVERED.value,
        "updated_at": {"$gte": today_start},
    })
    cancelled_today = await db.orders.count_documents({
        "status": DeliveryStatus.CANCELLED.value,
        "updated_at": {"$gte": today_start},
    })
    drivers_online = await db.users.count_documents({
        "role": UserRole.DRIVER.value,
        "driver_status": {"$in": [DriverStatus.ONLINE.value, DriverStatus.ON_DELIVERY.value]},
    })

    return {
        "in_progress":     in_progress,
        "delivered_today": delivered_today,
        "cancelled_today": cancelled_today,
        "drivers_online":  drivers_online,
    }


@router.get("/orders", summary="Toutes les commandes avec filtres")
async def admin_list_orders(
    status: Optional[str] = None,
    driver_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
    _admin=Depends(require_admin),
):
    query = {}
    if status:
        query["status"] = status
    if driver_id:
        query["assigned_driver_id"] = driver_id
    cursor = db.orders.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
    orders = await cursor.to_list(length=limit)
    total = await db.orders.count_documents(query)
    return {"orders": orders, "total": total}


@router.get("/orders/{order_id}/audit", summary="Audit complet de la commande")
async def order_audit(order_id: str, _admin=Depends(require_admin)):
    order = await workflow_service.get_order(order_id)
    timeline = await workflow_service.get_order_timeline(order_id)
    confirmations = await evidence_service.list_confirmations(order_id)
    rejections = await db.order_rejections.find(
        {"order_id": order_id}, {"_id": 0},
    ).sort("created_at", 1).to_list(length=50)
    return {
        "order":         Order(**order),
        "timeline":      timeline,
        "confirmations": confirmations,
        "rejections":    rejections,
    }


@router.post("/orders/{order_id}/cancel", summary="Annuler une livraison en cours")
async def admin_cancel_order(
    order_id: str,
    body: CancelRequest = CancelRequest(),
    admin: dict = Depends(require_admin),
):
    new_status = await workflow_service.cancel_order(
        order_id, admin["user_id"], admin["role"], reason=body.reason,
    )
    return {"order_id": order_id, "status": new_status.value}


@router.post("/orders/{order_id}/release", summary="Retirer la commande à un livreur")
async def admin_release_order(
    order_id: str,
    body: AdminReleaseRequest,
    admin: dict = Depends(require_admin),
):
    return await assignment_service.release_order(
        order_id,
        body.driver_id,
        actor_id=admin["user_id"],
        actor_role=admin["role"],
        reason=body.reason,
    )


@router.post("/assignments/release-stale", summary="Libérer les commandes acceptées mais jamais démarrées")
async def admin_release_stale(_admin=Depends(require_admin)):
    released = await assignment_service.release_stale_assignments()
    return {"released": released}


@router.get("/drivers", summary="Liste livreurs + stats")
async def admin_drivers(_admin=Depends(require_admin)):
    cursor = db.users.find({"role": UserRole.DRIVER.value}, {"_id": 0})
    drivers = await cursor.to_list(length=200)
    for d in drivers:
        current = await assignment_service.get_current_order(d["user_id"])
        d["current_order_id"] = current["order_id"] if current else None
    return {"drivers": drivers}
