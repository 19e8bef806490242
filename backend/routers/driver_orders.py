"""
Router driver_orders : commandes côté livreur (pool, acceptation, workflow).
"""
from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel

from config import settings
from core.dependencies import require_driver
from core.exceptions import NotOwner
from core.limiter import limiter
from database import db
from models.delivery import (
    ConfirmationKind,
    DeliveryConfirmation,
    PickupConfirmation,
    TransitionRequest,
    TransitionResponse,
)
from models.order import Assignment, DeliveryStatus, Order, ReleaseRequest
from services import assignment_service, driver_service, evidence_service, workflow_service
from services.status_copy import describe_status, get_driver_instructions, requires_mandatory_confirmation

router = APIRouter()


class AvailabilityUpdate(BaseModel):
    online: bool


@router.put("/status", summary="Passer en ligne / hors ligne")
async def update_availability(
    body: AvailabilityUpdate,
    current_user: dict = Depends(require_driver),
):
    return await driver_service.set_availability(current_user["user_id"], body.online)


@router.get("/orders/available", summary="Commandes prêtes sans livreur")
async def available_orders(
    limit: int = Query(50, ge=1, le=200),
    _driver: dict = Depends(require_driver),
):
    orders = await assignment_service.list_available_orders(limit=limit)
    return {"orders": orders}


@router.get("/orders/current", summary="Ma commande en cours")
async def current_order(current_user: dict = Depends(require_driver)):
    order = await assignment_service.get_current_order(current_user["user_id"])
    if not order:
        return {"order": None}
    return {"order": Order(**order), "workflow": describe_status(DeliveryStatus(order["status"]))}


@router.get("/orders/history", summary="Mes livraisons terminées")
async def order_history(
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(require_driver),
):
    orders = await assignment_service.get_driver_history(current_user["user_id"], limit=limit)
    return {"orders": orders}


@router.post(
    "/orders/{order_id}/accept",
    response_model=Assignment,
    status_code=status.HTTP_201_CREATED,
    summary="Accepter une commande",
)
@limiter.limit(settings.ACCEPT_RATE_LIMIT)
async def accept_order(
    request: Request,
    order_id: str,
    current_user: dict = Depends(require_driver),
):
    return await assignment_service.accept_order(order_id, current_user["user_id"])


@router.post("/orders/{order_id}/release", summary="Rendre une commande avant la collecte")
async def release_order(
    order_id: str,
    body: ReleaseRequest = ReleaseRequest(),
    current_user: dict = Depends(require_driver),
):
    return await assignment_service.release_order(
        order_id, current_user["user_id"], reason=body.reason,
    )


@router.post(
    "/orders/{order_id}/transitions",
    response_model=TransitionResponse,
    summary="Faire avancer la livraison",
)
async def request_transition(
    order_id: str,
    body: TransitionRequest,
    current_user: dict = Depends(require_driver),
):
    new_status = await workflow_service.request_transition(
        order_id,
        current_user["user_id"],
        body.event,
        evidence=body.evidence(),
        notes=body.notes,
    )
    return TransitionResponse(
        order_id=order_id,
        status=new_status,
        instructions=get_driver_instructions(new_status),
        requires_confirmation=requires_mandatory_confirmation(new_status),
    )


async def _own_order(order_id: str, driver_id: str) -> dict:
    order = await workflow_service.get_order(order_id)
    if order.get("assigned_driver_id") != driver_id:
        raise NotOwner(order_id=order_id)
    return order


@router.get("/orders/{order_id}/status", summary="Statut et consignes")
async def order_status(order_id: str, current_user: dict = Depends(require_driver)):
    order = await _own_order(order_id, current_user["user_id"])
    return {"order_id": order_id, **describe_status(DeliveryStatus(order["status"]))}


@router.get("/orders/{order_id}/timeline", summary="Historique de la commande")
async def order_timeline(order_id: str, current_user: dict = Depends(require_driver)):
    await _own_order(order_id, current_user["user_id"])
    events = await workflow_service.get_order_timeline(order_id)
    return {"order_id": order_id, "events": events}


@router.get("/orders/{order_id}/confirmations", summary="Preuves enregistrées")
async def order_confirmations(order_id: str, current_user: dict = Depends(require_driver)):
    await _own_order(order_id, current_user["user_id"])
    records = await evidence_service.list_confirmations(order_id)
    confirmations = [
        PickupConfirmation(**r) if r["kind"] == ConfirmationKind.PICKUP.value else DeliveryConfirmation(**r)
        for r in records
    ]
    return {"order_id": order_id, "confirmations": confirmations}


@router.get("/me", summary="Profil livreur")
async def driver_profile(current_user: dict = Depends(require_driver)):
    driver = await db.users.find_one(
        {"user_id": current_user["user_id"]},
        {"_id": 0, "user_id": 1, "name": 1, "phone": 1, "driver_status": 1,
         "deliveries_completed": 1, "total_earnings": 1},
    )
    return driver
