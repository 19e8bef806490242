"""
Router workflow : référentiel des statuts et des checklists pour l'app livreur.
"""
from fastapi import APIRouter, Depends

from core.dependencies import get_current_user
from core.exceptions import not_found_exception
from models.order import DELIVERY_SEQUENCE, DeliveryStatus
from services.evidence_service import get_pickup_checklist
from services.status_copy import checklist_label, describe_status

router = APIRouter()


@router.get("/statuses", summary="Tous les statuts du parcours")
async def list_statuses(_user: dict = Depends(get_current_user)):
    statuses = DELIVERY_SEQUENCE + [DeliveryStatus.CANCELLED]
    return {"statuses": [describe_status(s) for s in statuses]}


@router.get("/statuses/{status}", summary="Libellé et consignes d'un statut")
async def get_status(status: str, _user: dict = Depends(get_current_user)):
    parsed = DeliveryStatus.parse(status)
    if parsed is None:
        raise not_found_exception("Statut")
    return describe_status(parsed)


@router.get("/checklist/{vendor_id}", summary="Checklist de collecte d'un restaurant")
async def vendor_checklist(vendor_id: str, _user: dict = Depends(get_current_user)):
    items = await get_pickup_checklist(vendor_id)
    return {
        "vendor_id": vendor_id,
        "items": [{"key": i, "label": checklist_label(i)} for i in items],
    }
