"""
Service preuves : contrôle des étapes obligatoires (checklist de collecte,
photo + GPS de livraison) et journal append-only des confirmations.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import DuplicateKeyError

from config import settings
from core.exceptions import (
    AlreadyConfirmed,
    IncompleteChecklist,
    MissingLocationEvidence,
    MissingPhotoEvidence,
)
from database import db
from models.delivery import ConfirmationKind, DeliveryEvidence, Evidence, PickupEvidence

logger = logging.getLogger(__name__)


def _confirmation_id() -> str:
    return f"cnf_{uuid.uuid4().hex[:12]}"


async def get_pickup_checklist(vendor_id: Optional[str]) -> list[str]:
    """Checklist propre au restaurant si configurée, sinon celle par défaut."""
    if vendor_id:
        vendor = await db.vendors.find_one(
            {"vendor_id": vendor_id},
            {"_id": 0, "pickup_checklist": 1},
        )
        if vendor and vendor.get("pickup_checklist"):
            return list(vendor["pickup_checklist"])
    return list(settings.PICKUP_CHECKLIST)


def validate_pickup_evidence(evidence: Optional[PickupEvidence], checklist: list[str]) -> PickupEvidence:
    """
    Toute la checklist configurée doit être cochée. Un élément absent compte
    comme non coché ; un élément soumis à False est refusé même s'il n'est pas
    dans la liste configurée.
    """
    submitted = evidence.verification_checklist if evidence else {}
    unchecked = [item for item in checklist if not submitted.get(item)]
    unchecked += [item for item, ok in submitted.items() if not ok and item not in checklist]
    if unchecked:
        raise IncompleteChecklist(
            f"Vérification de collecte incomplète : {len(unchecked)} élément(s) non coché(s)",
            unchecked_items=unchecked,
        )
    return evidence


def validate_delivery_evidence(evidence: Optional[DeliveryEvidence]) -> DeliveryEvidence:
    """Photo et GPS obligatoires ; la précision GPS n'est pas contrôlée."""
    missing = []
    if evidence is None or not (evidence.photo_reference or "").strip():
        missing.append("photo")
    if evidence is None or evidence.gps is None:
        missing.append("location")

    if "photo" in missing:
        raise MissingPhotoEvidence(missing=missing)
    if "location" in missing:
        raise MissingLocationEvidence(missing=missing)
    return evidence


def _evidence_fields(kind: ConfirmationKind, evidence: Evidence) -> dict:
    if kind == ConfirmationKind.PICKUP:
        return {
            "verification_checklist": dict(evidence.verification_checklist),
            "notes":                  evidence.notes,
        }
    return {
        "photo_reference": (evidence.photo_reference or "").strip() or None,
        "gps":             evidence.gps.model_dump() if evidence.gps else None,
        "recipient_name":  evidence.recipient_name,
        "recipient_note":  evidence.recipient_note,
    }


def same_evidence(record: dict, kind: ConfirmationKind, evidence: Optional[Evidence]) -> bool:
    """Un retry réseau renvoie la même preuve (ou aucune) : ce n'est pas un conflit."""
    if evidence is None:
        return True
    return all(record.get(k) == v for k, v in _evidence_fields(kind, evidence).items())


async def find_confirmation(order_id: str, kind: ConfirmationKind) -> Optional[dict]:
    return await db.order_confirmations.find_one(
        {"order_id": order_id, "kind": kind.value},
        {"_id": 0},
    )


async def list_confirmations(order_id: str) -> list:
    cursor = db.order_confirmations.find({"order_id": order_id}, {"_id": 0}).sort("confirmed_at", 1)
    return await cursor.to_list(length=10)


async def record_confirmation(
    order_id: str,
    kind: ConfirmationKind,
    evidence: Evidence,
    confirmed_by: str,
) -> tuple[dict, bool]:
    """
    Ajoute la preuve au journal. Jamais de mise à jour : l'index unique
    (order_id, kind) refuse une deuxième preuve pour la même étape.
    Retourne (confirmation, créée_par_cet_appel).
    """
    doc = {
        "confirmation_id": _confirmation_id(),
        "order_id":        order_id,
        "kind":            kind.value,
        "confirmed_at":    datetime.now(timezone.utc),
        "confirmed_by":    confirmed_by,
        **_evidence_fields(kind, evidence),
    }
    try:
        await db.order_confirmations.insert_one(doc)
    except DuplicateKeyError:
        existing = await find_confirmation(order_id, kind)
        if existing and same_evidence(existing, kind, evidence):
            return existing, False
        raise AlreadyConfirmed(f"Confirmation {kind.value} déjà enregistrée pour cette commande")

    logger.info(f"Confirmation {kind.value} enregistrée : commande={order_id} livreur={confirmed_by}")
    return {k: v for k, v in doc.items() if k != "_id"}, True


async def discard_confirmation(confirmation_id: str):
    """Retire une preuve dont l'étape n'a jamais été validée (commit perdu ou en erreur)."""
    result = await db.order_confirmations.delete_one({"confirmation_id": confirmation_id})
    if result.deleted_count:
        logger.warning(f"Confirmation {confirmation_id} retirée : changement de statut non validé")
