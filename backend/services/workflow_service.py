"""
Service workflow livreur : machine d'états, event sourcing, étapes de preuve.
Seul point d'écriture du champ `status` d'une commande assignée.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from pymongo import ReturnDocument

from core.exceptions import AlreadyConfirmed, InvalidTransition, NotOwner, OrderNotFound
from database import db
from models.common import UserRole
from models.delivery import ConfirmationKind, DeliveryEvent, Evidence
from models.order import ACTIVE_STATUSES, DeliveryStatus
from services import driver_service, earnings_service, evidence_service
from services.notification_service import notify_workflow_status_change

logger = logging.getLogger(__name__)

# ── Machine d'états ───────────────────────────────────────────────────────────
# événement → (statuts de départ, statut d'arrivée, preuve exigée)
TRANSITIONS: dict[DeliveryEvent, tuple[tuple[DeliveryStatus, ...], DeliveryStatus, Optional[ConfirmationKind]]] = {
    DeliveryEvent.DRIVER_DEPARTS: (
        (DeliveryStatus.ASSIGNED,), DeliveryStatus.ON_ROUTE_TO_VENDOR, None,
    ),
    DeliveryEvent.DRIVER_ARRIVES_AT_VENDOR: (
        (DeliveryStatus.ON_ROUTE_TO_VENDOR,), DeliveryStatus.ARRIVED_AT_VENDOR, None,
    ),
    DeliveryEvent.DRIVER_CONFIRMS_PICKUP: (
        (DeliveryStatus.ARRIVED_AT_VENDOR,), DeliveryStatus.PICKED_UP, ConfirmationKind.PICKUP,
    ),
    DeliveryEvent.DRIVER_DEPARTS_TO_CUSTOMER: (
        (DeliveryStatus.PICKED_UP,), DeliveryStatus.ON_ROUTE_TO_CUSTOMER, None,
    ),
    DeliveryEvent.DRIVER_ARRIVES_AT_CUSTOMER: (
        (DeliveryStatus.ON_ROUTE_TO_CUSTOMER,), DeliveryStatus.ARRIVED_AT_CUSTOMER, None,
    ),
    DeliveryEvent.DRIVER_CONFIRMS_DELIVERY: (
        (DeliveryStatus.ARRIVED_AT_CUSTOMER,), DeliveryStatus.DELIVERED, ConfirmationKind.DELIVERY,
    ),
    # Annulation possible depuis tout statut non terminal
    DeliveryEvent.CANCEL: (
        tuple(ACTIVE_STATUSES), DeliveryStatus.CANCELLED, None,
    ),
}

_GATE_EVENT_TYPES = {
    ConfirmationKind.PICKUP:   "PICKUP_CONFIRMED",
    ConfirmationKind.DELIVERY: "DELIVERY_CONFIRMED",
}


def _event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:12]}"


def _status_value(status: Union[DeliveryStatus, str, None]) -> Optional[str]:
    if isinstance(status, DeliveryStatus):
        return status.value
    return status


def target_of(event: DeliveryEvent) -> DeliveryStatus:
    return TRANSITIONS[event][1]


async def get_order(order_id: str) -> dict:
    order = await db.orders.find_one({"order_id": order_id}, {"_id": 0})
    if not order:
        raise OrderNotFound(order_id=order_id)
    return order


async def current_status(order_id: str) -> Union[DeliveryStatus, str]:
    """Statut workflow, ou la valeur brute tant que la commande n'est pas assignée."""
    order = await get_order(order_id)
    return DeliveryStatus.parse(order["status"]) or order["status"]


async def request_transition(
    order_id: str,
    driver_id: str,
    event: DeliveryEvent,
    evidence: Optional[Evidence] = None,
    notes: Optional[str] = None,
) -> DeliveryStatus:
    """
    Demande du livreur assigné. Rejeu du même événement = succès sans écriture.
    Aucune écriture partielle : preuve invalide ou transition refusée laissent
    la commande intacte.
    """
    order = await get_order(order_id)
    if order.get("assigned_driver_id") != driver_id:
        logger.info(f"Transition refusée : livreur {driver_id} non assigné à {order_id}")
        raise NotOwner(order_id=order_id)

    return await _apply(
        order, event, evidence,
        actor_id=driver_id,
        actor_role=UserRole.DRIVER.value,
        notes=notes,
    )


async def cancel_order(
    order_id: str,
    actor_id: str,
    actor_role: str,
    reason: Optional[str] = None,
) -> DeliveryStatus:
    """Annulation opérateur (support, admin) : pas de contrôle de propriété."""
    order = await get_order(order_id)
    return await _apply(
        order, DeliveryEvent.CANCEL, None,
        actor_id=actor_id,
        actor_role=actor_role,
        notes=reason,
    )


async def _apply(
    order: dict,
    event: DeliveryEvent,
    evidence: Optional[Evidence],
    actor_id: str,
    actor_role: str,
    notes: Optional[str] = None,
) -> DeliveryStatus:
    sources, target, gate = TRANSITIONS[event]
    order_id = order["order_id"]
    current = DeliveryStatus.parse(order["status"])

    prior = None
    if gate:
        prior = await evidence_service.find_confirmation(order_id, gate)
        if prior and not evidence_service.same_evidence(prior, gate, evidence):
            raise AlreadyConfirmed(
                f"Confirmation {gate.value} déjà enregistrée avec une preuve différente",
                order_id=order_id,
            )

    if current == target:
        logger.info(f"Rejeu idempotent : commande {order_id} déjà {target.value}")
        return target

    if current not in sources:
        raise InvalidTransition(
            f"Transition interdite : {order['status']} → {target.value}",
            current_status=order["status"],
            event=event.value,
        )

    confirmation = prior
    created = False
    if gate and prior is None:
        if gate == ConfirmationKind.PICKUP:
            checklist = await evidence_service.get_pickup_checklist(order.get("vendor_id"))
            evidence_service.validate_pickup_evidence(evidence, checklist)
        else:
            evidence_service.validate_delivery_evidence(evidence)
        confirmation, created = await evidence_service.record_confirmation(
            order_id, gate, evidence, confirmed_by=actor_id,
        )

    extra = {}
    if target == DeliveryStatus.CANCELLED:
        extra = {"cancel_reason": notes, "cancelled_by": actor_id}

    try:
        updated = await _commit(order, current, target, extra)
    except Exception:
        if created:
            await evidence_service.discard_confirmation(confirmation["confirmation_id"])
        raise

    if updated is None:
        # Écriture concurrente : soit un rejeu gagnant, soit un vrai conflit
        latest = await db.orders.find_one({"order_id": order_id}, {"_id": 0, "status": 1})
        if latest and latest.get("status") == target.value:
            return target
        # La preuve de cet appel ne doit pas survivre à une étape jamais franchie
        if created:
            await evidence_service.discard_confirmation(confirmation["confirmation_id"])
        raise InvalidTransition(
            f"Transition interdite : la commande a changé de statut ({latest.get('status') if latest else '?'})",
            current_status=latest.get("status") if latest else None,
            event=event.value,
        )

    metadata = {"event": event.value}
    if confirmation:
        metadata["confirmation_id"] = confirmation.get("confirmation_id")
    await _record_event(
        order_id=order_id,
        event_type=_GATE_EVENT_TYPES.get(gate, "ORDER_CANCELLED" if target == DeliveryStatus.CANCELLED else "STATUS_CHANGED"),
        from_status=current,
        to_status=target,
        actor_id=actor_id,
        actor_role=actor_role,
        notes=notes,
        metadata=metadata,
    )
    logger.info(f"Commande {order_id} : {current.value} → {target.value} ({actor_role} {actor_id})")

    await _after_commit(updated, target)
    return target


async def _commit(order: dict, current: DeliveryStatus, target: DeliveryStatus, extra: dict) -> Optional[dict]:
    """
    Écriture conditionnelle : le statut lu et le livreur lu doivent être inchangés.
    Retourne la commande après mise à jour, reconstruite depuis l'état précédent.
    """
    now = datetime.now(timezone.utc)
    before = await db.orders.find_one_and_update(
        {
            "order_id":           order["order_id"],
            "status":             current.value,
            "assigned_driver_id": order.get("assigned_driver_id"),
        },
        {"$set": {
            "status":                           target.value,
            "updated_at":                       now,
            f"status_timestamps.{target.value}": now,
            **extra,
        }},
        projection={"_id": 0},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        return None

    timestamps = dict(before.get("status_timestamps") or {})
    timestamps[target.value] = now
    return {**before, "status": target.value, "updated_at": now, "status_timestamps": timestamps, **extra}


async def _after_commit(order: dict, target: DeliveryStatus):
    """Effets de bord après commit. Un échec est journalisé, jamais propagé."""
    driver_id = order.get("assigned_driver_id")

    if target.is_terminal and driver_id:
        try:
            await driver_service.free_driver(driver_id)
        except Exception as e:
            logger.warning(f"Livreur {driver_id} non remis en ligne : {e}")

    if target == DeliveryStatus.DELIVERED and driver_id:
        try:
            await earnings_service.record_delivery_earnings(order, driver_id)
        except Exception as e:
            logger.error(f"Gains non enregistrés pour {order['order_id']} : {e}")

    try:
        await notify_workflow_status_change(order, target)
    except Exception as e:
        logger.warning(f"Notification non envoyée pour {order['order_id']} : {e}")


async def _record_event(
    order_id: str,
    event_type: str,
    from_status: Union[DeliveryStatus, str, None] = None,
    to_status: Union[DeliveryStatus, str, None] = None,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    notes: Optional[str] = None,
    metadata: Optional[dict] = None,
):
    """Insère un événement dans la collection order_events."""
    event = {
        "event_id":    _event_id(),
        "order_id":    order_id,
        "event_type":  event_type,
        "from_status": _status_value(from_status),
        "to_status":   _status_value(to_status),
        "actor_id":    actor_id,
        "actor_role":  actor_role,
        "notes":       notes,
        "metadata":    metadata or {},
        "created_at":  datetime.now(timezone.utc),
    }
    await db.order_events.insert_one(event)


async def get_order_timeline(order_id: str) -> list:
    """Retourne les événements triés chronologiquement."""
    cursor = db.order_events.find(
        {"order_id": order_id},
        {"_id": 0},
    ).sort("created_at", 1)
    return await cursor.to_list(length=200)
