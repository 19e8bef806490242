"""
Textes d'interface pour l'app livreur : libellés, consignes, étapes obligatoires.
Tables de correspondance pures, sans I/O. La machine d'états ne les consulte jamais.
"""
from typing import Optional

from models.delivery import ConfirmationKind, DeliveryEvent
from models.order import DELIVERY_SEQUENCE, DeliveryStatus

DISPLAY_NAMES: dict[DeliveryStatus, str] = {
    DeliveryStatus.ASSIGNED:             "Commande assignée",
    DeliveryStatus.ON_ROUTE_TO_VENDOR:   "En route vers le restaurant",
    DeliveryStatus.ARRIVED_AT_VENDOR:    "Arrivé au restaurant",
    DeliveryStatus.PICKED_UP:            "Commande récupérée",
    DeliveryStatus.ON_ROUTE_TO_CUSTOMER: "En route vers le client",
    DeliveryStatus.ARRIVED_AT_CUSTOMER:  "Arrivé chez le client",
    DeliveryStatus.DELIVERED:            "Livrée",
    DeliveryStatus.CANCELLED:            "Annulée",
}

DRIVER_INSTRUCTIONS: dict[DeliveryStatus, str] = {
    DeliveryStatus.ASSIGNED:
        "Démarrez la navigation vers le restaurant pour récupérer la commande.",
    DeliveryStatus.ON_ROUTE_TO_VENDOR:
        "Rendez-vous au restaurant. Signalez « Arrivé » une fois sur place.",
    DeliveryStatus.ARRIVED_AT_VENDOR:
        "ACTION REQUISE : vérifiez la commande avec le restaurant et cochez toute la checklist avant de partir.",
    DeliveryStatus.PICKED_UP:
        "Démarrez la navigation vers l'adresse du client.",
    DeliveryStatus.ON_ROUTE_TO_CUSTOMER:
        "Rendez-vous chez le client. Signalez « Arrivé » une fois sur place.",
    DeliveryStatus.ARRIVED_AT_CUSTOMER:
        "ACTION REQUISE : prenez une photo de la commande remise. Photo et position GPS sont obligatoires.",
    DeliveryStatus.DELIVERED:
        "Livraison terminée. Vous pouvez accepter une nouvelle commande.",
    DeliveryStatus.CANCELLED:
        "Commande annulée. Vous pouvez accepter une nouvelle commande.",
}

CHECKLIST_LABELS: dict[str, str] = {
    "order_number_matches":         "Le numéro de commande correspond",
    "all_items_present":            "Tous les articles sont présents",
    "packaging_intact":             "L'emballage est intact",
    "special_instructions_noted":   "Instructions spéciales notées",
    "temperature_requirements_met": "Exigences de température respectées",
}

_REQUIRED_CONFIRMATIONS: dict[DeliveryStatus, ConfirmationKind] = {
    DeliveryStatus.ARRIVED_AT_VENDOR:   ConfirmationKind.PICKUP,
    DeliveryStatus.ARRIVED_AT_CUSTOMER: ConfirmationKind.DELIVERY,
}

_PRIMARY_EVENTS: dict[DeliveryStatus, DeliveryEvent] = {
    DeliveryStatus.ASSIGNED:             DeliveryEvent.DRIVER_DEPARTS,
    DeliveryStatus.ON_ROUTE_TO_VENDOR:   DeliveryEvent.DRIVER_ARRIVES_AT_VENDOR,
    DeliveryStatus.ARRIVED_AT_VENDOR:    DeliveryEvent.DRIVER_CONFIRMS_PICKUP,
    DeliveryStatus.PICKED_UP:            DeliveryEvent.DRIVER_DEPARTS_TO_CUSTOMER,
    DeliveryStatus.ON_ROUTE_TO_CUSTOMER: DeliveryEvent.DRIVER_ARRIVES_AT_CUSTOMER,
    DeliveryStatus.ARRIVED_AT_CUSTOMER:  DeliveryEvent.DRIVER_CONFIRMS_DELIVERY,
}


def get_display_name(status: DeliveryStatus) -> str:
    return DISPLAY_NAMES[status]


def get_driver_instructions(status: DeliveryStatus) -> str:
    return DRIVER_INSTRUCTIONS[status]


def requires_mandatory_confirmation(status: DeliveryStatus) -> bool:
    return status in _REQUIRED_CONFIRMATIONS


def required_confirmation(status: DeliveryStatus) -> Optional[ConfirmationKind]:
    return _REQUIRED_CONFIRMATIONS.get(status)


def available_events(status: DeliveryStatus) -> list[DeliveryEvent]:
    """Boutons à afficher : action principale puis annulation (rien si terminal)."""
    if status.is_terminal:
        return []
    return [_PRIMARY_EVENTS[status], DeliveryEvent.CANCEL]


def checklist_label(item: str) -> str:
    return CHECKLIST_LABELS.get(item, item.replace("_", " ").capitalize())


def describe_status(status: DeliveryStatus) -> dict:
    kind = required_confirmation(status)
    return {
        "status":                status.value,
        "display_name":          get_display_name(status),
        "instructions":          get_driver_instructions(status),
        "requires_confirmation": kind is not None,
        "confirmation_kind":     kind.value if kind else None,
        "available_events":      [e.value for e in available_events(status)],
        "is_terminal":           status.is_terminal,
        # Étape du parcours (0 = assigned) ; None pour une commande annulée
        "step":                  status.rank,
        "total_steps":           len(DELIVERY_SEQUENCE),
    }
