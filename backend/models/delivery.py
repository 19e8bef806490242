from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Union
from pydantic import BaseModel
from models.common import GeoPin
from models.order import DeliveryStatus


class DeliveryEvent(str, Enum):
    DRIVER_DEPARTS              = "driver_departs"
    DRIVER_ARRIVES_AT_VENDOR    = "driver_arrives_at_vendor"
    DRIVER_CONFIRMS_PICKUP      = "driver_confirms_pickup"
    DRIVER_DEPARTS_TO_CUSTOMER  = "driver_departs_to_customer"
    DRIVER_ARRIVES_AT_CUSTOMER  = "driver_arrives_at_customer"
    DRIVER_CONFIRMS_DELIVERY    = "driver_confirms_delivery"
    CANCEL                      = "cancel"


class ConfirmationKind(str, Enum):
    PICKUP   = "pickup"
    DELIVERY = "delivery"


# ── Preuves soumises par l'app livreur ────────────────────────────────────────
class PickupEvidence(BaseModel):
    verification_checklist: Dict[str, bool] = {}
    notes:                  Optional[str] = None


class DeliveryEvidence(BaseModel):
    photo_reference: Optional[str]    = None   # handle d'une photo déjà uploadée
    gps:             Optional[GeoPin] = None
    recipient_name:  Optional[str]    = None
    recipient_note:  Optional[str]    = None


Evidence = Union[PickupEvidence, DeliveryEvidence]


class TransitionRequest(BaseModel):
    event:    DeliveryEvent
    pickup:   Optional[PickupEvidence]   = None
    delivery: Optional[DeliveryEvidence] = None
    notes:    Optional[str] = None

    def evidence(self) -> Optional[Evidence]:
        if self.event == DeliveryEvent.DRIVER_CONFIRMS_PICKUP:
            return self.pickup
        if self.event == DeliveryEvent.DRIVER_CONFIRMS_DELIVERY:
            return self.delivery
        return None


class TransitionResponse(BaseModel):
    order_id:              str
    status:                DeliveryStatus
    instructions:          str
    requires_confirmation: bool


# ── Enregistrements d'audit (append-only) ─────────────────────────────────────
class PickupConfirmation(BaseModel):
    confirmation_id:        str
    order_id:               str
    kind:                   ConfirmationKind = ConfirmationKind.PICKUP
    confirmed_at:           datetime
    confirmed_by:           str
    verification_checklist: Dict[str, bool]
    notes:                  Optional[str] = None


class DeliveryConfirmation(BaseModel):
    confirmation_id: str
    order_id:        str
    kind:            ConfirmationKind = ConfirmationKind.DELIVERY
    confirmed_at:    datetime
    confirmed_by:    str
    photo_reference: str
    gps:             GeoPin
    recipient_name:  Optional[str] = None
    recipient_note:  Optional[str] = None
