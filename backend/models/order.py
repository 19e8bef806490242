from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List
from pydantic import BaseModel


# Statuts gérés par le module commandes (hors workflow livreur)
READY_STATUS = "ready"
OWN_FLEET    = "own_fleet"


class DeliveryStatus(str, Enum):
    ASSIGNED             = "assigned"
    ON_ROUTE_TO_VENDOR   = "on_route_to_vendor"
    ARRIVED_AT_VENDOR    = "arrived_at_vendor"
    PICKED_UP            = "picked_up"
    ON_ROUTE_TO_CUSTOMER = "on_route_to_customer"
    ARRIVED_AT_CUSTOMER  = "arrived_at_customer"
    DELIVERED            = "delivered"
    CANCELLED            = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)

    @property
    def rank(self) -> Optional[int]:
        """Position dans le parcours ; None pour `cancelled` (hors séquence)."""
        if self is DeliveryStatus.CANCELLED:
            return None
        return DELIVERY_SEQUENCE.index(self)

    @classmethod
    def parse(cls, value: str) -> Optional["DeliveryStatus"]:
        """None si la commande est encore dans un statut pré-workflow (ready…)."""
        try:
            return cls(value)
        except ValueError:
            return None


# Ordre strict du parcours de livraison
DELIVERY_SEQUENCE: List[DeliveryStatus] = [
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.ON_ROUTE_TO_VENDOR,
    DeliveryStatus.ARRIVED_AT_VENDOR,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.ON_ROUTE_TO_CUSTOMER,
    DeliveryStatus.ARRIVED_AT_CUSTOMER,
    DeliveryStatus.DELIVERED,
]

ACTIVE_STATUSES = [s for s in DeliveryStatus if not s.is_terminal]

# Le livreur peut rendre la commande tant que la collecte n'est pas confirmée
RELEASABLE_STATUSES = [
    DeliveryStatus.ASSIGNED,
    DeliveryStatus.ON_ROUTE_TO_VENDOR,
    DeliveryStatus.ARRIVED_AT_VENDOR,
]


class OrderItem(BaseModel):
    name:       str
    quantity:   int   = 1
    unit_price: float = 0.0
    notes:      Optional[str] = None


class Order(BaseModel):
    order_id:       str
    order_number:   str
    vendor_id:      str
    customer_id:    str
    customer_phone: Optional[str] = None
    total_amount:   float
    delivery_fee:   float = 0.0
    items:          List[OrderItem] = []
    delivery_method: str = OWN_FLEET
    # "ready" (ou autre statut pré-workflow) puis valeurs DeliveryStatus
    status:             str = READY_STATUS
    assigned_driver_id: Optional[str]      = None
    assigned_at:        Optional[datetime] = None
    status_timestamps:  Dict[str, datetime] = {}
    cancel_reason:      Optional[str] = None
    cancelled_by:       Optional[str] = None
    created_at:         datetime
    updated_at:         datetime


class Assignment(BaseModel):
    order_id:    str
    driver_id:   str
    assigned_at: datetime


class ReleaseRequest(BaseModel):
    reason: Optional[str] = None


class AdminReleaseRequest(BaseModel):
    driver_id: str
    reason:    Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
