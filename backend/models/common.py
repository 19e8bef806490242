from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class UserRole(str, Enum):
    CUSTOMER   = "customer"
    VENDOR     = "vendor"
    DRIVER     = "driver"
    ADMIN      = "admin"
    SUPERADMIN = "superadmin"


class DriverStatus(str, Enum):
    OFFLINE     = "offline"
    ONLINE      = "online"
    ON_DELIVERY = "on_delivery"


class GeoPin(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None  # mètres, aucun seuil imposé
