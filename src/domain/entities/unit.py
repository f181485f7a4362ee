"""Reference records for the objects placed in tags."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class UnitStatus(StrEnum):
    """Reprocessing status of a unit."""

    NEW = "New"
    DIRTY = "Dirty"
    IN_WASH = "InWash"
    CLEAN = "Clean"
    IN_STERILIZATION = "InSterilization"
    STERILE = "Sterile"
    IN_USE = "InUse"
    EXPIRED = "Expired"
    MAINTENANCE = "Maintenance"


_STATUS_DISPLAY = {
    UnitStatus.IN_WASH: "In Wash",
    UnitStatus.IN_STERILIZATION: "In Sterilization",
    UnitStatus.IN_USE: "In Use",
}


@dataclass
class Customer:
    """Domain entity for a Customer."""

    name: str
    code: str = ""
    id: int | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime | None = None


@dataclass
class Product:
    """Domain entity for a Product."""

    name: str
    customer_key_id: int
    item_text: str = ""
    storage_type: str = ""
    id: int | None = None
    customer: Customer | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime | None = None


@dataclass
class Unit:
    """Domain entity for a Unit (a tracked instrument or device)."""

    unit_number: int
    product_key_id: int
    customer_key_id: int
    status: UnitStatus = UnitStatus.NEW
    id: int | None = None
    product: Product | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime | None = None

    @property
    def status_display_string(self) -> str:
        return _STATUS_DISPLAY.get(self.status, self.status.value)
