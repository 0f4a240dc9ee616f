"""ORM models for the nursery kernel."""

from nursery_kernel.models.planting_count import PlantingCount
from nursery_kernel.models.stock_reservation import StockGroupLock, StockReservation
from nursery_kernel.models.unit import Unit
from nursery_kernel.models.unit_event import UnitEvent, UnitEventType
from nursery_kernel.models.zone import Zone

__all__ = [
    "PlantingCount",
    "StockGroupLock",
    "StockReservation",
    "Unit",
    "UnitEvent",
    "UnitEventType",
    "Zone",
]
