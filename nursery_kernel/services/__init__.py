"""Write-side services.  Flush only; the caller owns the transaction."""

from nursery_kernel.services.allocation_service import AllocationService
from nursery_kernel.services.event_ledger import EventLedger
from nursery_kernel.services.lifecycle_service import LifecycleService

__all__ = [
    "AllocationService",
    "EventLedger",
    "LifecycleService",
]
