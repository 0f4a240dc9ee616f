"""
Typed Exception Hierarchy for the Nursery Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (tag editing screens, dig order processing, shipment
processing, deal creation) must react differently to different failures:

  - A ConflictError means "re-read the unit and try again".
  - A CorrectionNotesRequiredError means "ask the user for a reason".
  - An InsufficientStockError means "tell the salesperson the deficit".

Parsing message strings for that is fragile, so:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (unit id, attempted and current status)

Example:
    try:
        lifecycle.transition(unit_id, UnitStatus.RESERVED, actor=actor,
                             expected_status=UnitStatus.READY_FOR_SALE)
    except ConflictError as e:
        unit = unit_selector.get(e.unit_id)        # fresh read
        ...                                        # retry against e.actual_status
    except ValidationError as e:
        api_response(code=e.code, detail=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    NurseryKernelError (base)
    |
    +-- ValidationError
    |   +-- CorrectionNotesRequiredError
    |   +-- UnknownStatusError
    |   +-- UnitNotAllocatableError
    |   +-- InvalidQuantityError
    |
    +-- PermissionDeniedError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |
    +-- NotFoundError
    |   +-- UnitNotFoundError
    |   +-- ZoneNotFoundError
    |   +-- ReservationNotFoundError
    |
    +-- UnitCodeExistsError
    |
    +-- AllocationError
    |   +-- InsufficientStockError
    |   +-- ReservationClosedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------------
Validation    | VALIDATION_ERROR            | Generic rejected input
              | CORRECTION_NOTES_REQUIRED   | Off-graph transition with blank notes
              | UNKNOWN_STATUS              | Status string outside the closed enum
              | UNIT_NOT_ALLOCATABLE        | Unit-level allocation of a non-ready unit
              | INVALID_QUANTITY            | Zero/negative or over-bound quantity
--------------|-----------------------------|-------------------------------------------
Permission    | PERMISSION_DENIED           | Correction without force or without role
--------------|-----------------------------|-------------------------------------------
Concurrency   | CONFLICT                    | Compare-and-set mismatch (retry)
--------------|-----------------------------|-------------------------------------------
Not found     | UNIT_NOT_FOUND              | Unit id doesn't exist
              | ZONE_NOT_FOUND              | Zone id doesn't exist
              | RESERVATION_NOT_FOUND       | Pooled reservation id doesn't exist
--------------|-----------------------------|-------------------------------------------
Unit          | UNIT_CODE_EXISTS            | Duplicate tag code
--------------|-----------------------------|-------------------------------------------
Allocation    | INSUFFICIENT_STOCK          | Pooled request exceeds allocatable qty
              | RESERVATION_CLOSED          | Release/bind on a closed reservation
--------------|-----------------------------|-------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION      | Update/delete of an event, unit delete

===============================================================================
HANDLING PATTERNS
===============================================================================

1. ConcurrencyError -> re-read, then retry.  Nothing was written.
2. ValidationError / PermissionDeniedError -> surface to the user verbatim.
3. AllocationError -> surface with the structured deficit.
4. ImmutabilityError -> programming error or tampering; log and investigate.

Consistency alerts (overbook, depleted, backlogs) are NOT exceptions; they
are ``ConsistencyWarning`` values returned by the rollup engine.
"""


class NurseryKernelError(Exception):
    """
    Base exception for all nursery kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "NURSERY_KERNEL_ERROR"


# Validation exceptions


class ValidationError(NurseryKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class CorrectionNotesRequiredError(ValidationError):
    """An off-graph transition was attempted without explanatory notes."""

    code: str = "CORRECTION_NOTES_REQUIRED"

    def __init__(self, unit_id: str, current_status: str, requested_status: str):
        self.unit_id = unit_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"correction requires notes: unit {unit_id} "
            f"{current_status} -> {requested_status}"
        )


class UnknownStatusError(ValidationError):
    """Status value is not a member of the closed lifecycle enum."""

    code: str = "UNKNOWN_STATUS"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unknown unit status: {value!r}")


class UnitNotAllocatableError(ValidationError):
    """A specific unit was requested for sale but is not ready for sale."""

    code: str = "UNIT_NOT_ALLOCATABLE"

    def __init__(self, unit_id: str, current_status: str, reason: str | None = None):
        self.unit_id = unit_id
        self.current_status = current_status
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Unit {unit_id} cannot be allocated from status {current_status}{detail}"
        )


class InvalidQuantityError(ValidationError):
    """Quantity is zero, negative, or exceeds what may be bound."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: int, reason: str):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


# Permission exceptions


class PermissionDeniedError(NurseryKernelError):
    """
    A correction was attempted without explicit force or by an actor
    lacking a correction role.
    """

    code: str = "PERMISSION_DENIED"

    def __init__(
        self,
        unit_id: str,
        actor_id: str,
        current_status: str,
        requested_status: str,
        reason: str,
    ):
        self.unit_id = unit_id
        self.actor_id = actor_id
        self.current_status = current_status
        self.requested_status = requested_status
        self.reason = reason
        super().__init__(
            f"Correction {current_status} -> {requested_status} on unit {unit_id} "
            f"denied for actor {actor_id}: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(NurseryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """
    Compare-and-set mismatch on a unit.

    The caller's belief about the current status (or the row version read
    at the start of the operation) no longer matches the stored value.
    Nothing was written; re-read and retry.
    """

    code: str = "CONFLICT"

    def __init__(
        self,
        unit_id: str,
        expected_status: str | None,
        actual_status: str | None,
        requested_status: str | None = None,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.unit_id = unit_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        self.requested_status = requested_status
        self.expected_version = expected_version
        self.actual_version = actual_version
        if expected_version is not None:
            found = f"version {actual_version}"
            wanted = f"version {expected_version}"
        else:
            found = f"status {actual_status}"
            wanted = f"status {expected_status}"
        super().__init__(
            f"Conflict on unit {unit_id}: expected {wanted}, found {found}; "
            "re-read and retry"
        )


# Not-found exceptions


class NotFoundError(NurseryKernelError):
    """Base exception for missing references."""

    code: str = "NOT_FOUND"


class UnitNotFoundError(NotFoundError):
    """Unit with given ID was not found."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"Unit not found: {unit_id}")


class ZoneNotFoundError(NotFoundError):
    """Zone with given ID was not found."""

    code: str = "ZONE_NOT_FOUND"

    def __init__(self, zone_id: str):
        self.zone_id = zone_id
        super().__init__(f"Zone not found: {zone_id}")


class ReservationNotFoundError(NotFoundError):
    """Pooled reservation with given ID was not found."""

    code: str = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: str):
        self.reservation_id = reservation_id
        super().__init__(f"Stock reservation not found: {reservation_id}")


class UnitCodeExistsError(NurseryKernelError):
    """A unit with the same tag code already exists."""

    code: str = "UNIT_CODE_EXISTS"

    def __init__(self, unit_code: str):
        self.unit_code = unit_code
        super().__init__(f"Tag code already in use: {unit_code}")


# Allocation exceptions


class AllocationError(NurseryKernelError):
    """Base exception for reservation policy failures."""

    code: str = "ALLOCATION_ERROR"


class InsufficientStockError(AllocationError):
    """Pooled request cannot be satisfied from the group's allocatable quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, group_key: str, requested: int, allocatable: int):
        self.group_key = group_key
        self.requested = requested
        self.allocatable = allocatable
        self.deficit = requested - allocatable
        super().__init__(
            f"Insufficient stock in group {group_key}: requested {requested}, "
            f"allocatable {allocatable}, deficit {self.deficit}"
        )


class ReservationClosedError(AllocationError):
    """Operation on a pooled reservation that is no longer open."""

    code: str = "RESERVATION_CLOSED"

    def __init__(self, reservation_id: str, status: str):
        self.reservation_id = reservation_id
        self.status = status
        super().__init__(
            f"Stock reservation {reservation_id} is {status}, not reserved"
        )


# Immutability exceptions


class ImmutabilityError(NurseryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Unit events are append-only; units are never deleted and their tag
    code never changes.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
