"""
Typed Exception Hierarchy for the Production Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Validation of a production entry touches many stock units and can fail at
many points.  Callers must be able to tell an over-deduction from a lost
lock race without parsing message strings, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        ledger.deduct(unit, pieces_used=40, volume_used=Decimal("0.4"))
    except InsufficientStockError as e:
        log.warning(f"Unit {e.stock_unit_id} has {e.available} left")
        api_response(code=e.code, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProductionKernelError (base)
    |
    +-- UnauthorizedError
    |
    +-- NotFoundError
    |   +-- EntryNotFoundError
    |   +-- StockUnitNotFoundError
    |   +-- InputNotFoundError
    |   +-- ProcessNotFoundError
    |
    +-- ConcurrencyError
    |   +-- AlreadyInProgressError
    |
    +-- BusinessRuleError
    |   +-- PreconditionFailedError
    |   +-- InvalidInputError
    |   +-- InsufficientStockError
    |   +-- IdentifierConflictError
    |   +-- ReferencedElsewhereError
    |
    +-- PersistenceFailureError
    |
    +-- PartiallyRecoveredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                 | When Raised
---------------------|------------------------------------------------------
UNAUTHORIZED         | Authorizer refused the actor for this entry
NOT_FOUND            | Entry / stock unit / input / process does not exist
ALREADY_IN_PROGRESS  | CAS miss: another attempt holds or changed the lock
PRECONDITION_FAILED  | Missing inputs, outputs, attributes or identifiers
INVALID_INPUT        | Non-positive pieces or volume on an edit
INSUFFICIENT_STOCK   | Deduction larger than what the stock unit holds
IDENTIFIER_CONFLICT  | Output identifier already used in the tenant
FK_CONSTRAINT        | Stock unit is consumed as input by another entry
PERSISTENCE_FAILURE  | Underlying store write or read failed
PARTIALLY_RECOVERED  | Rollback could not restore every touched stock unit

===============================================================================
"""

from decimal import Decimal
from uuid import UUID


class ProductionKernelError(Exception):
    """
    Base exception for all production kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PRODUCTION_KERNEL_ERROR"


class UnauthorizedError(ProductionKernelError):
    """Actor is not allowed to perform the action on this entry."""

    code: str = "UNAUTHORIZED"

    def __init__(self, actor_id: UUID, action: str, entry_id: UUID | None = None):
        self.actor_id = actor_id
        self.action = action
        self.entry_id = entry_id
        target = f" on entry {entry_id}" if entry_id else ""
        super().__init__(f"Actor {actor_id} may not {action}{target}")


# Lookup failures


class NotFoundError(ProductionKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class EntryNotFoundError(NotFoundError):
    """Production entry with given ID was not found."""

    def __init__(self, entry_id: UUID):
        self.entry_id = entry_id
        super().__init__(f"Production entry not found: {entry_id}")


class StockUnitNotFoundError(NotFoundError):
    """Stock unit referenced by an input was not found."""

    def __init__(self, stock_unit_id: UUID):
        self.stock_unit_id = stock_unit_id
        super().__init__(f"Stock unit not found: {stock_unit_id}")


class InputNotFoundError(NotFoundError):
    """Production input line was not found."""

    def __init__(self, input_id: UUID):
        self.input_id = input_id
        super().__init__(f"Production input not found: {input_id}")


class ProcessNotFoundError(NotFoundError):
    """Process referenced by an entry was not found."""

    def __init__(self, process_id: UUID):
        self.process_id = process_id
        super().__init__(f"Process not found: {process_id}")


# Concurrency


class ConcurrencyError(ProductionKernelError):
    """Base exception for lock contention."""

    code: str = "CONCURRENCY_ERROR"


class AlreadyInProgressError(ConcurrencyError):
    """
    The conditional status update matched zero rows.

    Either another attempt holds the ``validating`` lock, or the status was
    changed underneath this attempt before it could commit.
    """

    code: str = "ALREADY_IN_PROGRESS"

    def __init__(self, entry_id: UUID, expected_status: str):
        self.entry_id = entry_id
        self.expected_status = expected_status
        super().__init__(
            f"Entry {entry_id} is already being validated "
            f"(expected status '{expected_status}')"
        )


# Business rules


class BusinessRuleError(ProductionKernelError):
    """Base exception for validation rule violations."""

    code: str = "BUSINESS_RULE_ERROR"


class PreconditionFailedError(BusinessRuleError):
    """Entry is not in a state that allows the requested operation."""

    code: str = "PRECONDITION_FAILED"

    def __init__(self, entry_id: UUID, reason: str):
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"Entry {entry_id}: {reason}")


class InvalidInputError(BusinessRuleError):
    """Caller supplied a value that can never be valid."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class InsufficientStockError(BusinessRuleError):
    """Deduction exceeds what the stock unit currently holds."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        stock_unit_id: UUID,
        unit: str,
        requested: Decimal | int,
        available: Decimal | int,
    ):
        self.stock_unit_id = stock_unit_id
        self.unit = unit
        self.requested = requested
        self.available = available
        super().__init__(
            f"Stock unit {stock_unit_id}: requested {requested} {unit} "
            f"but only {available} available"
        )


class IdentifierConflictError(BusinessRuleError):
    """Proposed output identifiers are already taken in the tenant."""

    code: str = "IDENTIFIER_CONFLICT"

    def __init__(self, tenant_id: UUID, identifiers: list[str]):
        self.tenant_id = tenant_id
        self.identifiers = identifiers
        super().__init__(
            f"Identifiers already in use: {', '.join(identifiers)}"
        )


class ReferencedElsewhereError(BusinessRuleError):
    """Stock units cannot be removed because other entries consume them."""

    code: str = "FK_CONSTRAINT"

    def __init__(self, stock_unit_ids: list[UUID], referencing_entry_ids: list[UUID]):
        self.stock_unit_ids = stock_unit_ids
        self.referencing_entry_ids = referencing_entry_ids
        super().__init__(
            f"{len(stock_unit_ids)} stock unit(s) are used as inputs by "
            f"{len(referencing_entry_ids)} other entr(y/ies)"
        )


# Infrastructure


class PersistenceFailureError(ProductionKernelError):
    """The store failed to read or write."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


class PartiallyRecoveredError(ProductionKernelError):
    """
    Rollback finished but some corrective writes failed.

    The listed stock units may have drifted from their pre-attempt state
    and need operator attention.  ``original_code`` is the code of the
    failure that triggered the rollback.
    """

    code: str = "PARTIALLY_RECOVERED"

    def __init__(
        self,
        entry_id: UUID,
        original_code: str,
        unrecovered_unit_ids: list[UUID],
        status_restored: bool,
    ):
        self.entry_id = entry_id
        self.original_code = original_code
        self.unrecovered_unit_ids = unrecovered_unit_ids
        self.status_restored = status_restored
        super().__init__(
            f"Rollback of entry {entry_id} after {original_code} left "
            f"{len(unrecovered_unit_ids)} stock unit(s) unrecovered"
        )
