"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Settlement bundles are financial documents. Callers (the API layer, batch
jobs, tests) must react to failures by TYPE, never by parsing messages:

    try:
        engine.create_bundle(...)
    except ConflictError as e:           # waiting-pool view was stale
        refresh_waiting_pool()
    except InvalidStateError as e:       # bundle already paid/canceled
        api_response(code=e.code, status=e.status)

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (survives logging/serialization)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementKernelError (base)
    |
    +-- ValidationError                 malformed / missing input
    |   +-- EmptyOrderSetError
    |   +-- MissingSnapshotFieldError
    |   +-- NegativeAmountError
    |   +-- FloatAmountError
    |   +-- InvalidAmountError
    |   +-- InvalidCurrencyError
    |   +-- ImmutableFieldError
    |   +-- CounterpartyMismatchError
    |
    +-- ConflictError                   order already bundled / lost race
    |   +-- OrderAlreadyBundledError
    |   +-- ConcurrentModificationError
    |
    +-- InvalidStateError               operation not allowed for status
    |   +-- BundleFrozenError
    |   +-- InvalidStatusTransitionError
    |   +-- CompletionPreconditionError
    |
    +-- NotFoundError                   referenced id absent
        +-- BundleNotFoundError
        +-- BundleItemNotFoundError
        +-- AdjustmentNotFoundError
        +-- OrderNotFoundError
        +-- CounterpartyNotFoundError
        +-- ManagerNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | EMPTY_ORDER_SET             | create_bundle with no orders
                | MISSING_SNAPSHOT_FIELD      | snapshot lacks name / tax id
                | NEGATIVE_AMOUNT             | adjustment magnitude < 0
                | FLOAT_AMOUNT                | binary float passed as money
                | INVALID_AMOUNT              | NaN, infinity or outside Numeric(14, 2)
                | INVALID_CURRENCY            | unknown currency in policy
                | IMMUTABLE_FIELD             | update touches engine-derived field
                | COUNTERPARTY_MISMATCH       | orders belong to other counterparty
----------------|-----------------------------|-----------------------------------------
Conflict        | ORDER_ALREADY_BUNDLED       | order owned by an active bundle
                | CONCURRENT_MODIFICATION     | another writer won the race
----------------|-----------------------------|-----------------------------------------
State           | BUNDLE_FROZEN               | mutation of paid/canceled bundle
                | INVALID_STATUS_TRANSITION   | transition not in VALID_TRANSITIONS
                | COMPLETION_PRECONDITION     | invoice/deposit date missing
----------------|-----------------------------|-----------------------------------------
Not found       | BUNDLE_NOT_FOUND            | bundle id absent
                | BUNDLE_ITEM_NOT_FOUND       | bundle item id absent
                | ADJUSTMENT_NOT_FOUND        | adjustment id absent
                | ORDER_NOT_FOUND             | freight order id absent
                | COUNTERPARTY_NOT_FOUND      | counterparty id absent
                | MANAGER_NOT_FOUND           | manager id absent

===============================================================================
PROPAGATION
===============================================================================

All kinds are recovered at the transaction boundary (SettlementEngine rolls
back the unit of work) and re-raised verbatim. There are no automatic retries
inside the kernel; a ConflictError is handed back to the caller.
"""


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Validation errors


class ValidationError(SettlementKernelError):
    """Malformed or missing input."""

    code: str = "VALIDATION_ERROR"


class EmptyOrderSetError(ValidationError):
    """A bundle must contain at least one order."""

    code: str = "EMPTY_ORDER_SET"

    def __init__(self, side: str):
        self.side = side
        super().__init__(f"Cannot create a {side} bundle from an empty order set")


class MissingSnapshotFieldError(ValidationError):
    """Counterparty or manager snapshot is missing required fields."""

    code: str = "MISSING_SNAPSHOT_FIELD"

    def __init__(self, snapshot_type: str, fields: list[str]):
        self.snapshot_type = snapshot_type
        self.fields = fields
        super().__init__(
            f"{snapshot_type} snapshot is missing required field(s): "
            f"{', '.join(fields)}"
        )


class NegativeAmountError(ValidationError):
    """Adjustment magnitudes are stored unsigned and must be >= 0."""

    code: str = "NEGATIVE_AMOUNT"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be non-negative, got {value}")


class FloatAmountError(ValidationError):
    """Monetary values must be Decimal, never binary float."""

    code: str = "FLOAT_AMOUNT"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(
            f"{field} must be a Decimal or decimal string, got float {value}"
        )


class InvalidAmountError(ValidationError):
    """Amount is not finite or does not fit the money column."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: str, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"{field} {reason}, got {value}")


class InvalidCurrencyError(ValidationError):
    """Currency code has no known minor-unit precision."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Unsupported currency code: '{currency}'")


class ImmutableFieldError(ValidationError):
    """Update attempted on a field that is engine-derived or structural."""

    code: str = "IMMUTABLE_FIELD"

    def __init__(self, fields: list[str]):
        self.fields = fields
        super().__init__(f"Field(s) cannot be updated directly: {', '.join(fields)}")


class CounterpartyMismatchError(ValidationError):
    """Selected orders do not all belong to the bundle's counterparty."""

    code: str = "COUNTERPARTY_MISMATCH"

    def __init__(self, order_id: str, expected: str, actual: str | None):
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Order {order_id} belongs to counterparty {actual}, "
            f"expected {expected}"
        )


# Conflict errors


class ConflictError(SettlementKernelError):
    """A concurrent writer won, or exclusive membership would be violated."""

    code: str = "CONFLICT"


class OrderAlreadyBundledError(ConflictError):
    """Order is already a member of an active bundle of the same side."""

    code: str = "ORDER_ALREADY_BUNDLED"

    def __init__(self, order_id: str, side: str, bundle_id: str | None = None):
        self.order_id = order_id
        self.side = side
        self.bundle_id = bundle_id
        owner = f" (bundle {bundle_id})" if bundle_id else ""
        super().__init__(
            f"Order {order_id} is already in an active {side} bundle{owner}"
        )


class ConcurrentModificationError(ConflictError):
    """The store rejected this writer in favour of a concurrent one."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: str | None, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: {reason}"
        )


# State errors


class InvalidStateError(SettlementKernelError):
    """Operation not permitted for the bundle's current status."""

    code: str = "INVALID_STATE"


class BundleFrozenError(InvalidStateError):
    """
    Bundle is paid or canceled; it and every row under it are immutable.
    """

    code: str = "BUNDLE_FROZEN"

    def __init__(self, bundle_id: str, status: str, operation: str):
        self.bundle_id = bundle_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} on bundle {bundle_id}: status is {status}"
        )


class InvalidStatusTransitionError(InvalidStateError):
    """Requested status change is not in the transition table."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, bundle_id: str, from_status: str, to_status: str):
        self.bundle_id = bundle_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Bundle {bundle_id} cannot move from {from_status} to {to_status}"
        )


class CompletionPreconditionError(InvalidStateError):
    """Bundle cannot be completed until invoice and deposit dates are set."""

    code: str = "COMPLETION_PRECONDITION"

    def __init__(self, bundle_id: str, missing: list[str]):
        self.bundle_id = bundle_id
        self.missing = missing
        super().__init__(
            f"Bundle {bundle_id} cannot be completed; missing {', '.join(missing)}"
        )


# Not-found errors


class NotFoundError(SettlementKernelError):
    """Referenced record does not exist."""

    code: str = "NOT_FOUND"


class BundleNotFoundError(NotFoundError):
    code: str = "BUNDLE_NOT_FOUND"

    def __init__(self, bundle_id: str):
        self.bundle_id = bundle_id
        super().__init__(f"Bundle not found: {bundle_id}")


class BundleItemNotFoundError(NotFoundError):
    code: str = "BUNDLE_ITEM_NOT_FOUND"

    def __init__(self, bundle_item_id: str):
        self.bundle_item_id = bundle_item_id
        super().__init__(f"Bundle item not found: {bundle_item_id}")


class AdjustmentNotFoundError(NotFoundError):
    code: str = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, adjustment_id: str):
        self.adjustment_id = adjustment_id
        super().__init__(f"Adjustment not found: {adjustment_id}")


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Freight order not found: {order_id}")


class CounterpartyNotFoundError(NotFoundError):
    code: str = "COUNTERPARTY_NOT_FOUND"

    def __init__(self, counterparty_id: str):
        self.counterparty_id = counterparty_id
        super().__init__(f"Counterparty not found: {counterparty_id}")


class ManagerNotFoundError(NotFoundError):
    code: str = "MANAGER_NOT_FOUND"

    def __init__(self, manager_id: str):
        self.manager_id = manager_id
        super().__init__(f"Manager not found: {manager_id}")
