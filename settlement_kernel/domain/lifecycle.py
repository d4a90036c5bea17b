"""
Lifecycle -- bundle status machine and field mutability rules.

Responsibility:
    Declares which status changes a settlement bundle may make, which header
    fields a caller may edit, and what a bundle needs before it can be
    completed.  Services consult these tables; nothing here touches the
    database.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

State machine:

    draft ----update----> issued ----complete----> paid
      |                    |  ^
      |                    +--+ update (stays issued)
      |                    |
      +------cancel--------+-----> canceled

    paid and canceled are terminal.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from settlement_kernel.enums import BundleStatus
from settlement_kernel.exceptions import (
    BundleFrozenError,
    ImmutableFieldError,
    InvalidStatusTransitionError,
    ValidationError,
)

# Allowed state transitions (from -> set of valid targets)
VALID_TRANSITIONS: dict[BundleStatus, frozenset[BundleStatus]] = {
    BundleStatus.DRAFT: frozenset({
        BundleStatus.ISSUED, BundleStatus.CANCELED,
    }),
    BundleStatus.ISSUED: frozenset({
        BundleStatus.ISSUED, BundleStatus.PAID, BundleStatus.CANCELED,
    }),
    # Terminal states
    BundleStatus.PAID: frozenset(),
    BundleStatus.CANCELED: frozenset(),
}

TERMINAL_STATUSES: frozenset[BundleStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

MUTABLE_STATUSES: frozenset[BundleStatus] = frozenset(
    {BundleStatus.DRAFT, BundleStatus.ISSUED}
)

# Header fields a caller may change through update_bundle
EDITABLE_FIELDS: frozenset[str] = frozenset({
    "counterparty_snapshot",
    "manager_snapshot",
    "period_type",
    "period_from",
    "period_to",
    "tax_free",
    "payment_method",
    "bank_code",
    "bank_account",
    "bank_account_holder",
    "settlement_memo",
    "invoice_no",
    "invoice_issued_at",
    "deposit_requested_at",
    "deposit_received_at",
    "settled_at",
})

# Engine-derived or structural; never writable by callers
PROTECTED_FIELDS: frozenset[str] = frozenset({
    "id",
    "side",
    "status",
    "counterparty_id",
    "counterparty_name",
    "counterparty_tax_id",
    "order_count",
    "period_overridden",
    "total_amount",
    "total_tax_amount",
    "total_amount_with_tax",
    "item_extra_amount",
    "item_extra_amount_tax",
    "bundle_extra_amount",
    "bundle_extra_amount_tax",
    "completed_at",
    "canceled_at",
    "version",
    "created_at",
    "created_by_id",
    "updated_at",
    "updated_by_id",
})

COMPLETION_REQUIRED_FIELDS: tuple[str, ...] = (
    "invoice_issued_at",
    "deposit_received_at",
)


def is_terminal(status: BundleStatus | str) -> bool:
    return BundleStatus(status) in TERMINAL_STATUSES


def validate_transition(
    bundle_id: Any,
    current: BundleStatus | str,
    target: BundleStatus | str,
) -> None:
    """
    Raise unless ``current -> target`` is in VALID_TRANSITIONS.

    Raises:
        InvalidStatusTransitionError: transition not allowed.
    """
    current = BundleStatus(current)
    target = BundleStatus(target)
    if target not in VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransitionError(
            bundle_id=str(bundle_id),
            from_status=current.value,
            to_status=target.value,
        )


def ensure_mutable(bundle_id: Any, status: BundleStatus | str, operation: str) -> None:
    """
    Raise if the bundle no longer accepts edits.

    Raises:
        BundleFrozenError: status is paid or canceled.
    """
    status = BundleStatus(status)
    if status not in MUTABLE_STATUSES:
        raise BundleFrozenError(
            bundle_id=str(bundle_id),
            status=status.value,
            operation=operation,
        )


def check_update_fields(changes: Mapping[str, Any]) -> None:
    """
    Reject changes to protected or unknown header fields.

    Raises:
        ImmutableFieldError: a protected (engine-derived/structural) field.
        ValidationError: a field that does not exist on a bundle.
    """
    protected = sorted(key for key in changes if key in PROTECTED_FIELDS)
    if protected:
        raise ImmutableFieldError(protected)
    unknown = sorted(key for key in changes if key not in EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown bundle field(s): {', '.join(unknown)}")


def missing_completion_fields(values: Mapping[str, Any]) -> list[str]:
    """Names of completion prerequisites that are still unset."""
    return [name for name in COMPLETION_REQUIRED_FIELDS if values.get(name) is None]


def next_status_after_edit(current: BundleStatus | str) -> BundleStatus:
    """An edit issues a draft; an issued bundle stays issued."""
    current = BundleStatus(current)
    return BundleStatus.ISSUED if current in MUTABLE_STATUSES else current


def derive_period(anchors: Iterable) -> tuple:
    """(min, max) of the member anchor dates, or (None, None) when empty."""
    anchors = sorted(anchors)
    if not anchors:
        return None, None
    return anchors[0], anchors[-1]
