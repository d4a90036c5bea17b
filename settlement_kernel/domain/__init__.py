"""Pure settlement domain: totals, lifecycle rules, snapshots and DTOs."""

from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.dtos import (
    AdjustmentInfo,
    BundleInfo,
    BundleItemInfo,
    BundlePage,
    BundleSummary,
    PaymentInfo,
    WaitingOrder,
    WaitingSummary,
)
from settlement_kernel.domain.lifecycle import (
    EDITABLE_FIELDS,
    PROTECTED_FIELDS,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    validate_transition,
)
from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.domain.totals import (
    AdjustmentLine,
    BundleTotals,
    ItemLine,
    TotalsPolicy,
    compute_totals,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "AdjustmentInfo",
    "BundleInfo",
    "BundleItemInfo",
    "BundlePage",
    "BundleSummary",
    "PaymentInfo",
    "WaitingOrder",
    "WaitingSummary",
    "EDITABLE_FIELDS",
    "PROTECTED_FIELDS",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
    "validate_transition",
    "CounterpartySnapshot",
    "ManagerSnapshot",
    "AdjustmentLine",
    "BundleTotals",
    "ItemLine",
    "TotalsPolicy",
    "compute_totals",
]
