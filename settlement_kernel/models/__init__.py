"""ORM models for the settlement kernel."""

from settlement_kernel.models.bundle import (
    TERMINAL_STATUSES,
    BundleAdjustment,
    BundleItem,
    ItemAdjustment,
    SettlementBundle,
)
from settlement_kernel.models.counterparty import Counterparty, Manager
from settlement_kernel.models.freight_order import FreightOrder

__all__ = [
    # Order Ledger / Counterparty Directory (read-only)
    "FreightOrder",
    "Counterparty",
    "Manager",
    # Settlement bundles
    "SettlementBundle",
    "BundleItem",
    "BundleAdjustment",
    "ItemAdjustment",
    "TERMINAL_STATUSES",
]
