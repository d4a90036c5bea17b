"""Selectors for the settlement kernel (read side)."""

from settlement_kernel.selectors.bundle_selector import BundleSelector, bundle_totals
from settlement_kernel.selectors.counterparty_directory import CounterpartyDirectory
from settlement_kernel.selectors.order_ledger import LedgerOrder, OrderLedger
from settlement_kernel.selectors.waiting_pool_selector import WaitingPoolSelector

__all__ = [
    "BundleSelector",
    "bundle_totals",
    "CounterpartyDirectory",
    "LedgerOrder",
    "OrderLedger",
    "WaitingPoolSelector",
]
