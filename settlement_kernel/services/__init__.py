"""Write-side services of the settlement kernel."""

from settlement_kernel.services.adjustment_ledger import AdjustmentLedger
from settlement_kernel.services.base import BaseService, BundleScopedService
from settlement_kernel.services.bundle_builder import BundleBuilder
from settlement_kernel.services.bundle_totals import apply_totals
from settlement_kernel.services.lifecycle_controller import LifecycleController
from settlement_kernel.services.settlement_engine import SettlementEngine

__all__ = [
    "AdjustmentLedger",
    "BaseService",
    "BundleScopedService",
    "BundleBuilder",
    "apply_totals",
    "LifecycleController",
    "SettlementEngine",
]
