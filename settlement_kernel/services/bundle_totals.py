"""
Cached totals writer.

Every bundle mutation ends by calling apply_totals(), which recomputes all
seven cached money columns from the bundle's in-memory items and adjustments
and writes them back, along with order_count.  The cached columns are never
assigned anywhere else.

Each line fits the money column on its own, but a sum can still overflow
it; apply_totals() refuses such totals with InvalidAmountError before any
column is written.
"""

from settlement_kernel.db.types import MONEY_LIMIT
from settlement_kernel.domain.totals import BundleTotals, TotalsPolicy
from settlement_kernel.exceptions import InvalidAmountError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.bundle import SettlementBundle
from settlement_kernel.selectors.bundle_selector import bundle_totals

logger = get_logger("services.bundle_totals")


def apply_totals(bundle: SettlementBundle, policy: TotalsPolicy) -> BundleTotals:
    """Recompute and store the bundle's cached totals.  Returns them."""
    totals = bundle_totals(bundle, policy)
    cached = totals.cached_values()
    for name, value in cached.items():
        if abs(value) >= MONEY_LIMIT:
            raise InvalidAmountError(name, str(value), f"must be below {MONEY_LIMIT:,}")

    for name, value in cached.items():
        setattr(bundle, name, value)
    bundle.order_count = len(bundle.items)

    logger.debug(
        "bundle_totals_refreshed",
        extra={
            "bundle_id": str(bundle.id),
            "total_amount": totals.total_amount,
            "total_tax_amount": totals.total_tax_amount,
            "total_amount_with_tax": totals.total_amount_with_tax,
        },
    )
    return totals
