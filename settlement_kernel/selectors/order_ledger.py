"""
Module: settlement_kernel.selectors.order_ledger
Responsibility: Read access to the Order Ledger -- freight orders and their
    live bundle membership.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Membership is always read from bundle_items (released_at IS NULL), never
      from a cached flag on the order, so the answer can never be stale.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.enums import BundleSide, PeriodType, coerce_enum
from settlement_kernel.exceptions import OrderNotFoundError
from settlement_kernel.models.bundle import BundleItem
from settlement_kernel.models.freight_order import FreightOrder
from settlement_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class LedgerOrder:
    """An order as seen from one side of the brokerage."""

    id: UUID
    order_no: str
    side: BundleSide
    counterparty_id: UUID | None
    base_amount: Decimal
    period_anchor: date
    is_closed: bool


class OrderLedger(BaseSelector[FreightOrder]):
    """
    Freight order lookups for the settlement kernel.

    Non-goals:
        - Writing orders.  The ledger belongs to dispatch.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _to_dto(
        self,
        order: FreightOrder,
        side: BundleSide,
        period_type: PeriodType,
    ) -> LedgerOrder:
        return LedgerOrder(
            id=order.id,
            order_no=order.order_no,
            side=side,
            counterparty_id=order.counterparty_id(side),
            base_amount=order.base_amount(side),
            period_anchor=order.period_anchor(period_type),
            is_closed=order.is_closed,
        )

    def get_order(
        self,
        order_id: UUID,
        side: BundleSide | str,
        period_type: PeriodType | str = PeriodType.DEPARTURE,
    ) -> LedgerOrder:
        """
        Get an order's counterparty, base amount and anchor for ``side``.

        Raises:
            OrderNotFoundError: No order with that id.
        """
        order = self.session.get(FreightOrder, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return self._to_dto(
            order,
            coerce_enum(BundleSide, side, "side"),
            coerce_enum(PeriodType, period_type, "period_type"),
        )

    def active_owner(self, order_id: UUID, side: BundleSide | str) -> UUID | None:
        """Id of the active bundle of ``side`` holding the order, if any."""
        return self.session.execute(
            select(BundleItem.bundle_id).where(
                BundleItem.order_id == order_id,
                BundleItem.side == coerce_enum(BundleSide, side, "side"),
                BundleItem.released_at.is_(None),
            )
        ).scalars().first()

    def is_owned_by_active_bundle(self, order_id: UUID, side: BundleSide | str) -> bool:
        return self.active_owner(order_id, side) is not None

    def active_owners(
        self,
        order_ids: list[UUID],
        side: BundleSide | str,
    ) -> dict[UUID, UUID]:
        """Map order id -> owning active bundle id for those already bundled."""
        if not order_ids:
            return {}
        rows = self.session.execute(
            select(BundleItem.order_id, BundleItem.bundle_id).where(
                BundleItem.order_id.in_(order_ids),
                BundleItem.side == coerce_enum(BundleSide, side, "side"),
                BundleItem.released_at.is_(None),
            )
        ).all()
        return {row.order_id: row.bundle_id for row in rows}

    def order_numbers(self, order_ids: list[UUID]) -> dict[UUID, str]:
        if not order_ids:
            return {}
        rows = self.session.execute(
            select(FreightOrder.id, FreightOrder.order_no).where(
                FreightOrder.id.in_(order_ids)
            )
        ).all()
        return {row.id: row.order_no for row in rows}
