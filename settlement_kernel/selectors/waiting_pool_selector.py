"""
Module: settlement_kernel.selectors.waiting_pool_selector
Responsibility: The waiting pool -- closed freight orders of one side that no
    active bundle of that side owns yet.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Exclusivity is evaluated live with NOT EXISTS over bundle_items
      (side match, released_at IS NULL).  A canceled bundle's items carry
      released_at, so their orders reappear; a deleted bundle's items are
      gone, so theirs reappear too.

Failure modes:
    - CounterpartyNotFoundError when an explicit counterparty filter names an
      unknown counterparty.  Any other empty result is an empty list.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import Session

from settlement_kernel.domain.dtos import WaitingOrder, WaitingSummary
from settlement_kernel.enums import BundleSide, PeriodType, coerce_enum
from settlement_kernel.exceptions import CounterpartyNotFoundError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.bundle import BundleItem
from settlement_kernel.models.freight_order import FreightOrder
from settlement_kernel.selectors.base import BaseSelector
from settlement_kernel.selectors.counterparty_directory import CounterpartyDirectory

logger = get_logger("selectors.waiting_pool")


def counterparty_column(side: BundleSide):
    return FreightOrder.shipper_id if side == BundleSide.SALES else FreightOrder.carrier_id


def amount_column(side: BundleSide):
    return FreightOrder.sales_amount if side == BundleSide.SALES else FreightOrder.purchase_amount


def anchor_expression(period_type: PeriodType):
    """SQL twin of FreightOrder.period_anchor()."""
    if period_type == PeriodType.ARRIVAL:
        return func.coalesce(FreightOrder.delivery_date, FreightOrder.pickup_date)
    return FreightOrder.pickup_date


def active_membership(side: BundleSide):
    """EXISTS clause: the outer FreightOrder row is held by an active bundle item."""
    return exists().where(
        and_(
            BundleItem.order_id == FreightOrder.id,
            BundleItem.side == side,
            BundleItem.released_at.is_(None),
        )
    )


class WaitingPoolSelector(BaseSelector[FreightOrder]):
    """
    Settleable orders not yet in an active bundle.

    Guarantees:
        - Only closed orders with a counterparty on ``side`` are returned.
        - Period bounds are inclusive on both ends.
        - Ordered by anchor date, then order number.
    """

    def __init__(self, session: Session):
        super().__init__(session)
        self._directory = CounterpartyDirectory(session)

    def list_waiting(
        self,
        side: BundleSide | str,
        counterparty_id: UUID | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        period_type: PeriodType | str = PeriodType.DEPARTURE,
    ) -> list[WaitingOrder]:
        """
        Orders of ``side`` waiting to be bundled.

        Raises:
            CounterpartyNotFoundError: counterparty_id given but unknown.
        """
        side = coerce_enum(BundleSide, side, "side")
        period_type = coerce_enum(PeriodType, period_type, "period_type")

        if counterparty_id is not None and not self._directory.exists(counterparty_id):
            raise CounterpartyNotFoundError(str(counterparty_id))

        cp_col = counterparty_column(side)
        anchor = anchor_expression(period_type)

        stmt = (
            select(FreightOrder)
            .where(
                FreightOrder.is_closed.is_(True),
                cp_col.is_not(None),
                ~active_membership(side),
            )
            .order_by(anchor, FreightOrder.order_no)
        )
        if counterparty_id is not None:
            stmt = stmt.where(cp_col == counterparty_id)
        if period_from is not None:
            stmt = stmt.where(anchor >= period_from)
        if period_to is not None:
            stmt = stmt.where(anchor <= period_to)

        orders = self.session.execute(stmt).scalars().all()

        logger.debug(
            "waiting_pool_listed",
            extra={
                "side": side.value,
                "counterparty_id": str(counterparty_id) if counterparty_id else None,
                "count": len(orders),
            },
        )

        return [
            WaitingOrder(
                order_id=order.id,
                order_no=order.order_no,
                side=side,
                counterparty_id=order.counterparty_id(side),
                base_amount=order.base_amount(side),
                period_anchor=order.period_anchor(period_type),
                pickup_date=order.pickup_date,
                delivery_date=order.delivery_date,
            )
            for order in orders
        ]

    def summarize_waiting(
        self,
        side: BundleSide | str,
        period_from: date | None = None,
        period_to: date | None = None,
        period_type: PeriodType | str = PeriodType.DEPARTURE,
    ) -> list[WaitingSummary]:
        """Waiting pool grouped by counterparty, ordered by counterparty name."""
        waiting = self.list_waiting(
            side,
            period_from=period_from,
            period_to=period_to,
            period_type=period_type,
        )

        groups: dict[UUID, list[WaitingOrder]] = defaultdict(list)
        for order in waiting:
            groups[order.counterparty_id].append(order)

        names = self._directory.names(list(groups))
        summaries = [
            WaitingSummary(
                counterparty_id=cp_id,
                counterparty_name=names.get(cp_id, ""),
                order_count=len(orders),
                base_subtotal=sum((o.base_amount for o in orders), Decimal("0")),
                anchor_from=min(o.period_anchor for o in orders),
                anchor_to=max(o.period_anchor for o in orders),
            )
            for cp_id, orders in groups.items()
        ]
        return sorted(summaries, key=lambda s: (s.counterparty_name, str(s.counterparty_id)))
