"""
Module: settlement_kernel.selectors.bundle_selector
Responsibility: Read access to settlement bundles -- single bundle with live
    totals, items and adjustments, and paginated bundle lists.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - get_bundle_with_totals() recomputes totals from the rows through
      domain.totals; it never trusts the cached columns for its ``totals``.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_kernel.domain.dtos import (
    AdjustmentInfo,
    BundleInfo,
    BundleItemInfo,
    BundlePage,
    BundleSummary,
)
from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.domain.totals import AdjustmentLine, BundleTotals, ItemLine, TotalsPolicy
from settlement_kernel.enums import BundleSide, BundleStatus, coerce_enum
from settlement_kernel.exceptions import (
    AdjustmentNotFoundError,
    BundleItemNotFoundError,
    BundleNotFoundError,
    ValidationError,
)
from settlement_kernel.models.bundle import (
    BundleAdjustment,
    BundleItem,
    ItemAdjustment,
    SettlementBundle,
)
from settlement_kernel.selectors.base import BaseSelector
from settlement_kernel.selectors.order_ledger import OrderLedger

SORT_COLUMNS = {
    "created_at": SettlementBundle.created_at,
    "period_from": SettlementBundle.period_from,
}

MAX_PAGE_SIZE = 200


def bundle_totals(bundle: SettlementBundle, policy: TotalsPolicy) -> BundleTotals:
    """Totals recomputed from an ORM bundle's current items and adjustments."""
    return policy.compute(
        bundle.tax_free,
        [ItemLine(item.base_amount) for item in bundle.items],
        [AdjustmentLine.from_record(adj) for adj in bundle.adjustments],
        [AdjustmentLine.from_record(adj) for adj in bundle.item_adjustments],
    )


class BundleSelector(BaseSelector[SettlementBundle]):
    """
    Settlement bundle queries.

    Guarantees:
        - Read-only.
        - Items are ordered by anchor date; adjustments by creation time.
    """

    def __init__(self, session: Session, policy: TotalsPolicy | None = None):
        super().__init__(session)
        self.policy = policy or TotalsPolicy()

    def _adjustment_dto(
        self,
        adj: BundleAdjustment | ItemAdjustment,
        bundle_id: UUID,
        bundle_item_id: UUID | None,
    ) -> AdjustmentInfo:
        return AdjustmentInfo(
            id=adj.id,
            bundle_id=bundle_id,
            bundle_item_id=bundle_item_id,
            type=adj.type,
            description=adj.description,
            amount=adj.amount,
            tax_amount=adj.tax_amount,
            created_by_id=adj.created_by_id,
            created_at=adj.created_at,
        )

    def _to_dto(self, bundle: SettlementBundle) -> BundleInfo:
        """Convert ORM model to DTO."""
        order_nos = OrderLedger(self.session).order_numbers(
            [item.order_id for item in bundle.items]
        )
        items = tuple(
            BundleItemInfo(
                id=item.id,
                order_id=item.order_id,
                order_no=order_nos.get(item.order_id),
                base_amount=item.base_amount,
                period_anchor=item.period_anchor,
                adjustments=tuple(
                    self._adjustment_dto(adj, bundle.id, item.id)
                    for adj in item.adjustments
                ),
                released_at=item.released_at,
            )
            for item in bundle.items
        )
        manager = (
            ManagerSnapshot.from_dict(bundle.manager_snapshot)
            if bundle.manager_snapshot
            else None
        )
        return BundleInfo(
            id=bundle.id,
            side=bundle.side,
            status=bundle.status,
            counterparty_id=bundle.counterparty_id,
            counterparty=CounterpartySnapshot.from_dict(bundle.counterparty_snapshot),
            manager=manager,
            period_type=bundle.period_type,
            period_from=bundle.period_from,
            period_to=bundle.period_to,
            order_count=bundle.order_count,
            tax_free=bundle.tax_free,
            payment_method=bundle.payment_method,
            bank_code=bundle.bank_code,
            bank_account=bundle.bank_account,
            bank_account_holder=bundle.bank_account_holder,
            settlement_memo=bundle.settlement_memo,
            invoice_no=bundle.invoice_no,
            invoice_issued_at=bundle.invoice_issued_at,
            deposit_requested_at=bundle.deposit_requested_at,
            deposit_received_at=bundle.deposit_received_at,
            settled_at=bundle.settled_at,
            completed_at=bundle.completed_at,
            canceled_at=bundle.canceled_at,
            totals=bundle_totals(bundle, self.policy),
            items=items,
            adjustments=tuple(
                self._adjustment_dto(adj, bundle.id, None) for adj in bundle.adjustments
            ),
            version=bundle.version,
            created_by_id=bundle.created_by_id,
            updated_by_id=bundle.updated_by_id,
            created_at=bundle.created_at,
            updated_at=bundle.updated_at,
        )

    def _summary_dto(self, bundle: SettlementBundle) -> BundleSummary:
        return BundleSummary(
            id=bundle.id,
            side=bundle.side,
            status=bundle.status,
            counterparty_id=bundle.counterparty_id,
            counterparty_name=bundle.counterparty_name,
            period_type=bundle.period_type,
            period_from=bundle.period_from,
            period_to=bundle.period_to,
            order_count=bundle.order_count,
            tax_free=bundle.tax_free,
            total_amount=bundle.total_amount,
            total_tax_amount=bundle.total_tax_amount,
            total_amount_with_tax=bundle.total_amount_with_tax,
            created_at=bundle.created_at,
        )

    def get_bundle(self, bundle_id: UUID) -> BundleInfo | None:
        bundle = self.session.get(SettlementBundle, bundle_id)
        if bundle is None:
            return None
        return self._to_dto(bundle)

    def get_bundle_with_totals(self, bundle_id: UUID) -> BundleInfo:
        """
        Bundle header, items, adjustments and freshly computed totals.

        Raises:
            BundleNotFoundError: Unknown id.
        """
        info = self.get_bundle(bundle_id)
        if info is None:
            raise BundleNotFoundError(str(bundle_id))
        return info

    def list_adjustments(self, bundle_id: UUID) -> list[AdjustmentInfo]:
        """Bundle-level adjustments first, then item-level ones by item."""
        info = self.get_bundle_with_totals(bundle_id)
        return [*info.adjustments, *info.item_adjustments]

    def get_adjustment(self, adjustment_id: UUID) -> AdjustmentInfo:
        """
        Raises:
            AdjustmentNotFoundError: No adjustment of either kind has this id.
        """
        bundle_adj = self.session.get(BundleAdjustment, adjustment_id)
        if bundle_adj is not None:
            return self._adjustment_dto(bundle_adj, bundle_adj.bundle_id, None)
        item_adj = self.session.get(ItemAdjustment, adjustment_id)
        if item_adj is not None:
            return self._adjustment_dto(
                item_adj, item_adj.item.bundle_id, item_adj.bundle_item_id
            )
        raise AdjustmentNotFoundError(str(adjustment_id))

    def get_item(self, bundle_item_id: UUID) -> BundleItemInfo:
        """
        Raises:
            BundleItemNotFoundError: Unknown id.
        """
        item = self.session.get(BundleItem, bundle_item_id)
        if item is None:
            raise BundleItemNotFoundError(str(bundle_item_id))
        bundle = self._to_dto(item.bundle)
        return next(i for i in bundle.items if i.id == item.id)

    def list_bundles(
        self,
        side: BundleSide | str | None = None,
        counterparty_id: UUID | None = None,
        status: BundleStatus | str | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        sort_by: str = "created_at",
        descending: bool = True,
        page: int = 1,
        page_size: int = 20,
    ) -> BundlePage:
        """
        Filtered, sorted, paginated bundle headers.

        period_from keeps bundles whose period starts on or after it;
        period_to keeps bundles whose period ends on or before it.

        Raises:
            ValidationError: Unknown sort column or bad page numbers.
        """
        if sort_by not in SORT_COLUMNS:
            raise ValidationError(
                f"Cannot sort by {sort_by!r}; expected one of {sorted(SORT_COLUMNS)}"
            )
        if page < 1 or page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(
                f"Invalid page {page} / page_size {page_size} (max {MAX_PAGE_SIZE})"
            )

        conditions = []
        filters: dict = {}
        if side is not None:
            side = coerce_enum(BundleSide, side, "side")
            conditions.append(SettlementBundle.side == side)
            filters["side"] = side.value
        if counterparty_id is not None:
            conditions.append(SettlementBundle.counterparty_id == counterparty_id)
            filters["counterparty_id"] = str(counterparty_id)
        if status is not None:
            status = coerce_enum(BundleStatus, status, "status")
            conditions.append(SettlementBundle.status == status)
            filters["status"] = status.value
        if period_from is not None:
            conditions.append(SettlementBundle.period_from >= period_from)
            filters["period_from"] = period_from.isoformat()
        if period_to is not None:
            conditions.append(SettlementBundle.period_to <= period_to)
            filters["period_to"] = period_to.isoformat()

        total = self.session.execute(
            select(func.count()).select_from(SettlementBundle).where(*conditions)
        ).scalar_one()

        column = SORT_COLUMNS[sort_by]
        order = column.desc() if descending else column.asc()
        bundles = self.session.execute(
            select(SettlementBundle)
            .where(*conditions)
            .order_by(order, SettlementBundle.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars().all()

        return BundlePage(
            items=tuple(self._summary_dto(b) for b in bundles),
            total=total,
            page=page,
            page_size=page_size,
            filters=filters,
        )
