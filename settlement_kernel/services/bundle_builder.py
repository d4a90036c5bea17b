"""
BundleBuilder -- creates and deletes settlement bundles.

Responsibility:
    Turns a set of waiting freight orders into a draft bundle: one header
    carrying the counterparty snapshot and payment terms, one BundleItem per
    order with the order's base amount copied at this instant, and cached
    totals initialized through the Totals Calculator.  Deleting a bundle
    drops it with its items and adjustments, which returns its orders to
    the waiting pool.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - An order joins at most one active bundle per side.  Re-checked under
      row locks on the order rows inside the creating transaction, and
      backstopped by the partial unique index on bundle_items.
    - order_count and period_from/period_to always reflect the items.
    - Paid/canceled bundles cannot be deleted.

Failure modes:
    - EmptyOrderSetError, MissingSnapshotFieldError, CounterpartyMismatchError,
      ValidationError on bad input.
    - OrderNotFoundError for unknown order ids.
    - OrderAlreadyBundledError when the waiting-pool view was stale.
    - ConcurrentModificationError when a concurrent writer claimed one of the
      orders between our check and our flush.
    - BundleFrozenError when deleting a paid/canceled bundle.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.dtos import PaymentInfo
from settlement_kernel.domain.lifecycle import derive_period, ensure_mutable
from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.domain.totals import TotalsPolicy
from settlement_kernel.enums import BundleSide, BundleStatus, PaymentMethod, PeriodType, coerce_enum
from settlement_kernel.exceptions import (
    ConcurrentModificationError,
    CounterpartyMismatchError,
    EmptyOrderSetError,
    OrderAlreadyBundledError,
    OrderNotFoundError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.bundle import BundleItem, SettlementBundle
from settlement_kernel.models.freight_order import FreightOrder
from settlement_kernel.selectors.counterparty_directory import CounterpartyDirectory
from settlement_kernel.selectors.order_ledger import OrderLedger
from settlement_kernel.services.base import BundleScopedService

logger = get_logger("services.bundle_builder")


def _unique(ids: Iterable[UUID]) -> list[UUID]:
    seen: dict[UUID, None] = {}
    for order_id in ids:
        seen.setdefault(order_id, None)
    return list(seen)


class BundleBuilder(BundleScopedService):
    """
    Creates draft bundles from waiting orders and deletes open bundles.

    Contract:
        create_bundle() returns the flushed SettlementBundle in DRAFT with
        items, cached totals, order_count and period set.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: TotalsPolicy | None = None,
        default_period_type: PeriodType = PeriodType.DEPARTURE,
        default_payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
    ):
        super().__init__(session, clock, policy)
        self.default_period_type = coerce_enum(
            PeriodType, default_period_type, "default_period_type"
        )
        self.default_payment_method = coerce_enum(
            PaymentMethod, default_payment_method, "default_payment_method"
        )
        self._ledger = OrderLedger(session)
        self._directory = CounterpartyDirectory(session)

    # -----------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------

    def _lock_orders(self, order_ids: list[UUID]) -> list[FreightOrder]:
        """Lock the order rows (id order, so concurrent builders never deadlock)."""
        found = self.session.execute(
            select(FreightOrder)
            .where(FreightOrder.id.in_(order_ids))
            .order_by(FreightOrder.id)
            .with_for_update()
        ).scalars().all()
        by_id = {order.id: order for order in found}
        for order_id in order_ids:
            if order_id not in by_id:
                raise OrderNotFoundError(str(order_id))
        return [by_id[order_id] for order_id in order_ids]

    def _resolve_counterparty(
        self,
        side: BundleSide,
        orders: list[FreightOrder],
        counterparty_id: UUID | None,
    ) -> UUID:
        expected = counterparty_id
        for order in orders:
            if not order.is_closed:
                raise ValidationError(
                    f"Order {order.order_no} is not closed and cannot be settled"
                )
            actual = order.counterparty_id(side)
            if actual is None:
                raise ValidationError(
                    f"Order {order.order_no} has no {side.value} counterparty"
                )
            if expected is None:
                expected = actual
            elif actual != expected:
                raise CounterpartyMismatchError(
                    order_id=str(order.id),
                    expected=str(expected),
                    actual=str(actual),
                )
        return expected

    def _check_waiting(self, side: BundleSide, order_ids: list[UUID]) -> None:
        owners = self._ledger.active_owners(order_ids, side)
        for order_id in order_ids:
            if order_id in owners:
                logger.warning(
                    "order_already_bundled",
                    extra={
                        "order_id": str(order_id),
                        "side": side.value,
                        "owner_bundle_id": str(owners[order_id]),
                    },
                )
                raise OrderAlreadyBundledError(
                    order_id=str(order_id),
                    side=side.value,
                    bundle_id=str(owners[order_id]),
                )

    def create_bundle(
        self,
        side: BundleSide | str,
        order_ids: Iterable[UUID],
        counterparty_snapshot: CounterpartySnapshot | Mapping[str, Any],
        actor_id: UUID,
        period_type: PeriodType | str | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        payment_info: PaymentInfo | Mapping[str, Any] | None = None,
        manager_snapshot: ManagerSnapshot | Mapping[str, Any] | None = None,
        tax_free: bool = False,
        counterparty_id: UUID | None = None,
    ) -> SettlementBundle:
        """
        Create a draft bundle from waiting orders.

        Preconditions:
            - order_ids non-empty, all closed, all waiting on ``side``.
            - All orders settle with the same counterparty on ``side``
              (and with ``counterparty_id`` when given).

        Postconditions:
            - One SettlementBundle in DRAFT and one BundleItem per order
              are flushed.
            - Cached totals equal compute_totals() over the new items.
        """
        side = coerce_enum(BundleSide, side, "side")
        period_type = coerce_enum(
            PeriodType, period_type or self.default_period_type, "period_type"
        )
        ids = _unique(order_ids or ())
        if not ids:
            raise EmptyOrderSetError(side.value)

        snapshot = CounterpartySnapshot.from_dict(counterparty_snapshot)
        manager = ManagerSnapshot.from_dict(manager_snapshot) if manager_snapshot else None
        payment = PaymentInfo.from_dict(payment_info)
        if not isinstance(tax_free, bool):
            raise ValidationError(f"tax_free must be a bool, got {tax_free!r}")
        if period_from and period_to and period_from > period_to:
            raise ValidationError(
                f"period_from {period_from} is after period_to {period_to}"
            )

        orders = self._lock_orders(ids)
        resolved_cp = self._resolve_counterparty(side, orders, counterparty_id)
        self._check_waiting(side, ids)

        items = [
            BundleItem(
                id=uuid4(),
                side=side,
                order_id=order.id,
                base_amount=order.base_amount(side),
                period_anchor=order.period_anchor(period_type),
            )
            for order in orders
        ]
        anchor_from, anchor_to = derive_period(item.period_anchor for item in items)

        bundle = SettlementBundle(
            id=uuid4(),
            side=side,
            counterparty_id=resolved_cp,
            counterparty_snapshot=snapshot.to_dict(),
            manager_snapshot=manager.to_dict() if manager else None,
            counterparty_name=snapshot.name,
            counterparty_tax_id=snapshot.tax_id,
            period_type=period_type,
            period_from=period_from or anchor_from,
            period_to=period_to or anchor_to,
            period_overridden=period_from is not None or period_to is not None,
            status=BundleStatus.DRAFT,
            tax_free=tax_free,
            payment_method=payment.payment_method or self.default_payment_method,
            bank_code=payment.bank_code or snapshot.bank_code,
            bank_account=payment.bank_account or snapshot.bank_account,
            bank_account_holder=(
                payment.bank_account_holder or snapshot.bank_account_holder
            ),
            settlement_memo=payment.settlement_memo,
            invoice_no=payment.invoice_no,
            settled_at=payment.settled_at,
            deposit_requested_at=payment.deposit_requested_at,
            created_by_id=actor_id,
        )
        bundle.items.extend(items)
        totals = self._refresh_totals(bundle)

        self.session.add(bundle)
        try:
            self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "bundle_create_conflict",
                extra={"side": side.value, "order_ids": [str(i) for i in ids]},
            )
            raise ConcurrentModificationError(
                entity_type="SettlementBundle",
                entity_id=None,
                reason="an order was claimed by a concurrent bundle",
            ) from exc

        logger.info(
            "bundle_created",
            extra={
                "bundle_id": str(bundle.id),
                "side": side.value,
                "counterparty_id": str(resolved_cp),
                "order_count": len(items),
                "total_amount_with_tax": totals.total_amount_with_tax,
            },
        )
        return bundle

    def create_bundle_for_counterparty(
        self,
        side: BundleSide | str,
        counterparty_id: UUID,
        order_ids: Iterable[UUID],
        actor_id: UUID,
        manager_id: UUID | None = None,
        **kwargs: Any,
    ) -> SettlementBundle:
        """Create a bundle snapshotting the counterparty (and manager) from the directory."""
        snapshot = self._directory.get_counterparty_snapshot(counterparty_id)
        manager = (
            self._directory.get_manager_snapshot(manager_id)
            if manager_id is not None
            else None
        )
        return self.create_bundle(
            side,
            order_ids,
            snapshot,
            actor_id,
            manager_snapshot=manager,
            counterparty_id=counterparty_id,
            **kwargs,
        )

    # -----------------------------------------------------------------
    # Delete
    # -----------------------------------------------------------------

    def delete_bundle(self, bundle_id: UUID, actor_id: UUID) -> list[UUID]:
        """
        Delete a draft/issued bundle with its items and adjustments.

        Returns:
            The order ids released back to the waiting pool.

        Raises:
            BundleNotFoundError: Unknown id.
            BundleFrozenError: Bundle is paid or canceled.
        """
        bundle = self._lock_bundle(bundle_id)
        ensure_mutable(bundle.id, bundle.status, "delete")

        released = [item.order_id for item in bundle.items]
        self.session.delete(bundle)
        self.session.flush()

        logger.info(
            "bundle_deleted",
            extra={
                "bundle_id": str(bundle_id),
                "side": bundle.side.value,
                "actor_id": str(actor_id),
                "released_orders": len(released),
            },
        )
        return released
