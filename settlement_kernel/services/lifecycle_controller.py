"""
LifecycleController -- edits and status transitions of settlement bundles.

Responsibility:
    Applies header edits (snapshots, payment terms, dates, tax_free, period)
    and drives the draft -> issued -> paid / canceled state machine declared
    in domain/lifecycle.py.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Every status change is checked against VALID_TRANSITIONS.
    - Engine-derived fields (totals, order_count, status) are never written
      from caller input.
    - Completion requires invoice_issued_at and deposit_received_at.
    - Canceling stamps released_at on every item, which returns the orders
      to the waiting pool.

Failure modes:
    - ImmutableFieldError / ValidationError on bad edits.
    - BundleFrozenError when editing a paid/canceled bundle.
    - InvalidStatusTransitionError for transitions out of paid/canceled.
    - CompletionPreconditionError when completion dates are missing.
"""

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.lifecycle import (
    check_update_fields,
    derive_period,
    ensure_mutable,
    missing_completion_fields,
    next_status_after_edit,
    validate_transition,
)
from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.domain.totals import TotalsPolicy
from settlement_kernel.enums import (
    BundleStatus,
    PaymentMethod,
    PeriodType,
    coerce_enum,
)
from settlement_kernel.exceptions import (
    CompletionPreconditionError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.bundle import SettlementBundle
from settlement_kernel.models.freight_order import FreightOrder
from settlement_kernel.selectors.counterparty_directory import CounterpartyDirectory
from settlement_kernel.services.base import BundleScopedService

logger = get_logger("services.lifecycle_controller")

_DATE_FIELDS = frozenset({
    "invoice_issued_at",
    "deposit_requested_at",
    "deposit_received_at",
    "settled_at",
})

_TEXT_FIELDS = {
    "bank_code": 10,
    "bank_account": 30,
    "bank_account_holder": 50,
    "settlement_memo": 200,
    "invoice_no": 50,
}


def _coerce_date(name: str, value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"{name} is not an ISO date: {value!r}") from exc
    raise ValidationError(f"{name} must be a date, got {type(value).__name__}")


def _coerce_text(name: str, value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    if len(value) > _TEXT_FIELDS[name]:
        raise ValidationError(f"{name} is longer than {_TEXT_FIELDS[name]} characters")
    return value


class LifecycleController(BundleScopedService):
    """
    Header edits and status transitions.

    Contract:
        update_bundle() issues a draft bundle and keeps an issued one issued.
        complete_bundle() moves an issued (or draft, via issued) bundle to
        paid.  cancel_bundle() moves draft/issued to canceled.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: TotalsPolicy | None = None,
    ):
        super().__init__(session, clock, policy)
        self._directory = CounterpartyDirectory(session)

    def _transition(
        self,
        bundle: SettlementBundle,
        target: BundleStatus,
        actor_id: UUID,
    ) -> None:
        validate_transition(bundle.id, bundle.status, target)
        from_status = BundleStatus(bundle.status)
        bundle.status = target
        if from_status != target:
            logger.info(
                "bundle_status_changed",
                extra={
                    "bundle_id": str(bundle.id),
                    "from_status": from_status.value,
                    "to_status": target.value,
                    "actor_id": str(actor_id),
                },
            )

    # -----------------------------------------------------------------
    # Edit
    # -----------------------------------------------------------------

    def _apply_snapshot(self, bundle: SettlementBundle, snapshot: CounterpartySnapshot) -> None:
        bundle.counterparty_snapshot = snapshot.to_dict()
        bundle.counterparty_name = snapshot.name
        bundle.counterparty_tax_id = snapshot.tax_id

    def _reanchor(self, bundle: SettlementBundle, period_type: PeriodType) -> None:
        orders = {
            order.id: order
            for order in self.session.execute(
                select(FreightOrder).where(
                    FreightOrder.id.in_([item.order_id for item in bundle.items])
                )
            ).scalars()
        }
        for item in bundle.items:
            order = orders.get(item.order_id)
            if order is not None:
                item.period_anchor = order.period_anchor(period_type)

    def update_bundle(
        self,
        bundle_id: UUID,
        changes: Mapping[str, Any],
        actor_id: UUID,
        refresh_counterparty: bool = False,
    ) -> SettlementBundle:
        """
        Edit header fields of a draft/issued bundle and issue it.

        Args:
            changes: Field -> new value, limited to EDITABLE_FIELDS.
            refresh_counterparty: Re-snapshot the counterparty from the
                directory instead of taking one from ``changes``.

        Raises:
            BundleNotFoundError, BundleFrozenError, ImmutableFieldError,
            ValidationError.
        """
        changes = dict(changes or {})
        check_update_fields(changes)
        if refresh_counterparty and "counterparty_snapshot" in changes:
            raise ValidationError(
                "Pass either counterparty_snapshot or refresh_counterparty, not both"
            )

        bundle = self._lock_bundle(bundle_id)
        ensure_mutable(bundle.id, bundle.status, "update")

        if refresh_counterparty:
            if bundle.counterparty_id is None:
                raise ValidationError(
                    f"Bundle {bundle.id} has no directory counterparty to refresh from"
                )
            self._apply_snapshot(
                bundle, self._directory.get_counterparty_snapshot(bundle.counterparty_id)
            )

        if "counterparty_snapshot" in changes:
            self._apply_snapshot(
                bundle, CounterpartySnapshot.from_dict(changes["counterparty_snapshot"])
            )

        if "manager_snapshot" in changes:
            manager = changes["manager_snapshot"]
            bundle.manager_snapshot = (
                ManagerSnapshot.from_dict(manager).to_dict() if manager else None
            )

        if "payment_method" in changes:
            bundle.payment_method = coerce_enum(
                PaymentMethod, changes["payment_method"], "payment_method"
            )

        if "tax_free" in changes:
            if not isinstance(changes["tax_free"], bool):
                raise ValidationError("tax_free must be a bool")
            bundle.tax_free = changes["tax_free"]

        for name in _DATE_FIELDS & changes.keys():
            setattr(bundle, name, _coerce_date(name, changes[name]))

        for name in _TEXT_FIELDS.keys() & changes.keys():
            setattr(bundle, name, _coerce_text(name, changes[name]))

        self._apply_period(bundle, changes)

        self._transition(bundle, next_status_after_edit(bundle.status), actor_id)
        totals = self._refresh_totals(bundle)
        self._touch(bundle, actor_id)
        self.session.flush()

        logger.info(
            "bundle_updated",
            extra={
                "bundle_id": str(bundle.id),
                "fields": sorted(changes),
                "refresh_counterparty": refresh_counterparty,
                "status": bundle.status.value,
                "total_amount_with_tax": totals.total_amount_with_tax,
            },
        )
        return bundle

    def _apply_period(self, bundle: SettlementBundle, changes: Mapping[str, Any]) -> None:
        if "period_type" in changes:
            period_type = coerce_enum(PeriodType, changes["period_type"], "period_type")
            if period_type != bundle.period_type:
                bundle.period_type = period_type
                self._reanchor(bundle, period_type)

        derived_from, derived_to = derive_period(item.period_anchor for item in bundle.items)

        if "period_from" in changes or "period_to" in changes:
            # an end not named in this edit keeps its override, if any
            kept_from = bundle.period_from if bundle.period_overridden else None
            kept_to = bundle.period_to if bundle.period_overridden else None
            period_from = _coerce_date("period_from", changes.get("period_from", kept_from))
            period_to = _coerce_date("period_to", changes.get("period_to", kept_to))
            bundle.period_overridden = period_from is not None or period_to is not None
            if bundle.period_overridden:
                # a cleared end falls back to the one derived from the anchors
                bundle.period_from = period_from or derived_from
                bundle.period_to = period_to or derived_to

        if not bundle.period_overridden:
            bundle.period_from, bundle.period_to = derived_from, derived_to

        if bundle.period_from and bundle.period_to and bundle.period_from > bundle.period_to:
            raise ValidationError(
                f"period_from {bundle.period_from} is after period_to {bundle.period_to}"
            )

    # -----------------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------------

    def complete_bundle(self, bundle_id: UUID, actor_id: UUID) -> SettlementBundle:
        """
        Mark a bundle paid once its invoice and deposit dates are recorded.

        A draft bundle is issued first, so draft -> issued -> paid happens in
        one call, the same as a single settlement edit that records the
        invoice and deposit dates and marks the bundle paid.  Afterwards the
        bundle and every row under it are frozen.

        Raises:
            BundleNotFoundError: Unknown id.
            InvalidStatusTransitionError: Bundle already paid or canceled.
            CompletionPreconditionError: A completion date is missing.
        """
        bundle = self._lock_bundle(bundle_id)
        validate_transition(bundle.id, next_status_after_edit(bundle.status), BundleStatus.PAID)

        missing = missing_completion_fields({
            "invoice_issued_at": bundle.invoice_issued_at,
            "deposit_received_at": bundle.deposit_received_at,
        })
        if missing:
            logger.warning(
                "bundle_completion_blocked",
                extra={"bundle_id": str(bundle.id), "missing": missing},
            )
            raise CompletionPreconditionError(str(bundle.id), missing)

        if bundle.status == BundleStatus.DRAFT:
            self._transition(bundle, BundleStatus.ISSUED, actor_id)

        totals = self._refresh_totals(bundle)
        self._transition(bundle, BundleStatus.PAID, actor_id)
        bundle.completed_at = self.clock.now()
        self._touch(bundle, actor_id)
        self.session.flush()

        logger.info(
            "bundle_completed",
            extra={
                "bundle_id": str(bundle.id),
                "side": bundle.side.value,
                "total_amount_with_tax": totals.total_amount_with_tax,
            },
        )
        return bundle

    def cancel_bundle(self, bundle_id: UUID, actor_id: UUID) -> SettlementBundle:
        """
        Cancel a draft/issued bundle and release its orders.

        Raises:
            BundleNotFoundError: Unknown id.
            InvalidStatusTransitionError: Bundle already paid or canceled.
        """
        bundle = self._lock_bundle(bundle_id)
        validate_transition(bundle.id, bundle.status, BundleStatus.CANCELED)

        now = self.clock.now()
        for item in bundle.items:
            item.released_at = now
        # Items are released while the bundle is still open
        self.session.flush()

        self._transition(bundle, BundleStatus.CANCELED, actor_id)
        bundle.canceled_at = now
        self._touch(bundle, actor_id)
        self.session.flush()

        logger.info(
            "bundle_canceled",
            extra={
                "bundle_id": str(bundle.id),
                "side": bundle.side.value,
                "released_orders": len(bundle.items),
            },
        )
        return bundle
