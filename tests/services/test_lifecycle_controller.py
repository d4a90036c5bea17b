"""
Tests for LifecycleController: header edits and the
draft -> issued -> paid / canceled state machine.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from settlement_kernel.enums import BundleStatus, PaymentMethod, PeriodType
from settlement_kernel.exceptions import (
    BundleFrozenError,
    CompletionPreconditionError,
    ImmutableFieldError,
    InvalidStateError,
    InvalidStatusTransitionError,
    MissingSnapshotFieldError,
    ValidationError,
)
from settlement_kernel.models.bundle import BundleItem
from settlement_kernel.selectors.waiting_pool_selector import WaitingPoolSelector
from settlement_kernel.services.bundle_builder import BundleBuilder
from settlement_kernel.services.lifecycle_controller import LifecycleController

COMPLETION_DATES = {
    "invoice_issued_at": date(2025, 2, 1),
    "deposit_received_at": date(2025, 2, 20),
}


@pytest.fixture
def controller(session, deterministic_clock):
    return LifecycleController(session, clock=deterministic_clock)


@pytest.fixture
def bundle(session, deterministic_clock, three_orders, shipper_snapshot, shipper_id, test_actor_id):
    return BundleBuilder(session, clock=deterministic_clock).create_bundle(
        "sales", three_orders, shipper_snapshot, test_actor_id, counterparty_id=shipper_id
    )


class TestUpdateBundle:
    def test_edit_issues_draft(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, {"settlement_memo": "January"}, test_actor_id)

        assert bundle.status == BundleStatus.ISSUED
        assert bundle.settlement_memo == "January"
        assert bundle.updated_by_id == test_actor_id

    def test_empty_edit_still_issues(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, {}, test_actor_id)
        assert bundle.status == BundleStatus.ISSUED

    def test_issued_stays_issued(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, {"invoice_no": "INV-1"}, test_actor_id)
        controller.update_bundle(bundle.id, {"invoice_no": "INV-2"}, test_actor_id)

        assert bundle.status == BundleStatus.ISSUED
        assert bundle.invoice_no == "INV-2"

    def test_tax_free_recomputes(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, {"tax_free": True}, test_actor_id)

        assert bundle.total_tax_amount == Decimal("0")
        assert bundle.total_amount_with_tax == Decimal("450000")

    def test_tax_free_must_be_bool(self, controller, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            controller.update_bundle(bundle.id, {"tax_free": 1}, test_actor_id)

    def test_dates_accept_iso_strings(self, controller, bundle, test_actor_id):
        controller.update_bundle(
            bundle.id,
            {"invoice_issued_at": "2025-02-01", "deposit_requested_at": date(2025, 2, 5)},
            test_actor_id,
        )

        assert bundle.invoice_issued_at == date(2025, 2, 1)
        assert bundle.deposit_requested_at == date(2025, 2, 5)

    def test_bad_date_rejected(self, controller, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            controller.update_bundle(bundle.id, {"settled_at": "01/02/2025"}, test_actor_id)

    def test_payment_method(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, {"payment_method": "card"}, test_actor_id)
        assert bundle.payment_method == PaymentMethod.CARD

    def test_unknown_payment_method(self, controller, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            controller.update_bundle(bundle.id, {"payment_method": "barter"}, test_actor_id)

    def test_protected_field_rejected(self, controller, bundle, test_actor_id):
        with pytest.raises(ImmutableFieldError):
            controller.update_bundle(bundle.id, {"total_amount": 1}, test_actor_id)
        assert bundle.status == BundleStatus.DRAFT

    def test_status_not_writable(self, controller, bundle, test_actor_id):
        with pytest.raises(ImmutableFieldError):
            controller.update_bundle(bundle.id, {"status": "paid"}, test_actor_id)

    def test_text_length_checked(self, controller, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            controller.update_bundle(bundle.id, {"bank_code": "x" * 11}, test_actor_id)


class TestSnapshots:
    def test_replace_counterparty_snapshot(self, controller, bundle, test_actor_id):
        controller.update_bundle(
            bundle.id,
            {"counterparty_snapshot": {"name": "Hanbit Logistics Co.", "tax_id": "120-81-11111"}},
            test_actor_id,
        )

        assert bundle.counterparty_name == "Hanbit Logistics Co."
        assert bundle.counterparty_snapshot["name"] == "Hanbit Logistics Co."

    def test_invalid_snapshot_rejected(self, controller, bundle, test_actor_id):
        with pytest.raises(MissingSnapshotFieldError):
            controller.update_bundle(
                bundle.id, {"counterparty_snapshot": {"name": "No Tax Id"}}, test_actor_id
            )

    def test_refresh_from_directory(self, controller, bundle, test_actor_id):
        bundle.counterparty_snapshot = {"name": "Stale", "tax_id": "000"}

        controller.update_bundle(bundle.id, {}, test_actor_id, refresh_counterparty=True)

        assert bundle.counterparty_snapshot["name"] == "Hanbit Logistics"
        assert bundle.counterparty_tax_id == "120-81-11111"

    def test_refresh_and_snapshot_conflict(self, controller, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            controller.update_bundle(
                bundle.id,
                {"counterparty_snapshot": {"name": "X", "tax_id": "1"}},
                test_actor_id,
                refresh_counterparty=True,
            )

    def test_manager_snapshot_set_and_cleared(self, controller, bundle, test_actor_id):
        controller.update_bundle(
            bundle.id, {"manager_snapshot": {"name": "Park Sora"}}, test_actor_id
        )
        assert bundle.manager_snapshot["name"] == "Park Sora"

        controller.update_bundle(bundle.id, {"manager_snapshot": None}, test_actor_id)
        assert bundle.manager_snapshot is None


class TestPeriod:
    def test_override(self, controller, bundle, test_actor_id):
        controller.update_bundle(
            bundle.id,
            {"period_from": date(2025, 1, 1), "period_to": date(2025, 1, 31)},
            test_actor_id,
        )

        assert bundle.period_overridden is True
        assert bundle.period_from == date(2025, 1, 1)
        assert bundle.period_to == date(2025, 1, 31)

    def test_clearing_override_rederives(self, controller, bundle, test_actor_id):
        controller.update_bundle(
            bundle.id, {"period_from": date(2025, 1, 1), "period_to": date(2025, 1, 31)},
            test_actor_id,
        )
        controller.update_bundle(
            bundle.id, {"period_from": None, "period_to": None}, test_actor_id
        )

        assert bundle.period_overridden is False
        assert bundle.period_from == date(2025, 1, 5)
        assert bundle.period_to == date(2025, 1, 20)

    def test_clearing_one_end_rederives_it(self, controller, bundle, test_actor_id):
        controller.update_bundle(
            bundle.id, {"period_from": date(2025, 1, 1), "period_to": date(2025, 1, 31)},
            test_actor_id,
        )
        controller.update_bundle(bundle.id, {"period_from": None}, test_actor_id)

        assert bundle.period_overridden is True
        assert bundle.period_from == date(2025, 1, 5)
        assert bundle.period_to == date(2025, 1, 31)

    def test_one_end_override_keeps_derived_other_end(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, {"period_to": date(2025, 1, 31)}, test_actor_id)

        assert bundle.period_overridden is True
        assert bundle.period_from == date(2025, 1, 5)
        assert bundle.period_to == date(2025, 1, 31)

    def test_clearing_unset_override_is_noop(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, {"period_from": None}, test_actor_id)

        assert bundle.period_overridden is False
        assert bundle.period_from == date(2025, 1, 5)
        assert bundle.period_to == date(2025, 1, 20)

    def test_inverted_period_rejected(self, controller, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            controller.update_bundle(
                bundle.id,
                {"period_from": date(2025, 3, 1), "period_to": date(2025, 1, 1)},
                test_actor_id,
            )

    def test_period_type_change_reanchors(
        self, session, deterministic_clock, make_order, shipper_id, shipper_snapshot, test_actor_id
    ):
        order = make_order(
            shipper_id, pickup_date=date(2025, 1, 30), delivery_date=date(2025, 2, 3)
        )
        bundle = BundleBuilder(session, clock=deterministic_clock).create_bundle(
            "sales", [order], shipper_snapshot, test_actor_id
        )
        assert bundle.period_to == date(2025, 1, 30)

        LifecycleController(session).update_bundle(
            bundle.id, {"period_type": "arrival"}, test_actor_id
        )

        assert bundle.period_type == PeriodType.ARRIVAL
        assert bundle.items[0].period_anchor == date(2025, 2, 3)
        assert bundle.period_from == date(2025, 2, 3)
        assert bundle.period_to == date(2025, 2, 3)


class TestCompleteBundle:
    def test_requires_both_dates(self, controller, bundle, test_actor_id):
        controller.update_bundle(
            bundle.id, {"invoice_issued_at": date(2025, 2, 1)}, test_actor_id
        )

        with pytest.raises(CompletionPreconditionError) as exc_info:
            controller.complete_bundle(bundle.id, test_actor_id)

        assert isinstance(exc_info.value, InvalidStateError)
        assert exc_info.value.missing == ["deposit_received_at"]
        assert bundle.status == BundleStatus.ISSUED

    def test_completes_when_dates_set(
        self, controller, bundle, deterministic_clock, test_actor_id, captured_logs
    ):
        controller.update_bundle(bundle.id, COMPLETION_DATES, test_actor_id)

        controller.complete_bundle(bundle.id, test_actor_id)

        assert bundle.status == BundleStatus.PAID
        assert bundle.completed_at == deterministic_clock.now()
        messages = [r["message"] for r in captured_logs()]
        assert "bundle_completed" in messages

    def test_draft_passes_through_issued(self, controller, session, bundle, test_actor_id):
        bundle.invoice_issued_at = COMPLETION_DATES["invoice_issued_at"]
        bundle.deposit_received_at = COMPLETION_DATES["deposit_received_at"]
        session.flush()

        controller.complete_bundle(bundle.id, test_actor_id)

        assert bundle.status == BundleStatus.PAID

    def test_paid_cannot_complete_again(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, COMPLETION_DATES, test_actor_id)
        controller.complete_bundle(bundle.id, test_actor_id)

        with pytest.raises(InvalidStatusTransitionError):
            controller.complete_bundle(bundle.id, test_actor_id)

    def test_paid_rejects_edits(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, COMPLETION_DATES, test_actor_id)
        controller.complete_bundle(bundle.id, test_actor_id)

        with pytest.raises(BundleFrozenError):
            controller.update_bundle(bundle.id, {"settlement_memo": "late"}, test_actor_id)


class TestCancelBundle:
    def test_cancel_releases_orders(
        self, controller, session, bundle, three_orders, deterministic_clock, test_actor_id
    ):
        controller.cancel_bundle(bundle.id, test_actor_id)

        assert bundle.status == BundleStatus.CANCELED
        assert bundle.canceled_at == deterministic_clock.now()
        items = session.execute(
            select(BundleItem).where(BundleItem.bundle_id == bundle.id)
        ).scalars().all()
        assert len(items) == 3
        assert all(i.released_at is not None for i in items)

        waiting = WaitingPoolSelector(session).list_waiting("sales")
        assert {w.order_id for w in waiting} == set(three_orders)

    def test_canceled_orders_can_be_rebundled(
        self, controller, session, bundle, three_orders, shipper_snapshot, test_actor_id
    ):
        controller.cancel_bundle(bundle.id, test_actor_id)

        again = BundleBuilder(session).create_bundle(
            "sales", three_orders, shipper_snapshot, test_actor_id
        )
        assert again.order_count == 3

    def test_cancel_twice_rejected(self, controller, bundle, test_actor_id):
        controller.cancel_bundle(bundle.id, test_actor_id)
        with pytest.raises(InvalidStatusTransitionError):
            controller.cancel_bundle(bundle.id, test_actor_id)

    def test_paid_cannot_be_canceled(self, controller, bundle, test_actor_id):
        controller.update_bundle(bundle.id, COMPLETION_DATES, test_actor_id)
        controller.complete_bundle(bundle.id, test_actor_id)

        with pytest.raises(InvalidStatusTransitionError):
            controller.cancel_bundle(bundle.id, test_actor_id)

    def test_status_change_logged(self, controller, bundle, test_actor_id, captured_logs):
        controller.cancel_bundle(bundle.id, test_actor_id)

        changes = [r for r in captured_logs() if r["message"] == "bundle_status_changed"]
        assert changes[-1]["from_status"] == "draft"
        assert changes[-1]["to_status"] == "canceled"
