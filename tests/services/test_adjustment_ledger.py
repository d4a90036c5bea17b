"""
Tests for AdjustmentLedger: discounts and surcharges on open bundles.

Every mutation must leave the bundle's cached totals equal to a fresh
recomputation over its items and adjustments.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from settlement_kernel.domain.totals import TotalsPolicy
from settlement_kernel.enums import AdjustmentType
from settlement_kernel.exceptions import (
    AdjustmentNotFoundError,
    BundleFrozenError,
    BundleItemNotFoundError,
    BundleNotFoundError,
    FloatAmountError,
    InvalidAmountError,
    InvalidStateError,
    NegativeAmountError,
    ValidationError,
)
from settlement_kernel.models.bundle import BundleAdjustment, ItemAdjustment
from settlement_kernel.selectors.bundle_selector import bundle_totals
from settlement_kernel.services.adjustment_ledger import AdjustmentLedger
from settlement_kernel.services.bundle_builder import BundleBuilder
from settlement_kernel.services.lifecycle_controller import LifecycleController


@pytest.fixture
def ledger(session, deterministic_clock):
    return AdjustmentLedger(session, clock=deterministic_clock)


@pytest.fixture
def bundle(session, deterministic_clock, three_orders, shipper_snapshot, test_actor_id):
    return BundleBuilder(session, clock=deterministic_clock).create_bundle(
        "sales", three_orders, shipper_snapshot, test_actor_id
    )


def assert_cache_consistent(bundle):
    fresh = bundle_totals(bundle, TotalsPolicy())
    for name, value in fresh.cached_values().items():
        assert getattr(bundle, name) == value, name


class TestAddBundleAdjustment:
    def test_surcharge(self, ledger, bundle, test_actor_id):
        adjustment = ledger.add_bundle_adjustment(
            bundle.id, "surcharge", "Waiting time", Decimal("10000"), Decimal("1000"), test_actor_id
        )

        assert adjustment.type == AdjustmentType.SURCHARGE
        assert adjustment.bundle_id == bundle.id
        assert bundle.total_amount == Decimal("460000")
        assert bundle.total_tax_amount == Decimal("46000")
        assert bundle.total_amount_with_tax == Decimal("506000")
        assert bundle.bundle_extra_amount == Decimal("10000")
        assert bundle.bundle_extra_amount_tax == Decimal("1000")
        assert_cache_consistent(bundle)

    def test_discount(self, ledger, bundle, test_actor_id):
        ledger.add_bundle_adjustment(
            bundle.id, AdjustmentType.DISCOUNT, None, 20000, 2000, test_actor_id
        )

        assert bundle.total_amount == Decimal("430000")
        assert bundle.total_tax_amount == Decimal("43000")
        assert bundle.bundle_extra_amount == Decimal("-20000")

    def test_string_amounts(self, ledger, bundle, test_actor_id):
        adjustment = ledger.add_bundle_adjustment(
            bundle.id, "surcharge", None, "1500", "150", test_actor_id
        )
        assert adjustment.amount == Decimal("1500")

    def test_negative_amount_rejected(self, ledger, bundle, session, test_actor_id):
        with pytest.raises(NegativeAmountError):
            ledger.add_bundle_adjustment(
                bundle.id, "discount", None, Decimal("-1"), Decimal("0"), test_actor_id
            )
        count = session.execute(select(func.count()).select_from(BundleAdjustment)).scalar_one()
        assert count == 0
        assert bundle.total_amount == Decimal("450000")

    def test_float_rejected(self, ledger, bundle, test_actor_id):
        with pytest.raises(FloatAmountError):
            ledger.add_bundle_adjustment(bundle.id, "surcharge", None, 100.5, 0, test_actor_id)

    def test_unknown_type_rejected(self, ledger, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            ledger.add_bundle_adjustment(bundle.id, "rebate", None, 100, 0, test_actor_id)

    @pytest.mark.parametrize(
        "amount, tax_amount",
        [("NaN", "0"), ("Infinity", "0"), ("1E+20", "0"), ("100", "-Infinity")],
    )
    def test_amount_outside_money_column_rejected(
        self, ledger, bundle, session, test_actor_id, amount, tax_amount
    ):
        with pytest.raises(InvalidAmountError):
            ledger.add_bundle_adjustment(
                bundle.id, "surcharge", None, amount, tax_amount, test_actor_id
            )
        count = session.execute(select(func.count()).select_from(BundleAdjustment)).scalar_one()
        assert count == 0
        assert bundle.total_amount_with_tax == Decimal("495000")

    def test_sum_overflowing_column_rejected(self, ledger, bundle, test_actor_id):
        ledger.add_bundle_adjustment(
            bundle.id, "surcharge", None, "999999000000", "0", test_actor_id
        )
        with pytest.raises(InvalidAmountError) as exc_info:
            ledger.add_bundle_adjustment(
                bundle.id, "surcharge", None, "999999000000", "0", test_actor_id
            )
        assert exc_info.value.code == "INVALID_AMOUNT"
        assert bundle.total_amount == Decimal("999999450000")

    def test_long_description_rejected(self, ledger, bundle, test_actor_id):
        with pytest.raises(ValidationError):
            ledger.add_bundle_adjustment(
                bundle.id, "surcharge", "x" * 201, 100, 0, test_actor_id
            )

    def test_unknown_bundle(self, ledger, test_actor_id):
        with pytest.raises(BundleNotFoundError):
            ledger.add_bundle_adjustment(uuid4(), "surcharge", None, 100, 0, test_actor_id)

    def test_logged(self, ledger, bundle, test_actor_id, captured_logs):
        adjustment = ledger.add_bundle_adjustment(
            bundle.id, "surcharge", None, 10000, 1000, test_actor_id
        )

        added = [r for r in captured_logs() if r["message"] == "adjustment_added"]
        assert len(added) == 1
        assert added[0]["adjustment_id"] == str(adjustment.id)
        assert added[0]["scope"] == "bundle"
        assert added[0]["adjustment_type"] == "surcharge"


class TestAddItemAdjustment:
    def test_item_discount_after_surcharge(self, ledger, bundle, test_actor_id):
        ledger.add_bundle_adjustment(bundle.id, "surcharge", None, 10000, 1000, test_actor_id)
        item = bundle.items[0]

        adjustment = ledger.add_item_adjustment(
            item.id, "discount", "Damaged pallet", Decimal("5000"), Decimal("500"), test_actor_id
        )

        assert adjustment.bundle_item_id == item.id
        assert bundle.total_amount == Decimal("455000")
        assert bundle.total_tax_amount == Decimal("45500")
        assert bundle.item_extra_amount == Decimal("-5000")
        assert bundle.item_extra_amount_tax == Decimal("-500")
        assert_cache_consistent(bundle)

    def test_unknown_item(self, ledger, test_actor_id):
        with pytest.raises(BundleItemNotFoundError):
            ledger.add_item_adjustment(uuid4(), "discount", None, 100, 0, test_actor_id)


class TestUpdateAdjustment:
    def test_amount_change_recomputes(self, ledger, bundle, test_actor_id):
        adjustment = ledger.add_bundle_adjustment(
            bundle.id, "surcharge", None, 10000, 1000, test_actor_id
        )

        ledger.update_adjustment(adjustment.id, test_actor_id, amount=20000, tax_amount=2000)

        assert bundle.total_amount == Decimal("470000")
        assert bundle.total_tax_amount == Decimal("47000")
        assert_cache_consistent(bundle)

    def test_type_flip(self, ledger, bundle, test_actor_id):
        adjustment = ledger.add_bundle_adjustment(
            bundle.id, "surcharge", None, 10000, 1000, test_actor_id
        )

        updated = ledger.update_adjustment(adjustment.id, test_actor_id, type="discount")

        assert updated.type == AdjustmentType.DISCOUNT
        assert updated.amount == Decimal("10000")
        assert bundle.total_amount == Decimal("440000")

    def test_item_adjustment_update(self, ledger, bundle, test_actor_id):
        adjustment = ledger.add_item_adjustment(
            bundle.items[0].id, "discount", None, 5000, 500, test_actor_id
        )

        ledger.update_adjustment(adjustment.id, test_actor_id, amount=1000, description="Fixed")

        assert bundle.total_amount == Decimal("449000")
        assert bundle.total_tax_amount == Decimal("44500")
        assert_cache_consistent(bundle)

    def test_negative_update_rejected(self, ledger, bundle, test_actor_id):
        adjustment = ledger.add_bundle_adjustment(
            bundle.id, "surcharge", None, 10000, 1000, test_actor_id
        )
        with pytest.raises(NegativeAmountError):
            ledger.update_adjustment(adjustment.id, test_actor_id, amount=-5)

    def test_unknown_adjustment(self, ledger, test_actor_id):
        with pytest.raises(AdjustmentNotFoundError):
            ledger.update_adjustment(uuid4(), test_actor_id, amount=1)


class TestRemoveAdjustment:
    def test_remove_bundle_adjustment(self, ledger, bundle, session, test_actor_id):
        adjustment = ledger.add_bundle_adjustment(
            bundle.id, "surcharge", None, 10000, 1000, test_actor_id
        )

        bundle_id = ledger.remove_adjustment(adjustment.id, test_actor_id)

        assert bundle_id == bundle.id
        assert session.get(BundleAdjustment, adjustment.id) is None
        assert bundle.total_amount == Decimal("450000")
        assert bundle.total_tax_amount == Decimal("45000")

    def test_remove_item_adjustment(self, ledger, bundle, session, test_actor_id):
        adjustment = ledger.add_item_adjustment(
            bundle.items[0].id, "discount", None, 5000, 500, test_actor_id
        )

        ledger.remove_adjustment(adjustment.id, test_actor_id)

        assert session.get(ItemAdjustment, adjustment.id) is None
        assert bundle.total_amount == Decimal("450000")
        assert bundle.item_extra_amount == Decimal("0")
        assert_cache_consistent(bundle)

    def test_unknown_adjustment(self, ledger, test_actor_id):
        with pytest.raises(AdjustmentNotFoundError):
            ledger.remove_adjustment(uuid4(), test_actor_id)


class TestFrozenBundle:
    @pytest.fixture
    def canceled(self, session, bundle, test_actor_id):
        return LifecycleController(session).cancel_bundle(bundle.id, test_actor_id)

    def test_add_rejected(self, ledger, canceled, session, test_actor_id):
        with pytest.raises(BundleFrozenError) as exc_info:
            ledger.add_bundle_adjustment(canceled.id, "surcharge", None, 100, 10, test_actor_id)

        assert isinstance(exc_info.value, InvalidStateError)
        count = session.execute(select(func.count()).select_from(BundleAdjustment)).scalar_one()
        assert count == 0

    def test_add_item_rejected(self, ledger, canceled, test_actor_id):
        with pytest.raises(BundleFrozenError):
            ledger.add_item_adjustment(
                canceled.items[0].id, "discount", None, 100, 10, test_actor_id
            )
