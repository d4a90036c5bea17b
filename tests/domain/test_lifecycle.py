"""Tests for the bundle state machine (settlement_kernel.domain.lifecycle)."""

from datetime import date

import pytest

from settlement_kernel.domain.lifecycle import (
    EDITABLE_FIELDS,
    PROTECTED_FIELDS,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    check_update_fields,
    derive_period,
    ensure_mutable,
    is_terminal,
    missing_completion_fields,
    next_status_after_edit,
    validate_transition,
)
from settlement_kernel.enums import BundleStatus
from settlement_kernel.exceptions import (
    BundleFrozenError,
    ImmutableFieldError,
    InvalidStateError,
    InvalidStatusTransitionError,
    ValidationError,
)


class TestTransitions:
    @pytest.mark.parametrize(
        "current, target",
        [
            (BundleStatus.DRAFT, BundleStatus.ISSUED),
            (BundleStatus.DRAFT, BundleStatus.CANCELED),
            (BundleStatus.ISSUED, BundleStatus.ISSUED),
            (BundleStatus.ISSUED, BundleStatus.PAID),
            (BundleStatus.ISSUED, BundleStatus.CANCELED),
        ],
    )
    def test_allowed(self, current, target):
        validate_transition("b-1", current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (BundleStatus.DRAFT, BundleStatus.PAID),
            (BundleStatus.PAID, BundleStatus.ISSUED),
            (BundleStatus.PAID, BundleStatus.CANCELED),
            (BundleStatus.CANCELED, BundleStatus.DRAFT),
            (BundleStatus.CANCELED, BundleStatus.ISSUED),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            validate_transition("b-1", current, target)
        assert exc_info.value.code == "INVALID_STATUS_TRANSITION"

    def test_accepts_string_statuses(self):
        validate_transition("b-1", "draft", "issued")

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {BundleStatus.PAID, BundleStatus.CANCELED}
        assert is_terminal("paid")
        assert not is_terminal(BundleStatus.ISSUED)

    def test_every_status_has_entry(self):
        assert set(VALID_TRANSITIONS) == set(BundleStatus)


class TestEnsureMutable:
    def test_open_statuses_pass(self):
        ensure_mutable("b-1", BundleStatus.DRAFT, "update")
        ensure_mutable("b-1", BundleStatus.ISSUED, "update")

    @pytest.mark.parametrize("status", [BundleStatus.PAID, BundleStatus.CANCELED])
    def test_frozen_statuses_raise(self, status):
        with pytest.raises(BundleFrozenError) as exc_info:
            ensure_mutable("b-1", status, "add adjustment")
        assert isinstance(exc_info.value, InvalidStateError)
        assert exc_info.value.status == status.value


class TestEditRules:
    def test_edit_issues_draft(self):
        assert next_status_after_edit(BundleStatus.DRAFT) is BundleStatus.ISSUED

    def test_edit_keeps_issued(self):
        assert next_status_after_edit(BundleStatus.ISSUED) is BundleStatus.ISSUED

    def test_protected_field_rejected(self):
        with pytest.raises(ImmutableFieldError) as exc_info:
            check_update_fields({"total_amount": 1, "settlement_memo": "x"})
        assert exc_info.value.fields == ["total_amount"]

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            check_update_fields({"colour": "red"})

    def test_editable_fields_pass(self):
        check_update_fields({"invoice_issued_at": date(2025, 2, 1), "tax_free": True})

    def test_field_sets_disjoint(self):
        assert not EDITABLE_FIELDS & PROTECTED_FIELDS


class TestCompletionPrerequisites:
    def test_both_missing(self):
        assert missing_completion_fields({}) == ["invoice_issued_at", "deposit_received_at"]

    def test_deposit_missing(self):
        values = {"invoice_issued_at": date(2025, 2, 1), "deposit_received_at": None}
        assert missing_completion_fields(values) == ["deposit_received_at"]

    def test_complete(self):
        values = {
            "invoice_issued_at": date(2025, 2, 1),
            "deposit_received_at": date(2025, 2, 20),
        }
        assert missing_completion_fields(values) == []


class TestDerivePeriod:
    def test_min_max(self):
        anchors = [date(2025, 1, 20), date(2025, 1, 5), date(2025, 1, 12)]
        assert derive_period(anchors) == (date(2025, 1, 5), date(2025, 1, 20))

    def test_empty(self):
        assert derive_period([]) == (None, None)
