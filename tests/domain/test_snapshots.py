"""Tests for counterparty and manager snapshots."""

import pytest

from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.exceptions import MissingSnapshotFieldError, ValidationError


class TestCounterpartySnapshot:
    def test_from_dict(self):
        snapshot = CounterpartySnapshot.from_dict(
            {"name": "Hanbit Logistics", "tax_id": "120-81-11111", "bank_code": "004"}
        )
        assert snapshot.name == "Hanbit Logistics"
        assert snapshot.bank_code == "004"
        assert snapshot.bank_account is None

    def test_round_trips_through_dict(self):
        snapshot = CounterpartySnapshot(name="Hanbit", tax_id="120-81-11111")
        assert CounterpartySnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_instance_passthrough(self):
        snapshot = CounterpartySnapshot(name="Hanbit", tax_id="120-81-11111")
        assert CounterpartySnapshot.from_dict(snapshot) is snapshot

    def test_missing_tax_id(self):
        with pytest.raises(MissingSnapshotFieldError) as exc_info:
            CounterpartySnapshot.from_dict({"name": "Hanbit"})
        assert exc_info.value.fields == ["tax_id"]

    def test_blank_name(self):
        with pytest.raises(MissingSnapshotFieldError) as exc_info:
            CounterpartySnapshot.from_dict({"name": "  ", "tax_id": "120-81-11111"})
        assert exc_info.value.fields == ["name"]

    def test_unknown_field(self):
        with pytest.raises(ValidationError):
            CounterpartySnapshot.from_dict(
                {"name": "Hanbit", "tax_id": "120-81-11111", "fax": "02-000"}
            )

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError):
            CounterpartySnapshot.from_dict("Hanbit")

    def test_frozen(self):
        snapshot = CounterpartySnapshot(name="Hanbit", tax_id="120-81-11111")
        with pytest.raises(AttributeError):
            snapshot.name = "Other"


class TestManagerSnapshot:
    def test_from_dict(self):
        manager = ManagerSnapshot.from_dict({"name": "Lee Jiwon", "phone": "010-1234-5678"})
        assert manager.phone == "010-1234-5678"
        assert manager.email is None

    def test_name_required(self):
        with pytest.raises(MissingSnapshotFieldError):
            ManagerSnapshot.from_dict({"email": "x@example.com"})
