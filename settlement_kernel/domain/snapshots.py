"""
Snapshots -- frozen copies of directory data carried by a bundle.

Responsibility:
    A bundle records who it was issued to at the moment it was issued.  The
    Counterparty Directory can later rename a shipper or change a carrier's
    bank account; the bundle keeps the values it was built with until a
    caller explicitly re-snapshots it.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.  Stored as JSON on
    SettlementBundle via to_dict()/from_dict().
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

from settlement_kernel.exceptions import MissingSnapshotFieldError, ValidationError


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _known_fields(cls, data: Mapping[str, Any], snapshot_type: str) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ValidationError(
            f"{snapshot_type} snapshot has unknown field(s): {', '.join(unknown)}"
        )
    return {k: v for k, v in data.items() if k in names}


@dataclass(frozen=True)
class CounterpartySnapshot:
    """
    Shipper / carrier / driver details frozen onto a bundle.

    Guarantees:
        - name and tax_id are non-blank (validated in __post_init__).
    """

    name: str
    tax_id: str
    ceo_name: str | None = None
    bank_code: str | None = None
    bank_account: str | None = None
    bank_account_holder: str | None = None

    REQUIRED = ("name", "tax_id")

    def __post_init__(self) -> None:
        missing = [name for name in self.REQUIRED if _blank(getattr(self, name))]
        if missing:
            raise MissingSnapshotFieldError("counterparty", missing)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | CounterpartySnapshot) -> CounterpartySnapshot:
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("counterparty snapshot must be a mapping")
        values = _known_fields(cls, data, "counterparty")
        missing = [name for name in cls.REQUIRED if _blank(values.get(name))]
        if missing:
            raise MissingSnapshotFieldError("counterparty", missing)
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ManagerSnapshot:
    """Contact person frozen onto a bundle."""

    name: str
    email: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        if _blank(self.name):
            raise MissingSnapshotFieldError("manager", ["name"])

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | ManagerSnapshot) -> ManagerSnapshot:
        if isinstance(data, cls):
            return data
        if not isinstance(data, Mapping):
            raise ValidationError("manager snapshot must be a mapping")
        values = _known_fields(cls, data, "manager")
        if _blank(values.get("name")):
            raise MissingSnapshotFieldError("manager", ["name"])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
