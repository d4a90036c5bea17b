"""
DTOs -- immutable data handed across the settlement kernel boundary.

Responsibility:
    Selectors and the SettlementEngine facade return these frozen dataclasses,
    never ORM instances.  Money stays Decimal in Python; to_dict() renders it
    as fixed-point strings for JSON transport.

Architecture position:
    Kernel > Domain -- zero I/O.  Conversion from ORM rows lives in the
    selectors (``_to_dto``), not here.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from settlement_kernel.db.types import MONEY_DECIMAL_PLACES, round_money
from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.domain.totals import BundleTotals
from settlement_kernel.enums import (
    AdjustmentType,
    BundleSide,
    BundleStatus,
    PaymentMethod,
    PeriodType,
    coerce_enum,
)
from settlement_kernel.exceptions import ValidationError


def _render(value: Any) -> Any:
    """JSON-safe rendering; Decimals become fixed-point strings."""
    if isinstance(value, Decimal):
        return str(round_money(value, MONEY_DECIMAL_PLACES))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_render(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _as_dict(obj: Any) -> dict[str, Any]:
    return {f.name: _render(getattr(obj, f.name)) for f in fields(obj)}


@dataclass(frozen=True)
class WaitingOrder:
    """A closed freight order that no active bundle of ``side`` owns yet."""

    order_id: UUID
    order_no: str
    side: BundleSide
    counterparty_id: UUID
    base_amount: Decimal
    period_anchor: date
    pickup_date: date
    delivery_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return _as_dict(self)


@dataclass(frozen=True)
class WaitingSummary:
    """Waiting pool grouped by counterparty."""

    counterparty_id: UUID
    counterparty_name: str
    order_count: int
    base_subtotal: Decimal
    anchor_from: date
    anchor_to: date

    def to_dict(self) -> dict[str, Any]:
        return _as_dict(self)


@dataclass(frozen=True)
class PaymentInfo:
    """
    Payment terms supplied at bundle creation.

    Unset bank fields are filled from the counterparty snapshot by the
    Bundle Builder.
    """

    payment_method: PaymentMethod | None = None
    bank_code: str | None = None
    bank_account: str | None = None
    bank_account_holder: str | None = None
    settlement_memo: str | None = None
    invoice_no: str | None = None
    settled_at: date | None = None
    deposit_requested_at: date | None = None

    def __post_init__(self) -> None:
        if self.payment_method is not None:
            object.__setattr__(
                self,
                "payment_method",
                coerce_enum(PaymentMethod, self.payment_method, "payment_method"),
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | PaymentInfo | None) -> PaymentInfo:
        if data is None:
            return cls()
        if isinstance(data, cls):
            return data
        names = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - names)
        if unknown:
            raise ValidationError(f"Unknown payment field(s): {', '.join(unknown)}")
        return cls(**dict(data))

    def provided(self) -> dict[str, Any]:
        """Fields the caller actually set."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class AdjustmentInfo:
    """Bundle-level (bundle_item_id is None) or item-level adjustment."""

    id: UUID
    bundle_id: UUID
    bundle_item_id: UUID | None
    type: AdjustmentType
    description: str | None
    amount: Decimal
    tax_amount: Decimal
    created_by_id: UUID
    created_at: datetime | None = None

    @property
    def scope(self) -> str:
        return "bundle" if self.bundle_item_id is None else "item"

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == AdjustmentType.SURCHARGE else -self.amount

    @property
    def signed_tax_amount(self) -> Decimal:
        return (
            self.tax_amount if self.type == AdjustmentType.SURCHARGE else -self.tax_amount
        )

    def to_dict(self) -> dict[str, Any]:
        data = _as_dict(self)
        data["scope"] = self.scope
        return data


@dataclass(frozen=True)
class BundleItemInfo:
    """One member order of a bundle, with its item-level adjustments."""

    id: UUID
    order_id: UUID
    order_no: str | None
    base_amount: Decimal
    period_anchor: date
    adjustments: tuple[AdjustmentInfo, ...] = ()
    released_at: datetime | None = None

    @property
    def net_amount(self) -> Decimal:
        """Base amount after this item's own adjustments."""
        return self.base_amount + sum(
            (a.signed_amount for a in self.adjustments), Decimal("0")
        )

    def to_dict(self) -> dict[str, Any]:
        data = _as_dict(self)
        data["net_amount"] = _render(self.net_amount)
        return data


@dataclass(frozen=True)
class BundleInfo:
    """
    A settlement bundle with live totals, items and adjustments.

    ``totals`` is recomputed from the rows at read time; it equals the cached
    columns whenever the kernel invariants hold.
    """

    id: UUID
    side: BundleSide
    status: BundleStatus
    counterparty_id: UUID | None
    counterparty: CounterpartySnapshot
    manager: ManagerSnapshot | None
    period_type: PeriodType
    period_from: date | None
    period_to: date | None
    order_count: int
    tax_free: bool
    payment_method: PaymentMethod
    bank_code: str | None
    bank_account: str | None
    bank_account_holder: str | None
    settlement_memo: str | None
    invoice_no: str | None
    invoice_issued_at: date | None
    deposit_requested_at: date | None
    deposit_received_at: date | None
    settled_at: date | None
    completed_at: datetime | None
    canceled_at: datetime | None
    totals: BundleTotals
    items: tuple[BundleItemInfo, ...] = ()
    adjustments: tuple[AdjustmentInfo, ...] = ()
    version: int = 1
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def total_amount(self) -> Decimal:
        return self.totals.total_amount

    @property
    def total_tax_amount(self) -> Decimal:
        return self.totals.total_tax_amount

    @property
    def total_amount_with_tax(self) -> Decimal:
        return self.totals.total_amount_with_tax

    @property
    def item_adjustments(self) -> tuple[AdjustmentInfo, ...]:
        return tuple(adj for item in self.items for adj in item.adjustments)

    def to_dict(self) -> dict[str, Any]:
        data = _as_dict(self)
        data["totals"] = {k: _render(v) for k, v in vars(self.totals).items()}
        return data


@dataclass(frozen=True)
class BundleSummary:
    """Bundle header row for list views; totals are the cached columns."""

    id: UUID
    side: BundleSide
    status: BundleStatus
    counterparty_id: UUID | None
    counterparty_name: str
    period_type: PeriodType
    period_from: date | None
    period_to: date | None
    order_count: int
    tax_free: bool
    total_amount: Decimal
    total_tax_amount: Decimal
    total_amount_with_tax: Decimal
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _as_dict(self)


@dataclass(frozen=True)
class BundlePage:
    """One page of bundle summaries."""

    items: tuple[BundleSummary, ...]
    total: int
    page: int
    page_size: int
    filters: dict[str, Any] = field(default_factory=dict)

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total / self.page_size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }
