"""
Totals Calculator -- pure derivation of every cached bundle total.

Responsibility:
    Given a bundle's items and adjustments, compute the seven cached money
    fields stored on SettlementBundle.  Services call compute_totals() after
    every mutation and write the result back; selectors call it on read to
    report the live figures.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Formulae:
    base_subtotal      = sum(item.base_amount)
    item_extra         = sum(signed item adjustment amount)
    item_extra_tax     = sum(signed item adjustment tax)
    bundle_extra       = sum(signed bundle adjustment amount)
    bundle_extra_tax   = sum(signed bundle adjustment tax)
    base_tax           = 0 if tax_free else round(base_subtotal * tax_rate)
    total_amount       = base_subtotal + item_extra + bundle_extra
    total_tax_amount   = base_tax + item_extra_tax + bundle_extra_tax
    total_with_tax     = total_amount + total_tax_amount

    Surcharges count positive, discounts negative.  base_tax is rounded
    once, half-up by default, to the currency's minor unit.  Adjustment taxes
    are caller-supplied and never re-rounded.

Failure modes:
    - FloatAmountError if any amount or the tax rate is a binary float.
    - NegativeAmountError if an adjustment magnitude is negative.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from settlement_kernel.db.types import ZERO, round_money, to_money
from settlement_kernel.enums import AdjustmentType, coerce_enum
from settlement_kernel.exceptions import NegativeAmountError

DEFAULT_TAX_RATE = Decimal("0.10")


@dataclass(frozen=True)
class ItemLine:
    """Base amount of one bundle item."""

    base_amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_amount", to_money(self.base_amount, "base_amount"))


@dataclass(frozen=True)
class AdjustmentLine:
    """
    One adjustment as magnitudes plus direction.

    Guarantees:
        - amount and tax_amount are non-negative Decimals.
        - type is an AdjustmentType member.
    """

    type: AdjustmentType
    amount: Decimal
    tax_amount: Decimal = ZERO

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", coerce_enum(AdjustmentType, self.type, "type"))
        for name in ("amount", "tax_amount"):
            value = to_money(getattr(self, name), name)
            if value < ZERO:
                raise NegativeAmountError(name, str(value))
            object.__setattr__(self, name, value)

    @property
    def sign(self) -> int:
        return 1 if self.type == AdjustmentType.SURCHARGE else -1

    @property
    def signed_amount(self) -> Decimal:
        return self.amount * self.sign

    @property
    def signed_tax_amount(self) -> Decimal:
        return self.tax_amount * self.sign

    @classmethod
    def from_record(cls, record: Any) -> AdjustmentLine:
        """Build from anything exposing type/amount/tax_amount (ORM row or DTO)."""
        return cls(type=record.type, amount=record.amount, tax_amount=record.tax_amount)


@dataclass(frozen=True)
class BundleTotals:
    """Every figure compute_totals() derives, ready to cache on the bundle."""

    base_subtotal: Decimal
    base_tax: Decimal
    total_amount: Decimal
    total_tax_amount: Decimal
    total_amount_with_tax: Decimal
    item_extra_amount: Decimal
    item_extra_amount_tax: Decimal
    bundle_extra_amount: Decimal
    bundle_extra_amount_tax: Decimal

    # Fields persisted on SettlementBundle
    CACHED_FIELDS = (
        "total_amount",
        "total_tax_amount",
        "total_amount_with_tax",
        "item_extra_amount",
        "item_extra_amount_tax",
        "bundle_extra_amount",
        "bundle_extra_amount_tax",
    )

    def cached_values(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in self.CACHED_FIELDS}

    def to_dict(self) -> dict[str, str]:
        return {
            name: str(getattr(self, name))
            for name in ("base_subtotal", "base_tax", *self.CACHED_FIELDS)
        }


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def compute_totals(
    tax_free: bool,
    items: Iterable[ItemLine | Decimal],
    bundle_adjustments: Iterable[AdjustmentLine],
    item_adjustments: Iterable[AdjustmentLine],
    tax_rate: Decimal = DEFAULT_TAX_RATE,
    decimal_places: int = 0,
    rounding: str = ROUND_HALF_UP,
) -> BundleTotals:
    """
    Derive all cached totals for a bundle.

    Calling it twice on the same inputs gives identical output; no rounded
    value is ever fed back in.

    Args:
        tax_free: Forces base tax to zero.  Adjustment taxes still apply.
        items: ItemLine per member order (bare Decimals are accepted).
        bundle_adjustments: Bundle-level adjustments.
        item_adjustments: Item-level adjustments across all items.
        tax_rate: Policy rate applied to the base subtotal.
        decimal_places: Minor-unit exponent of the settlement currency.
        rounding: decimal rounding mode for base tax.
    """
    tax_rate = to_money(tax_rate, "tax_rate", bounded=False)
    item_lines = [i if isinstance(i, ItemLine) else ItemLine(i) for i in items]
    bundle_lines = list(bundle_adjustments)
    item_adj_lines = list(item_adjustments)

    base_subtotal = _sum(i.base_amount for i in item_lines)
    item_extra = _sum(a.signed_amount for a in item_adj_lines)
    item_extra_tax = _sum(a.signed_tax_amount for a in item_adj_lines)
    bundle_extra = _sum(a.signed_amount for a in bundle_lines)
    bundle_extra_tax = _sum(a.signed_tax_amount for a in bundle_lines)

    if tax_free:
        base_tax = ZERO
    else:
        base_tax = round_money(base_subtotal * tax_rate, decimal_places, rounding)

    total_amount = base_subtotal + item_extra + bundle_extra
    total_tax_amount = base_tax + item_extra_tax + bundle_extra_tax

    return BundleTotals(
        base_subtotal=base_subtotal,
        base_tax=base_tax,
        total_amount=total_amount,
        total_tax_amount=total_tax_amount,
        total_amount_with_tax=total_amount + total_tax_amount,
        item_extra_amount=item_extra,
        item_extra_amount_tax=item_extra_tax,
        bundle_extra_amount=bundle_extra,
        bundle_extra_amount_tax=bundle_extra_tax,
    )


@dataclass(frozen=True)
class TotalsPolicy:
    """
    Tax and rounding parameters for compute_totals().

    Built from configuration by settlement_config.bridges; the default is the
    KRW policy (10% tax, whole won, half-up).
    """

    tax_rate: Decimal = DEFAULT_TAX_RATE
    decimal_places: int = 0
    rounding: str = ROUND_HALF_UP

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "tax_rate", to_money(self.tax_rate, "tax_rate", bounded=False)
        )
        if self.tax_rate < ZERO:
            raise NegativeAmountError("tax_rate", str(self.tax_rate))

    def compute(
        self,
        tax_free: bool,
        items: Iterable[ItemLine | Decimal],
        bundle_adjustments: Iterable[AdjustmentLine],
        item_adjustments: Iterable[AdjustmentLine],
    ) -> BundleTotals:
        return compute_totals(
            tax_free,
            items,
            bundle_adjustments,
            item_adjustments,
            tax_rate=self.tax_rate,
            decimal_places=self.decimal_places,
            rounding=self.rounding,
        )
