"""Enumerations shared by settlement models, domain, selectors and services."""

from enum import Enum
from typing import Any, TypeVar

from settlement_kernel.exceptions import ValidationError

E = TypeVar("E", bound=Enum)


class BundleSide(str, Enum):
    """Which side of the brokerage a bundle settles.

    SALES bills the shipper; PURCHASE pays the carrier or driver.
    """

    SALES = "sales"
    PURCHASE = "purchase"


class BundleStatus(str, Enum):
    """Lifecycle status of a settlement bundle.

    Contract: DRAFT -> ISSUED -> PAID, with DRAFT/ISSUED -> CANCELED.
    PAID and CANCELED are terminal (see domain/lifecycle.py).
    """

    DRAFT = "draft"
    ISSUED = "issued"
    PAID = "paid"
    CANCELED = "canceled"


class AdjustmentType(str, Enum):
    """Direction of an adjustment.  Amounts are stored as magnitudes."""

    DISCOUNT = "discount"
    SURCHARGE = "surcharge"


class PeriodType(str, Enum):
    """Which order date anchors the settlement period."""

    DEPARTURE = "departure"
    ARRIVAL = "arrival"
    ETC = "etc"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    ETC = "etc"


class CounterpartyKind(str, Enum):
    SHIPPER = "shipper"
    CARRIER = "carrier"
    DRIVER = "driver"


def coerce_enum(enum_cls: type[E], value: Any, field: str) -> E:
    """
    Member of ``enum_cls`` for a member or its value.

    Raises:
        ValidationError: Unknown value, listing the accepted ones.
    """
    try:
        return enum_cls(value)
    except (ValueError, TypeError) as exc:
        accepted = ", ".join(member.value for member in enum_cls)
        raise ValidationError(
            f"Unknown {field} {value!r}; expected one of: {accepted}"
        ) from exc
