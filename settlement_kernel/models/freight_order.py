"""
Module: settlement_kernel.models.freight_order
Responsibility: ORM mapping of the Order Ledger's freight orders.  The ledger
    is owned by the dispatch side of the back office; the settlement kernel
    only reads it.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - None at the ORM level.  This table is read-only to the kernel; no service
      in settlement_kernel writes to it.

Audit relevance:
    sales_amount / purchase_amount are copied into BundleItem.base_amount when
    an order is bundled.  Later edits here never reach an existing bundle.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString
from settlement_kernel.enums import BundleSide, PeriodType


class FreightOrder(Base):
    """
    A dispatched freight order with its agreed charge on each side.

    Contract:
        The sales side is billed to ``shipper_id`` for ``sales_amount``; the
        purchase side is paid to ``carrier_id`` (carrier company or driver)
        for ``purchase_amount``.  Only closed orders are settleable.
    """

    __tablename__ = "freight_orders"

    __table_args__ = (
        Index("idx_freight_order_shipper", "shipper_id"),
        Index("idx_freight_order_carrier", "carrier_id"),
        Index("idx_freight_order_pickup_date", "pickup_date"),
    )

    order_no: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    shipper_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=False,
    )

    # Assigned when the order is dispatched
    carrier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=True,
    )

    sales_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    purchase_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    pickup_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Dispatch closed: transport finished and charges agreed
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def counterparty_id(self, side: BundleSide) -> UUID | None:
        """Counterparty that settles this order on ``side``."""
        if side == BundleSide.SALES:
            return self.shipper_id
        return self.carrier_id

    def base_amount(self, side: BundleSide) -> Decimal:
        """Agreed base charge on ``side``."""
        if side == BundleSide.SALES:
            return self.sales_amount
        return self.purchase_amount

    def period_anchor(self, period_type: PeriodType) -> date:
        """Date the order is settled against.  Arrival falls back to pickup."""
        if period_type == PeriodType.ARRIVAL and self.delivery_date is not None:
            return self.delivery_date
        return self.pickup_date

    def __repr__(self) -> str:
        return f"<FreightOrder {self.order_no}>"
