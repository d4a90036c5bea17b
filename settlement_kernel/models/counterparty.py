"""
Module: settlement_kernel.models.counterparty
Responsibility: ORM mapping of the organization directory: shippers,
    carriers and drivers, plus their contact managers.  Read-only to the
    settlement kernel; bundles copy what they need into snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString
from settlement_kernel.db.types import enum_column
from settlement_kernel.enums import CounterpartyKind


class Counterparty(Base):
    """
    A shipper, carrier company or individual driver.

    Non-goals:
        - CRUD for this table lives outside the kernel.
    """

    __tablename__ = "counterparties"

    __table_args__ = (
        Index("idx_counterparty_kind", "kind"),
        Index("idx_counterparty_tax_id", "tax_id"),
    )

    kind: Mapped[CounterpartyKind] = mapped_column(enum_column(CounterpartyKind), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Business registration number
    tax_id: Mapped[str | None] = mapped_column(String(20), nullable=True)

    ceo_name: Mapped[str | None] = mapped_column(String(50), nullable=True)

    bank_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    bank_account: Mapped[str | None] = mapped_column(String(30), nullable=True)
    bank_account_holder: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Counterparty {self.name} ({self.kind})>"


class Manager(Base):
    """Contact person at a counterparty."""

    __tablename__ = "counterparty_managers"

    counterparty_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    def __repr__(self) -> str:
        return f"<Manager {self.name}>"
