"""
Module: settlement_kernel.models.bundle
Responsibility: ORM persistence for settlement bundles -- the header, its
    item snapshots, and its bundle-level and item-level adjustments.
Architecture position: Kernel > Models.  May import from db/base.py,
    db/types.py and enums only.  MUST NOT import from services/, selectors/,
    domain/, or outer layers.

Invariants enforced:
    Single membership -- An order is a member of at most one active bundle
          per side.  Backed in the store by the partial unique index
          uq_bundle_item_active_order on (side, order_id) WHERE released_at
          IS NULL.
    Frozen bundles -- Paid/canceled bundles and their children are
          immutable.  Enforced by db/immutability.py listeners; this model
          only exposes is_frozen.
    Optimistic locking -- SettlementBundle.version is the mapper's
          version_id_col; a stale concurrent UPDATE raises StaleDataError.

Failure modes:
    - IntegrityError on uq_bundle_item_active_order when two writers attach
      the same order on the same side.
    - StaleDataError when a concurrent writer bumped the bundle version.

Audit relevance:
    counterparty_snapshot / manager_snapshot and BundleItem.base_amount are
    frozen copies of external data at bundle time.  Cached totals are always
    engine-derived (services/bundle_totals.py) and never hand-edited.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, TrackedBase, UUIDString
from settlement_kernel.db.types import enum_column
from settlement_kernel.enums import (
    AdjustmentType,
    BundleSide,
    BundleStatus,
    PaymentMethod,
    PeriodType,
)

TERMINAL_STATUSES = frozenset({BundleStatus.PAID, BundleStatus.CANCELED})


class SettlementBundle(TrackedBase):
    """
    Settlement header grouping freight orders for one counterparty.

    Contract:
        One table serves both sides; ``side`` decides whether the
        counterparty is a shipper (sales) or a carrier/driver (purchase).
        Cached totals always equal compute_totals() over the current items
        and adjustments after every kernel operation.

    Guarantees:
        - order_count == len(items).
        - status follows domain.lifecycle.VALID_TRANSITIONS.
    """

    __tablename__ = "settlement_bundles"

    __table_args__ = (
        Index("idx_bundle_side_status", "side", "status"),
        Index("idx_bundle_counterparty", "counterparty_id"),
        Index("idx_bundle_counterparty_name", "counterparty_name"),
        Index("idx_bundle_counterparty_tax_id", "counterparty_tax_id"),
        Index("idx_bundle_period_from", "period_from"),
    )

    side: Mapped[BundleSide] = mapped_column(enum_column(BundleSide, 10), nullable=False)

    counterparty_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("counterparties.id"),
        nullable=True,
    )

    # Frozen copies of directory data
    counterparty_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    manager_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # Denormalized from the snapshot for searching
    counterparty_name: Mapped[str] = mapped_column(String(100), nullable=False)
    counterparty_tax_id: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Period
    period_type: Mapped[PeriodType] = mapped_column(
        enum_column(PeriodType, 10),
        nullable=False,
        default=PeriodType.DEPARTURE,
    )
    period_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[BundleStatus] = mapped_column(
        enum_column(BundleStatus, 10),
        nullable=False,
        default=BundleStatus.DRAFT,
    )

    tax_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Payment information
    payment_method: Mapped[PaymentMethod] = mapped_column(
        enum_column(PaymentMethod, 20),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
    )
    bank_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    bank_account: Mapped[str | None] = mapped_column(String(30), nullable=True)
    bank_account_holder: Mapped[str | None] = mapped_column(String(50), nullable=True)
    settlement_memo: Mapped[str | None] = mapped_column(String(200), nullable=True)
    invoice_no: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Settlement dates
    invoice_issued_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    deposit_requested_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    deposit_received_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    settled_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    canceled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Cached totals (engine-derived)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount_with_tax: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    item_extra_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    item_extra_amount_tax: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    bundle_extra_amount: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    bundle_extra_amount_tax: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    items: Mapped[list["BundleItem"]] = relationship(
        back_populates="bundle",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="BundleItem.period_anchor",
    )

    adjustments: Mapped[list["BundleAdjustment"]] = relationship(
        back_populates="bundle",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="BundleAdjustment.created_at",
    )

    def __repr__(self) -> str:
        return f"<SettlementBundle {self.id} {self.side} status={self.status}>"

    @property
    def is_frozen(self) -> bool:
        """True once the bundle is paid or canceled."""
        return self.status in TERMINAL_STATUSES

    @property
    def item_adjustments(self) -> list["ItemAdjustment"]:
        """All item-level adjustments across the bundle's items."""
        return [adj for item in self.items for adj in item.adjustments]


class BundleItem(Base):
    """
    Snapshot linking one freight order's base amount to its bundle.

    Contract:
        base_amount and period_anchor are copied from the order at attach time
        and never change.  released_at is set only when the owning bundle is
        canceled, which takes the row out of the active-membership index.
    """

    __tablename__ = "bundle_items"

    __table_args__ = (
        Index(
            "uq_bundle_item_active_order",
            "side",
            "order_id",
            unique=True,
            postgresql_where=text("released_at IS NULL"),
            sqlite_where=text("released_at IS NULL"),
        ),
        Index("idx_bundle_item_bundle", "bundle_id"),
        Index("idx_bundle_item_order", "order_id"),
    )

    bundle_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_bundles.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Copied from the bundle so the membership index needs no join
    side: Mapped[BundleSide] = mapped_column(enum_column(BundleSide, 10), nullable=False)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("freight_orders.id"),
        nullable=False,
    )

    base_amount: Mapped[Decimal] = mapped_column(nullable=False)

    period_anchor: Mapped[date] = mapped_column(Date, nullable=False)

    released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    bundle: Mapped["SettlementBundle"] = relationship(back_populates="items")

    adjustments: Mapped[list["ItemAdjustment"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="ItemAdjustment.created_at",
    )

    def __repr__(self) -> str:
        return f"<BundleItem order={self.order_id} base={self.base_amount}>"


class AdjustmentMixin:
    """
    Columns shared by bundle-level and item-level adjustments.

    amount and tax_amount are non-negative magnitudes; the sign comes from
    type at aggregation time.
    """

    type: Mapped[AdjustmentType] = mapped_column(enum_column(AdjustmentType, 10), nullable=False)
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    @property
    def is_surcharge(self) -> bool:
        return self.type == AdjustmentType.SURCHARGE

    @property
    def signed_amount(self) -> Decimal:
        """Surcharges are positive, discounts negative."""
        return self.amount if self.is_surcharge else -self.amount

    @property
    def signed_tax_amount(self) -> Decimal:
        return self.tax_amount if self.is_surcharge else -self.tax_amount


class BundleAdjustment(AdjustmentMixin, Base):
    """Discount or surcharge applied to a whole bundle."""

    __tablename__ = "bundle_adjustments"

    bundle_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_bundles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    bundle: Mapped["SettlementBundle"] = relationship(back_populates="adjustments")

    def __repr__(self) -> str:
        return f"<BundleAdjustment {self.type} {self.amount}>"


class ItemAdjustment(AdjustmentMixin, Base):
    """Discount or surcharge applied to one bundle item."""

    __tablename__ = "item_adjustments"

    bundle_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bundle_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    item: Mapped["BundleItem"] = relationship(back_populates="adjustments")

    def __repr__(self) -> str:
        return f"<ItemAdjustment {self.type} {self.amount}>"
