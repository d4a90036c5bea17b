"""
AdjustmentLedger -- discounts and surcharges on open bundles.

Responsibility:
    Adds, edits and removes bundle-level and item-level adjustments.  Each
    mutation recomputes and stores the owning bundle's cached totals in the
    same transaction.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - amount and tax_amount are stored as non-negative magnitudes; the sign
      comes from type when totals are aggregated.
    - Only draft/issued bundles accept adjustment changes.
    - Cached totals equal compute_totals() after every call.

Failure modes:
    - NegativeAmountError / FloatAmountError / ValidationError on bad input.
    - BundleNotFoundError, BundleItemNotFoundError, AdjustmentNotFoundError.
    - BundleFrozenError when the owning bundle is paid or canceled.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from settlement_kernel.domain.lifecycle import ensure_mutable
from settlement_kernel.domain.totals import AdjustmentLine
from settlement_kernel.enums import AdjustmentType, coerce_enum
from settlement_kernel.exceptions import (
    AdjustmentNotFoundError,
    BundleItemNotFoundError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.bundle import (
    BundleAdjustment,
    BundleItem,
    ItemAdjustment,
    SettlementBundle,
)
from settlement_kernel.services.base import BundleScopedService

logger = get_logger("services.adjustment_ledger")

_MAX_DESCRIPTION = 200


def _validated_line(
    type: AdjustmentType | str,
    amount: Decimal | int | str,
    tax_amount: Decimal | int | str,
) -> AdjustmentLine:
    adjustment_type = coerce_enum(AdjustmentType, type, "adjustment type")
    return AdjustmentLine(type=adjustment_type, amount=amount, tax_amount=tax_amount)


def _validated_description(description: str | None) -> str | None:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError("description must be a string")
    if len(description) > _MAX_DESCRIPTION:
        raise ValidationError(
            f"description is longer than {_MAX_DESCRIPTION} characters"
        )
    return description


class AdjustmentLedger(BundleScopedService):
    """Bundle-level and item-level adjustment records."""

    # -----------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------

    def _find_adjustment(
        self, adjustment_id: UUID
    ) -> tuple[BundleAdjustment | ItemAdjustment, SettlementBundle]:
        """Locate an adjustment of either kind and lock its bundle."""
        bundle_adj = self.session.get(BundleAdjustment, adjustment_id)
        if bundle_adj is not None:
            bundle = self._lock_bundle(bundle_adj.bundle_id)
            return _same_instance(bundle.adjustments, adjustment_id), bundle

        item_adj = self.session.get(ItemAdjustment, adjustment_id)
        if item_adj is not None:
            bundle = self._lock_bundle(item_adj.item.bundle_id)
            for item in bundle.items:
                if item.id == item_adj.bundle_item_id:
                    return _same_instance(item.adjustments, adjustment_id), bundle

        raise AdjustmentNotFoundError(str(adjustment_id))

    # -----------------------------------------------------------------
    # Add
    # -----------------------------------------------------------------

    def add_bundle_adjustment(
        self,
        bundle_id: UUID,
        type: AdjustmentType | str,
        description: str | None,
        amount: Decimal | int | str,
        tax_amount: Decimal | int | str,
        actor_id: UUID,
    ) -> BundleAdjustment:
        """
        Attach a discount or surcharge to the whole bundle.

        Raises:
            BundleNotFoundError: Unknown bundle.
            BundleFrozenError: Bundle is paid or canceled.
            NegativeAmountError: amount or tax_amount below zero.
        """
        line = _validated_line(type, amount, tax_amount)
        description = _validated_description(description)

        bundle = self._lock_bundle(bundle_id)
        ensure_mutable(bundle.id, bundle.status, "add adjustment")

        adjustment = BundleAdjustment(
            id=uuid4(),
            type=line.type,
            description=description,
            amount=line.amount,
            tax_amount=line.tax_amount,
            created_by_id=actor_id,
        )
        bundle.adjustments.append(adjustment)
        totals = self._refresh_totals(bundle)
        self._touch(bundle, actor_id)
        self.session.flush()

        logger.info(
            "adjustment_added",
            extra={
                "scope": "bundle",
                "adjustment_id": str(adjustment.id),
                "bundle_id": str(bundle.id),
                "adjustment_type": line.type.value,
                "amount": line.amount,
                "tax_amount": line.tax_amount,
                "total_amount_with_tax": totals.total_amount_with_tax,
            },
        )
        return adjustment

    def add_item_adjustment(
        self,
        bundle_item_id: UUID,
        type: AdjustmentType | str,
        description: str | None,
        amount: Decimal | int | str,
        tax_amount: Decimal | int | str,
        actor_id: UUID,
    ) -> ItemAdjustment:
        """
        Attach a discount or surcharge to one bundle item.

        Raises:
            BundleItemNotFoundError: Unknown item.
            BundleFrozenError: Owning bundle is paid or canceled.
            NegativeAmountError: amount or tax_amount below zero.
        """
        line = _validated_line(type, amount, tax_amount)
        description = _validated_description(description)

        found = self.session.get(BundleItem, bundle_item_id)
        if found is None:
            raise BundleItemNotFoundError(str(bundle_item_id))
        bundle = self._lock_bundle(found.bundle_id)
        ensure_mutable(bundle.id, bundle.status, "add item adjustment")
        item = next(i for i in bundle.items if i.id == bundle_item_id)

        adjustment = ItemAdjustment(
            id=uuid4(),
            type=line.type,
            description=description,
            amount=line.amount,
            tax_amount=line.tax_amount,
            created_by_id=actor_id,
        )
        item.adjustments.append(adjustment)
        totals = self._refresh_totals(bundle)
        self._touch(bundle, actor_id)
        self.session.flush()

        logger.info(
            "adjustment_added",
            extra={
                "scope": "item",
                "adjustment_id": str(adjustment.id),
                "bundle_id": str(bundle.id),
                "bundle_item_id": str(item.id),
                "adjustment_type": line.type.value,
                "amount": line.amount,
                "tax_amount": line.tax_amount,
                "total_amount_with_tax": totals.total_amount_with_tax,
            },
        )
        return adjustment

    # -----------------------------------------------------------------
    # Update / remove
    # -----------------------------------------------------------------

    def update_adjustment(
        self,
        adjustment_id: UUID,
        actor_id: UUID,
        type: AdjustmentType | str | None = None,
        description: str | None = None,
        amount: Decimal | int | str | None = None,
        tax_amount: Decimal | int | str | None = None,
    ) -> BundleAdjustment | ItemAdjustment:
        """
        Change an adjustment in place.  Omitted arguments keep their value.

        Raises:
            AdjustmentNotFoundError: Unknown id.
            BundleFrozenError: Owning bundle is paid or canceled.
            NegativeAmountError: amount or tax_amount below zero.
        """
        adjustment, bundle = self._find_adjustment(adjustment_id)
        ensure_mutable(bundle.id, bundle.status, "update adjustment")

        line = _validated_line(
            type if type is not None else adjustment.type,
            amount if amount is not None else adjustment.amount,
            tax_amount if tax_amount is not None else adjustment.tax_amount,
        )
        adjustment.type = line.type
        adjustment.amount = line.amount
        adjustment.tax_amount = line.tax_amount
        if description is not None:
            adjustment.description = _validated_description(description)

        totals = self._refresh_totals(bundle)
        self._touch(bundle, actor_id)
        self.session.flush()

        logger.info(
            "adjustment_updated",
            extra={
                "adjustment_id": str(adjustment.id),
                "bundle_id": str(bundle.id),
                "adjustment_type": line.type.value,
                "amount": line.amount,
                "tax_amount": line.tax_amount,
                "total_amount_with_tax": totals.total_amount_with_tax,
            },
        )
        return adjustment

    def remove_adjustment(self, adjustment_id: UUID, actor_id: UUID) -> UUID:
        """
        Delete an adjustment of either kind.

        Returns:
            The id of the bundle whose totals changed.

        Raises:
            AdjustmentNotFoundError: Unknown id.
            BundleFrozenError: Owning bundle is paid or canceled.
        """
        adjustment, bundle = self._find_adjustment(adjustment_id)
        ensure_mutable(bundle.id, bundle.status, "remove adjustment")

        if isinstance(adjustment, BundleAdjustment):
            bundle.adjustments.remove(adjustment)
            scope = "bundle"
        else:
            adjustment.item.adjustments.remove(adjustment)
            scope = "item"

        totals = self._refresh_totals(bundle)
        self._touch(bundle, actor_id)
        self.session.flush()

        logger.info(
            "adjustment_removed",
            extra={
                "scope": scope,
                "adjustment_id": str(adjustment_id),
                "bundle_id": str(bundle.id),
                "total_amount_with_tax": totals.total_amount_with_tax,
            },
        )
        return bundle.id


def _same_instance(collection, adjustment_id: UUID):
    for adjustment in collection:
        if adjustment.id == adjustment_id:
            return adjustment
    raise AdjustmentNotFoundError(str(adjustment_id))
