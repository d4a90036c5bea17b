"""
SettlementEngine -- the public facade of the settlement kernel.

Responsibility:
    Runs every public operation as exactly one unit of work: open a session,
    call the selectors/services, convert the result to DTOs, commit.  Any
    failure rolls the whole unit back and is re-raised to the caller; store
    races surface as ConflictError.

Architecture position:
    Kernel > Services -- the outermost kernel layer.  The API/UI layer calls
    only this class.

Invariants enforced:
    - One transaction per public operation; partial writes never persist.
    - IntegrityError (partial unique index on active bundle items) and
      StaleDataError (bundle version counter) become
      ConcurrentModificationError.
    - No retries.  The caller decides whether to re-read and try again.

Audit relevance:
    Each unit of work binds operation/actor/bundle/side into LogContext, so
    every log line emitted beneath it carries those fields.
"""

from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from settlement_kernel.db.engine import get_session_factory, session_scope
from settlement_kernel.db.immutability import register_immutability_listeners
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import (
    AdjustmentInfo,
    BundleInfo,
    BundlePage,
    PaymentInfo,
    WaitingOrder,
    WaitingSummary,
)
from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.domain.totals import TotalsPolicy
from settlement_kernel.enums import (
    AdjustmentType,
    BundleSide,
    BundleStatus,
    PaymentMethod,
    PeriodType,
    coerce_enum,
)
from settlement_kernel.exceptions import ConcurrentModificationError, SettlementKernelError
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.selectors.bundle_selector import BundleSelector
from settlement_kernel.selectors.waiting_pool_selector import WaitingPoolSelector
from settlement_kernel.services.adjustment_ledger import AdjustmentLedger
from settlement_kernel.services.bundle_builder import BundleBuilder
from settlement_kernel.services.lifecycle_controller import LifecycleController

logger = get_logger("services.settlement_engine")


class SettlementEngine:
    """
    Settlement bundle aggregation and adjustment engine.

    Contract:
        Every method is atomic.  Money crosses this boundary as Decimal (or
        int / decimal string on input); floats are rejected.

    Guarantees:
        - After every mutating call, the bundle's cached totals equal
          compute_totals() over its items and adjustments.
        - Returned objects are frozen DTOs, never ORM instances.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        policy: TotalsPolicy | None = None,
        default_period_type: PeriodType = PeriodType.DEPARTURE,
        default_payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        page_size: int = 20,
        enforce_immutability: bool = True,
    ):
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.policy = policy or TotalsPolicy()
        self.default_period_type = coerce_enum(
            PeriodType, default_period_type, "default_period_type"
        )
        self.default_payment_method = coerce_enum(
            PaymentMethod, default_payment_method, "default_payment_method"
        )
        self.page_size = page_size
        if enforce_immutability:
            register_immutability_listeners()

    # -----------------------------------------------------------------
    # Unit of work
    # -----------------------------------------------------------------

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        actor_id: UUID | None = None,
        bundle_id: UUID | None = None,
        side: BundleSide | str | None = None,
    ) -> Iterator[Session]:
        correlation_id = LogContext.get_all().get("correlation_id") or str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            operation=operation,
            actor_id=actor_id,
            bundle_id=bundle_id,
            side=coerce_enum(BundleSide, side, "side").value if side is not None else None,
        ):
            factory = self._session_factory or get_session_factory()
            try:
                with session_scope(factory) as session:
                    yield session
            except (IntegrityError, StaleDataError) as exc:
                logger.warning(
                    "settlement_operation_conflict",
                    extra={"error_type": type(exc).__name__},
                )
                raise ConcurrentModificationError(
                    entity_type="SettlementBundle",
                    entity_id=str(bundle_id) if bundle_id else None,
                    reason="a concurrent writer changed the same rows",
                ) from exc
            except SettlementKernelError as exc:
                logger.info(
                    "settlement_operation_rejected",
                    extra={"error_code": exc.code},
                )
                raise

    def _builder(self, session: Session) -> BundleBuilder:
        return BundleBuilder(
            session,
            clock=self.clock,
            policy=self.policy,
            default_period_type=self.default_period_type,
            default_payment_method=self.default_payment_method,
        )

    def _selector(self, session: Session) -> BundleSelector:
        return BundleSelector(session, self.policy)

    # -----------------------------------------------------------------
    # Waiting pool
    # -----------------------------------------------------------------

    def list_waiting(
        self,
        side: BundleSide | str,
        counterparty_id: UUID | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        period_type: PeriodType | str | None = None,
    ) -> list[WaitingOrder]:
        with self._unit_of_work("list_waiting", side=side) as session:
            return WaitingPoolSelector(session).list_waiting(
                side,
                counterparty_id=counterparty_id,
                period_from=period_from,
                period_to=period_to,
                period_type=period_type or self.default_period_type,
            )

    def summarize_waiting(
        self,
        side: BundleSide | str,
        period_from: date | None = None,
        period_to: date | None = None,
        period_type: PeriodType | str | None = None,
    ) -> list[WaitingSummary]:
        with self._unit_of_work("summarize_waiting", side=side) as session:
            return WaitingPoolSelector(session).summarize_waiting(
                side,
                period_from=period_from,
                period_to=period_to,
                period_type=period_type or self.default_period_type,
            )

    # -----------------------------------------------------------------
    # Bundles
    # -----------------------------------------------------------------

    def create_bundle(
        self,
        side: BundleSide | str,
        order_ids: Iterable[UUID],
        counterparty_snapshot: CounterpartySnapshot | Mapping[str, Any],
        actor_id: UUID,
        period_type: PeriodType | str | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        payment_info: PaymentInfo | Mapping[str, Any] | None = None,
        manager_snapshot: ManagerSnapshot | Mapping[str, Any] | None = None,
        tax_free: bool = False,
        counterparty_id: UUID | None = None,
    ) -> BundleInfo:
        with self._unit_of_work("create_bundle", actor_id=actor_id, side=side) as session:
            bundle = self._builder(session).create_bundle(
                side,
                order_ids,
                counterparty_snapshot,
                actor_id,
                period_type=period_type,
                period_from=period_from,
                period_to=period_to,
                payment_info=payment_info,
                manager_snapshot=manager_snapshot,
                tax_free=tax_free,
                counterparty_id=counterparty_id,
            )
            return self._selector(session).get_bundle_with_totals(bundle.id)

    def create_bundle_for_counterparty(
        self,
        side: BundleSide | str,
        counterparty_id: UUID,
        order_ids: Iterable[UUID],
        actor_id: UUID,
        manager_id: UUID | None = None,
        **kwargs: Any,
    ) -> BundleInfo:
        with self._unit_of_work(
            "create_bundle_for_counterparty", actor_id=actor_id, side=side
        ) as session:
            bundle = self._builder(session).create_bundle_for_counterparty(
                side, counterparty_id, order_ids, actor_id, manager_id=manager_id, **kwargs
            )
            return self._selector(session).get_bundle_with_totals(bundle.id)

    def update_bundle(
        self,
        bundle_id: UUID,
        changes: Mapping[str, Any],
        actor_id: UUID,
        refresh_counterparty: bool = False,
    ) -> BundleInfo:
        with self._unit_of_work(
            "update_bundle", actor_id=actor_id, bundle_id=bundle_id
        ) as session:
            LifecycleController(session, self.clock, self.policy).update_bundle(
                bundle_id, changes, actor_id, refresh_counterparty=refresh_counterparty
            )
            return self._selector(session).get_bundle_with_totals(bundle_id)

    def delete_bundle(self, bundle_id: UUID, actor_id: UUID) -> list[UUID]:
        """Delete a draft/issued bundle; returns the order ids back in the pool."""
        with self._unit_of_work(
            "delete_bundle", actor_id=actor_id, bundle_id=bundle_id
        ) as session:
            return self._builder(session).delete_bundle(bundle_id, actor_id)

    def cancel_bundle(self, bundle_id: UUID, actor_id: UUID) -> BundleInfo:
        with self._unit_of_work(
            "cancel_bundle", actor_id=actor_id, bundle_id=bundle_id
        ) as session:
            LifecycleController(session, self.clock, self.policy).cancel_bundle(
                bundle_id, actor_id
            )
            return self._selector(session).get_bundle_with_totals(bundle_id)

    def complete_bundle(self, bundle_id: UUID, actor_id: UUID) -> BundleInfo:
        with self._unit_of_work(
            "complete_bundle", actor_id=actor_id, bundle_id=bundle_id
        ) as session:
            LifecycleController(session, self.clock, self.policy).complete_bundle(
                bundle_id, actor_id
            )
            return self._selector(session).get_bundle_with_totals(bundle_id)

    # -----------------------------------------------------------------
    # Adjustments
    # -----------------------------------------------------------------

    def add_bundle_adjustment(
        self,
        bundle_id: UUID,
        type: AdjustmentType | str,
        description: str | None,
        amount: Decimal | int | str,
        tax_amount: Decimal | int | str,
        actor_id: UUID,
    ) -> AdjustmentInfo:
        with self._unit_of_work(
            "add_bundle_adjustment", actor_id=actor_id, bundle_id=bundle_id
        ) as session:
            adjustment = AdjustmentLedger(session, self.clock, self.policy).add_bundle_adjustment(
                bundle_id, type, description, amount, tax_amount, actor_id
            )
            return self._selector(session).get_adjustment(adjustment.id)

    def add_item_adjustment(
        self,
        bundle_item_id: UUID,
        type: AdjustmentType | str,
        description: str | None,
        amount: Decimal | int | str,
        tax_amount: Decimal | int | str,
        actor_id: UUID,
    ) -> AdjustmentInfo:
        with self._unit_of_work("add_item_adjustment", actor_id=actor_id) as session:
            adjustment = AdjustmentLedger(session, self.clock, self.policy).add_item_adjustment(
                bundle_item_id, type, description, amount, tax_amount, actor_id
            )
            return self._selector(session).get_adjustment(adjustment.id)

    def update_adjustment(
        self,
        adjustment_id: UUID,
        actor_id: UUID,
        type: AdjustmentType | str | None = None,
        description: str | None = None,
        amount: Decimal | int | str | None = None,
        tax_amount: Decimal | int | str | None = None,
    ) -> AdjustmentInfo:
        with self._unit_of_work("update_adjustment", actor_id=actor_id) as session:
            AdjustmentLedger(session, self.clock, self.policy).update_adjustment(
                adjustment_id,
                actor_id,
                type=type,
                description=description,
                amount=amount,
                tax_amount=tax_amount,
            )
            return self._selector(session).get_adjustment(adjustment_id)

    def remove_adjustment(self, adjustment_id: UUID, actor_id: UUID) -> BundleInfo:
        """Remove an adjustment of either kind; returns the bundle with new totals."""
        with self._unit_of_work("remove_adjustment", actor_id=actor_id) as session:
            bundle_id = AdjustmentLedger(
                session, self.clock, self.policy
            ).remove_adjustment(adjustment_id, actor_id)
            return self._selector(session).get_bundle_with_totals(bundle_id)

    def list_adjustments(self, bundle_id: UUID) -> list[AdjustmentInfo]:
        with self._unit_of_work("list_adjustments", bundle_id=bundle_id) as session:
            return self._selector(session).list_adjustments(bundle_id)

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get_bundle_with_totals(self, bundle_id: UUID) -> BundleInfo:
        with self._unit_of_work("get_bundle_with_totals", bundle_id=bundle_id) as session:
            return self._selector(session).get_bundle_with_totals(bundle_id)

    def list_bundles(
        self,
        side: BundleSide | str | None = None,
        counterparty_id: UUID | None = None,
        status: BundleStatus | str | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        sort_by: str = "created_at",
        descending: bool = True,
        page: int = 1,
        page_size: int | None = None,
    ) -> BundlePage:
        with self._unit_of_work("list_bundles", side=side) as session:
            return self._selector(session).list_bundles(
                side=side,
                counterparty_id=counterparty_id,
                status=status,
                period_from=period_from,
                period_to=period_to,
                sort_by=sort_by,
                descending=descending,
                page=page,
                page_size=page_size or self.page_size,
            )
