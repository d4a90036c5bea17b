"""
BaseService -- abstract base for all settlement kernel services.

Responsibility:
    Common constructor and session-handling contract for every write-side
    service.  Services persist with ``session.flush()`` -- never
    ``session.commit()``.  SettlementEngine (or a test) owns the transaction.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.
    - Bundle-scoped services lock the bundle row (SELECT ... FOR UPDATE)
      before reading its status, so a status check and the write that
      depends on it happen under the same lock.
"""

from abc import ABC
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.totals import BundleTotals, TotalsPolicy
from settlement_kernel.exceptions import BundleNotFoundError
from settlement_kernel.models.bundle import SettlementBundle
from settlement_kernel.services.bundle_totals import apply_totals

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only query methods -- those belong in
          ``settlement_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session


class BundleScopedService(BaseService[SettlementBundle]):
    """Base for services whose every operation mutates one bundle."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: TotalsPolicy | None = None,
    ):
        super().__init__(session)
        self.clock = clock or SystemClock()
        self.policy = policy or TotalsPolicy()

    def _lock_bundle(self, bundle_id: UUID) -> SettlementBundle:
        """
        Load a bundle under a row lock, refreshing any cached state.

        Raises:
            BundleNotFoundError: Unknown id.
        """
        bundle = self.session.execute(
            select(SettlementBundle)
            .where(SettlementBundle.id == bundle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if bundle is None:
            raise BundleNotFoundError(str(bundle_id))
        return bundle

    def _touch(self, bundle: SettlementBundle, actor_id: UUID) -> None:
        bundle.updated_by_id = actor_id

    def _refresh_totals(self, bundle: SettlementBundle) -> BundleTotals:
        return apply_totals(bundle, self.policy)
