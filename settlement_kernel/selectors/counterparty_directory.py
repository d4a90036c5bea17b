"""
Module: settlement_kernel.selectors.counterparty_directory
Responsibility: Read access to the organization directory.  Produces the
    snapshot value objects a bundle freezes at create/edit time.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.snapshots import CounterpartySnapshot, ManagerSnapshot
from settlement_kernel.exceptions import (
    CounterpartyNotFoundError,
    ManagerNotFoundError,
)
from settlement_kernel.models.counterparty import Counterparty, Manager
from settlement_kernel.selectors.base import BaseSelector


class CounterpartyDirectory(BaseSelector[Counterparty]):
    """Shippers, carriers, drivers and their managers."""

    def __init__(self, session: Session):
        super().__init__(session)

    def exists(self, counterparty_id: UUID) -> bool:
        return self.session.execute(
            select(Counterparty.id).where(Counterparty.id == counterparty_id)
        ).first() is not None

    def get_counterparty_snapshot(self, counterparty_id: UUID) -> CounterpartySnapshot:
        """
        Snapshot the counterparty's current name, tax id and bank details.

        Raises:
            CounterpartyNotFoundError: Unknown id.
            MissingSnapshotFieldError: Directory row lacks a name or tax id.
        """
        counterparty = self.session.get(Counterparty, counterparty_id)
        if counterparty is None:
            raise CounterpartyNotFoundError(str(counterparty_id))
        return CounterpartySnapshot.from_dict({
            "name": counterparty.name,
            "tax_id": counterparty.tax_id,
            "ceo_name": counterparty.ceo_name,
            "bank_code": counterparty.bank_code,
            "bank_account": counterparty.bank_account,
            "bank_account_holder": counterparty.bank_account_holder,
        })

    def get_manager_snapshot(self, manager_id: UUID) -> ManagerSnapshot:
        """
        Raises:
            ManagerNotFoundError: Unknown id.
        """
        manager = self.session.get(Manager, manager_id)
        if manager is None:
            raise ManagerNotFoundError(str(manager_id))
        return ManagerSnapshot(name=manager.name, email=manager.email, phone=manager.phone)

    def names(self, counterparty_ids: list[UUID]) -> dict[UUID, str]:
        if not counterparty_ids:
            return {}
        rows = self.session.execute(
            select(Counterparty.id, Counterparty.name).where(
                Counterparty.id.in_(counterparty_ids)
            )
        ).all()
        return {row.id: row.name for row in rows}
