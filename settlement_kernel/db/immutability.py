"""
ORM-Level Immutability Enforcement for settled bundles.

===============================================================================
WHY THIS EXISTS
===============================================================================

A paid bundle is the record the shipper was billed with or the carrier was
paid against.  A canceled bundle is the record of an invoice that was
withdrawn.  Neither may change afterwards: not the header, not its items, not
its adjustments.

The services (services/lifecycle_controller.py, services/adjustment_ledger.py)
already refuse such operations with BundleFrozenError.  This module is the
second guard: it catches modifications made through any other Python/
SQLAlchemy path, BEFORE the SQL is sent to the database.

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |
         +--> _check_*() --> BundleFrozenError (transaction aborted)
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                        | Checked on
--------------------|---------------------------------------|----------------------
SettlementBundle    | status was paid/canceled before flush | UPDATE, DELETE
BundleItem          | owning bundle was paid/canceled       | INSERT, UPDATE, DELETE
BundleAdjustment    | owning bundle was paid/canceled       | INSERT, UPDATE, DELETE
ItemAdjustment      | owning bundle was paid/canceled       | INSERT, UPDATE, DELETE

===============================================================================
DESIGN DECISIONS
===============================================================================

1. "WAS FROZEN", NOT "IS FROZEN".
   complete_bundle and cancel_bundle must be able to write the transition
   itself (issued -> paid, issued -> canceled, items released).  The status
   the bundle had BEFORE this flush is read from SQLAlchemy's attribute
   history; only that value decides.

2. updated_at / updated_by_id ARE ALLOWED.
   They are audit metadata, not settlement data.

3. INLINE IMPORTS.
   Models import from db; importing models at module level here would be
   circular.

===============================================================================
USAGE
===============================================================================

    from settlement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from settlement_kernel.enums import BundleStatus
from settlement_kernel.exceptions import BundleFrozenError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_FROZEN_STATUSES = frozenset({BundleStatus.PAID, BundleStatus.CANCELED})

# Fields that may still change on a frozen bundle
BUNDLE_MUTABLE_AFTER_FREEZE = frozenset({
    "updated_at",
    "updated_by_id",
})


def _status_before_flush(bundle) -> BundleStatus | None:
    """Status the bundle had when it was loaded, ignoring pending changes."""
    history = get_history(bundle, "status")
    if history.deleted:
        old_status = history.deleted[0]
    else:
        old_status = bundle.status
    if old_status is None:
        return None
    return BundleStatus(old_status)


def _status_from_store(connection, bundle_id) -> BundleStatus | None:
    from settlement_kernel.models.bundle import SettlementBundle

    if bundle_id is None:
        return None
    status = connection.execute(
        select(SettlementBundle.status).where(SettlementBundle.id == bundle_id)
    ).scalar()
    return BundleStatus(status) if status is not None else None


def _bundle_id_of_item(connection, bundle_item_id):
    from settlement_kernel.models.bundle import BundleItem

    if bundle_item_id is None:
        return None
    return connection.execute(
        select(BundleItem.bundle_id).where(BundleItem.id == bundle_item_id)
    ).scalar()


def _block(entity_type: str, entity_id, bundle_id, status, operation: str, field=None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "bundle_id": str(bundle_id),
            "status": status.value if status is not None else None,
            "operation": operation,
            "field": field,
        },
    )
    raise BundleFrozenError(
        bundle_id=str(bundle_id),
        status=status.value,
        operation=f"{operation.lower()} {entity_type}",
    )


def _check_bundle_immutability(mapper, connection, target):
    """
    Prevent updates to a bundle that was already paid or canceled.

    Logic:
        1. Status changing FROM paid/canceled: block.
        2. Status unchanged and paid/canceled: block any non-audit field.
        3. Status changing TO paid/canceled: allow (this IS the transition).
    """
    from settlement_kernel.models.bundle import SettlementBundle

    if not isinstance(target, SettlementBundle):
        return

    was_frozen = _status_before_flush(target)
    if was_frozen not in _FROZEN_STATUSES:
        return

    insp = inspect(target)
    for attr in insp.mapper.column_attrs:
        if attr.key in BUNDLE_MUTABLE_AFTER_FREEZE:
            continue
        if insp.attrs[attr.key].history.has_changes():
            _block("SettlementBundle", target.id, target.id, was_frozen, "UPDATE", attr.key)


def _check_bundle_delete(mapper, connection, target):
    """Prevent deletion of paid or canceled bundles."""
    from settlement_kernel.models.bundle import SettlementBundle

    if not isinstance(target, SettlementBundle):
        return

    was_frozen = _status_before_flush(target)
    if was_frozen in _FROZEN_STATUSES:
        _block("SettlementBundle", target.id, target.id, was_frozen, "DELETE")


def _owning_bundle_status(connection, target):
    """(bundle_id, pre-flush status) of the bundle owning a child row."""
    from settlement_kernel.models.bundle import (
        BundleAdjustment,
        BundleItem,
        ItemAdjustment,
    )

    bundle = None
    bundle_id = None
    if isinstance(target, (BundleItem, BundleAdjustment)):
        bundle = target.bundle
        bundle_id = target.bundle_id
    elif isinstance(target, ItemAdjustment):
        item = target.item
        if item is not None:
            bundle = item.bundle
            bundle_id = item.bundle_id
        else:
            bundle_id = _bundle_id_of_item(connection, target.bundle_item_id)

    if bundle is not None:
        return bundle.id, _status_before_flush(bundle)
    return bundle_id, _status_from_store(connection, bundle_id)


def _make_child_check(operation: str):
    def _check_child(mapper, connection, target):
        bundle_id, status = _owning_bundle_status(connection, target)
        if status in _FROZEN_STATUSES:
            _block(type(target).__name__, target.id, bundle_id, status, operation)

    _check_child.__name__ = f"_check_child_{operation.lower()}"
    return _check_child


_check_child_insert = _make_child_check("INSERT")
_check_child_update = _make_child_check("UPDATE")
_check_child_delete = _make_child_check("DELETE")


def _child_models():
    from settlement_kernel.models.bundle import (
        BundleAdjustment,
        BundleItem,
        ItemAdjustment,
    )

    return (BundleItem, BundleAdjustment, ItemAdjustment)


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.  Registering twice is harmless.
    """
    from settlement_kernel.models.bundle import SettlementBundle

    unregister_immutability_listeners()

    event.listen(SettlementBundle, "before_update", _check_bundle_immutability)
    event.listen(SettlementBundle, "before_delete", _check_bundle_delete)

    for model in _child_models():
        event.listen(model, "before_insert", _check_child_insert)
        event.listen(model, "before_update", _check_child_update)
        event.listen(model, "before_delete", _check_child_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to write a frozen bundle
    directly.
    """
    from settlement_kernel.models.bundle import SettlementBundle

    _safe_remove_listener(SettlementBundle, "before_update", _check_bundle_immutability)
    _safe_remove_listener(SettlementBundle, "before_delete", _check_bundle_delete)

    for model in _child_models():
        _safe_remove_listener(model, "before_insert", _check_child_insert)
        _safe_remove_listener(model, "before_update", _check_child_update)
        _safe_remove_listener(model, "before_delete", _check_child_delete)


def immutability_listeners_registered() -> bool:
    from settlement_kernel.models.bundle import SettlementBundle

    return event.contains(SettlementBundle, "before_update", _check_bundle_immutability)
