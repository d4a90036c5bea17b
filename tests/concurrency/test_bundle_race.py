"""
Races between writers on the same orders or the same bundle.

The SQLite tests interleave two sessions deterministically.  The threaded
test needs real row locks and runs only against PostgreSQL.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from settlement_kernel.db.engine import session_scope
from settlement_kernel.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    OrderAlreadyBundledError,
)
from settlement_kernel.models.bundle import BundleItem, SettlementBundle
from settlement_kernel.selectors.order_ledger import OrderLedger
from settlement_kernel.services.lifecycle_controller import LifecycleController


def _bundle_count(session_factory) -> int:
    with session_factory() as sess:
        return sess.execute(select(func.count()).select_from(SettlementBundle)).scalar_one()


class TestStaleWaitingPool:
    def test_second_creator_sees_order_taken(
        self, settlement, session_factory, three_orders, shipper_snapshot, test_actor_id
    ):
        # Both callers read the pool before either creates.
        view_a = [w.order_id for w in settlement.list_waiting("sales")]
        view_b = [w.order_id for w in settlement.list_waiting("sales")]
        assert view_a == view_b == three_orders

        settlement.create_bundle("sales", view_a[:2], shipper_snapshot, test_actor_id)

        with pytest.raises(OrderAlreadyBundledError) as exc_info:
            settlement.create_bundle("sales", view_b, shipper_snapshot, test_actor_id)

        assert exc_info.value.order_id == str(three_orders[0])
        assert _bundle_count(session_factory) == 1

    def test_index_backstops_missed_check(
        self, settlement, session_factory, three_orders, shipper_snapshot,
        test_actor_id, monkeypatch, captured_logs,
    ):
        settlement.create_bundle("sales", three_orders[:1], shipper_snapshot, test_actor_id)
        # A writer whose membership check ran before the first commit.
        monkeypatch.setattr(OrderLedger, "active_owners", lambda self, ids, side: {})

        with pytest.raises(ConcurrentModificationError):
            settlement.create_bundle("sales", three_orders, shipper_snapshot, test_actor_id)

        assert _bundle_count(session_factory) == 1
        with session_factory() as sess:
            active = sess.execute(
                select(func.count()).select_from(BundleItem).where(BundleItem.released_at.is_(None))
            ).scalar_one()
        assert active == 1
        assert any(r["message"] == "bundle_create_conflict" for r in captured_logs())


class TestStaleBundleVersion:
    def test_stale_update_rejected(self, session_factory, sales_bundle, test_actor_id):
        first = session_factory()
        second = session_factory()
        try:
            mine = first.get(SettlementBundle, sales_bundle.id)
            theirs = second.get(SettlementBundle, sales_bundle.id)
            assert mine.version == theirs.version

            mine.settlement_memo = "first writer"
            first.commit()

            theirs.settlement_memo = "second writer"
            with pytest.raises(StaleDataError):
                second.flush()
        finally:
            second.rollback()
            second.close()
            first.close()

        with session_factory() as sess:
            assert sess.get(SettlementBundle, sales_bundle.id).settlement_memo == "first writer"

    def test_locked_reload_keeps_concurrent_commit(
        self, settlement, session_factory, sales_bundle, test_actor_id, monkeypatch
    ):
        original = LifecycleController.update_bundle

        def interleaved(self, bundle_id, changes, actor_id, refresh_counterparty=False):
            self.session.get(SettlementBundle, bundle_id)
            with session_scope(session_factory) as other:
                other.get(SettlementBundle, bundle_id).invoice_no = "INV-OTHER"
            return original(self, bundle_id, changes, actor_id, refresh_counterparty)

        monkeypatch.setattr(LifecycleController, "update_bundle", interleaved)

        info = settlement.update_bundle(sales_bundle.id, {"settlement_memo": "mine"}, test_actor_id)

        assert info.invoice_no == "INV-OTHER"
        assert info.settlement_memo == "mine"

    def test_stale_flush_maps_to_conflict(
        self, settlement, sales_bundle, test_actor_id, monkeypatch, captured_logs
    ):
        def lose_race(self, bundle_id, changes, actor_id, refresh_counterparty=False):
            raise StaleDataError("UPDATE statement on table 'settlement_bundles' matched 0 rows")

        monkeypatch.setattr(LifecycleController, "update_bundle", lose_race)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            settlement.update_bundle(sales_bundle.id, {"invoice_no": "X"}, test_actor_id)

        assert exc_info.value.entity_id == str(sales_bundle.id)
        conflicts = [r for r in captured_logs() if r["message"] == "settlement_operation_conflict"]
        assert conflicts[0]["error_type"] == "StaleDataError"


@pytest.mark.postgres
@pytest.mark.slow_locks
@pytest.mark.skipif(
    not os.environ.get("DATABASE_URL", "").startswith("postgresql"),
    reason="row locks need PostgreSQL",
)
class TestParallelCreators:
    def test_exactly_one_creator_wins(
        self, settlement, session_factory, three_orders, shipper_snapshot, test_actor_id
    ):
        barrier = threading.Barrier(4)

        def create():
            barrier.wait()
            try:
                return settlement.create_bundle(
                    "sales", three_orders, shipper_snapshot, test_actor_id
                )
            except ConflictError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda _: create(), range(4)))

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, ConflictError)]
        assert len(winners) == 1
        assert len(losers) == 3
        assert _bundle_count(session_factory) == 1
