"""
Concurrent submission tests.

Threads released together by a barrier race for the validating lock on one
entry.  Runs against the per-test SQLite file by default; set DATABASE_URL to
run the same races on PostgreSQL.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from production_kernel.domain.dtos import EntryStatus
from production_kernel.services.authorization import Actor, Role


pytestmark = pytest.mark.slow_locks

THREADS = 6


def race(fn, count=THREADS):
    """Run ``fn`` from ``count`` threads released at the same moment."""
    barrier = Barrier(count)

    def _worker():
        barrier.wait(timeout=30)
        return fn()

    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(_worker) for _ in range(count)]
        return [f.result(timeout=120) for f in futures]


@pytest.fixture
def owner_editor(producer):
    """The owning producer, also allowed to re-validate."""
    return Actor(
        id=producer.id,
        tenant_id=producer.tenant_id,
        roles=frozenset({Role.PRODUCER, Role.EDITOR}),
    )


class TestConcurrentSubmit:
    def test_stock_is_deducted_once(self, validation, store, owner_editor, make_entry):
        built = make_entry(owner=owner_editor, pieces_used=40)

        results = race(lambda: validation.submit(owner_editor, built.entry.id))

        assert any(r.is_success for r in results)
        assert all(r.is_success or r.code == "ALREADY_IN_PROGRESS" for r in results)
        assert store.get_entry(built.entry.id).status == EntryStatus.VALIDATED
        unit = store.get_stock_units([built.unit.id])[built.unit.id]
        assert unit.pieces == "60"
        assert unit.volume == Decimal("0.6")
        assert len(store.list_stock_units_by_origin(built.entry.id)) == 2
        assert len(store.list_consumptions(built.entry.id)) == 1

    def test_draft_lock_admits_one_owner(self, validation, store, producer, make_entry):
        built = make_entry(pieces_used=40)

        results = race(lambda: validation.submit(producer, built.entry.id))

        assert sum(r.is_success for r in results) == 1
        assert {r.code for r in results if not r.is_success} <= {
            "ALREADY_IN_PROGRESS",
            "UNAUTHORIZED",
        }
        assert store.get_stock_units([built.unit.id])[built.unit.id].pieces == "60"

    def test_concurrent_revalidations_do_not_drift(
        self, validation, store, producer, editor, make_entry
    ):
        built = make_entry(pieces_used=40)
        assert validation.submit(producer, built.entry.id).is_success

        results = race(lambda: validation.submit(editor, built.entry.id))

        assert any(r.is_success for r in results)
        assert all(r.is_success or r.code == "ALREADY_IN_PROGRESS" for r in results)
        unit = store.get_stock_units([built.unit.id])[built.unit.id]
        assert unit.pieces == "60"
        assert unit.volume == Decimal("0.6")
        assert store.get_entry(built.entry.id).status == EntryStatus.VALIDATED


class TestConcurrentRevert:
    def test_stock_is_restored_once(self, validation, store, producer, admin, make_entry):
        built = make_entry(pieces_used=40)
        assert validation.submit(producer, built.entry.id).is_success

        results = race(lambda: validation.revert(admin, built.entry.id))

        assert any(r.is_success for r in results)
        assert all(r.is_success or r.code == "ALREADY_IN_PROGRESS" for r in results)
        assert sum(r.restored_count for r in results) == 1
        unit = store.get_stock_units([built.unit.id])[built.unit.id]
        assert unit.pieces == "100"
        assert unit.volume == Decimal("1.0")
        assert store.get_entry(built.entry.id).status == EntryStatus.DRAFT
        assert store.list_consumptions(built.entry.id) == []
