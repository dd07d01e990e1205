"""
Tests for OutputUsageSelector.
"""

from decimal import Decimal
from uuid import uuid4

from production_kernel.db.engine import session_scope
from production_kernel.domain.dtos import StockStatus
from production_kernel.selectors import OutputUsageSelector


def usage_of(session_factory, entry_id):
    with session_scope(session_factory) as session:
        return OutputUsageSelector(session).check_output_usage(entry_id)


class TestCheckOutputUsage:
    def test_fresh_outputs_are_free(self, session_factory, validation, producer, make_entry):
        built = make_entry()
        assert validation.submit(producer, built.entry.id).is_success

        report = usage_of(session_factory, built.entry.id)

        assert [o.identifier for o in report.outputs] == ["N-PL-0001", "N-PL-0002"]
        assert all(o.status == StockStatus.PRODUCED.value for o in report.outputs)
        assert not report.has_usage
        assert report.used == ()

    def test_downstream_entries_are_listed(
        self, session_factory, validation, store, seed, producer, make_entry
    ):
        built = make_entry()
        assert validation.submit(producer, built.entry.id).is_success
        first, second = store.list_stock_units_by_origin(built.entry.id)
        downstream = seed.entry(producer, built.process)
        seed.input(downstream, second, pieces_used=1, volume=Decimal("0.01"))
        seed.input(downstream, second, pieces_used=1, volume=Decimal("0.01"))

        report = usage_of(session_factory, built.entry.id)

        assert report.has_usage
        assert [o.stock_unit_id for o in report.used] == [second.id]
        assert report.used[0].used_by_entry_ids == (downstream.id,)
        assert [o.stock_unit_id for o in report.free] == [first.id]

    def test_draft_has_no_outputs(self, session_factory, make_entry):
        built = make_entry()

        assert usage_of(session_factory, built.entry.id).outputs == ()

    def test_unknown_entry(self, session_factory):
        report = usage_of(session_factory, uuid4())

        assert report.outputs == ()
        assert not report.has_usage
