"""
Unit tests for stock arithmetic: deduction, restoration and input merging.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from production_kernel.domain.dtos import InputLine, StockStatus, StockUnitState
from production_kernel.domain.ledger import (
    deduct,
    merge_inputs,
    plan_deductions,
    restore,
    restored_status,
)
from production_kernel.exceptions import InsufficientStockError, StockUnitNotFoundError


def make_unit(pieces="10", volume="1.0", status=StockStatus.RECEIVED, origin=None):
    return StockUnitState(
        id=uuid4(),
        tenant_id=uuid4(),
        identifier="N-PL-0001",
        pieces=pieces,
        volume=Decimal(volume),
        status=status,
        origin_entry_id=origin,
    )


def make_line(unit_id, pieces=None, volume="0.1"):
    return InputLine(
        id=uuid4(),
        entry_id=uuid4(),
        stock_unit_id=unit_id,
        pieces_used=pieces,
        volume_consumed=Decimal(volume),
    )


class TestDeductPiecesPath:
    def test_partial_pieces_scale_volume(self):
        unit = make_unit(pieces="10", volume="1.0")

        result = deduct(unit, 4, Decimal("0.4"))

        assert result.new_pieces == "6"
        assert result.new_volume == Decimal("0.6")
        assert result.new_status == StockStatus.RECEIVED
        assert result.pieces_removed == 4
        assert result.volume_removed == Decimal("0.4")

    def test_all_pieces_consumes_unit(self):
        unit = make_unit(pieces="5", volume="0.75")

        result = deduct(unit, 5, Decimal("0.75"))

        assert result.new_pieces == "0"
        assert result.new_volume == Decimal("0")
        assert result.new_status == StockStatus.CONSUMED
        assert result.volume_removed == Decimal("0.75")

    def test_proportional_volume_is_quantized(self):
        unit = make_unit(pieces="3", volume="1.0")

        result = deduct(unit, 1, Decimal("0.3"))

        assert result.new_volume == Decimal("0.666666667")
        assert result.volume_removed == Decimal("0.333333333")

    def test_too_many_pieces_raises(self):
        unit = make_unit(pieces="3")

        with pytest.raises(InsufficientStockError) as exc_info:
            deduct(unit, 4, Decimal("0.1"))

        assert exc_info.value.code == "INSUFFICIENT_STOCK"
        assert exc_info.value.stock_unit_id == unit.id


class TestDeductVolumePath:
    def test_no_pieces_on_line_uses_volume(self):
        unit = make_unit(pieces="10", volume="2.0")

        result = deduct(unit, None, Decimal("0.5"))

        assert result.new_pieces == "10"
        assert result.new_volume == Decimal("1.5")
        assert result.pieces_removed is None

    def test_uncountable_unit_uses_volume(self):
        unit = make_unit(pieces="100-150", volume="2.0")

        result = deduct(unit, 5, Decimal("2.0"))

        assert result.new_pieces == "100-150"
        assert result.new_volume == Decimal("0")
        assert result.new_status == StockStatus.CONSUMED

    def test_excess_volume_raises(self):
        unit = make_unit(pieces=None, volume="1.0")

        with pytest.raises(InsufficientStockError):
            deduct(unit, None, Decimal("1.000000001"))


class TestRestore:
    def test_restore_inverts_partial_deduction(self):
        unit = make_unit(pieces="3", volume="1.0")
        deduction = deduct(unit, 1, Decimal("0.3"))
        after = deduction.apply_to(unit)

        back = restore(after, deduction.pieces_removed, deduction.volume_removed)

        assert back == unit

    def test_restore_inverts_full_consumption_with_prior_status(self):
        unit = make_unit(pieces="5", volume="0.75", status=StockStatus.PRODUCED, origin=uuid4())
        deduction = deduct(unit, 5, Decimal("0.75"))
        after = deduction.apply_to(unit)

        back = restore(after, 5, deduction.volume_removed, StockStatus.PRODUCED)

        assert back == unit

    def test_restored_status_defaults_by_origin(self):
        received = make_unit(status=StockStatus.CONSUMED)
        produced = make_unit(status=StockStatus.CONSUMED, origin=uuid4())

        assert restored_status(received) == StockStatus.RECEIVED
        assert restored_status(produced) == StockStatus.PRODUCED

    def test_volume_only_restore_keeps_pieces(self):
        unit = make_unit(pieces="10", volume="1.5")

        back = restore(unit, None, Decimal("0.5"))

        assert back.pieces == "10"
        assert back.volume == Decimal("2.0")

    @pytest.mark.parametrize("pieces", [None, "-", "100-150"])
    def test_uncountable_unit_stays_uncountable(self, pieces):
        unit = make_unit(pieces=pieces, volume="0.6")

        back = restore(unit, 4, Decimal("0.4"))

        assert back.pieces == pieces
        assert back.volume == Decimal("1.0")


class TestMergeInputs:
    def test_lines_on_same_unit_are_summed(self):
        unit_id = uuid4()
        lines = [make_line(unit_id, 2, "0.2"), make_line(unit_id, 3, "0.3")]

        merged = merge_inputs(lines)

        assert list(merged) == [unit_id]
        assert merged[unit_id].pieces_used == 5
        assert merged[unit_id].volume_used == Decimal("0.5")
        assert merged[unit_id].line_count == 2

    def test_one_volume_only_line_makes_merge_volume_only(self):
        unit_id = uuid4()
        lines = [make_line(unit_id, 2, "0.2"), make_line(unit_id, None, "0.3")]

        merged = merge_inputs(lines)

        assert merged[unit_id].pieces_used is None
        assert merged[unit_id].volume_used == Decimal("0.5")

    def test_first_seen_order_is_kept(self):
        a, b = uuid4(), uuid4()
        merged = merge_inputs([make_line(b), make_line(a), make_line(b)])

        assert list(merged) == [b, a]


class TestPlanDeductions:
    def test_every_deduction_is_checked_before_returning(self):
        ok = make_unit(pieces="10", volume="1.0")
        short = make_unit(pieces="2", volume="0.2")
        merged = merge_inputs([make_line(ok.id, 1), make_line(short.id, 3)])

        with pytest.raises(InsufficientStockError) as exc_info:
            plan_deductions(merged, {ok.id: ok, short.id: short})

        assert exc_info.value.stock_unit_id == short.id

    def test_missing_unit_raises_not_found(self):
        merged = merge_inputs([make_line(uuid4())])

        with pytest.raises(StockUnitNotFoundError):
            plan_deductions(merged, {})

    def test_merged_lines_over_draw_is_rejected(self):
        unit = make_unit(pieces="5", volume="0.5")
        merged = merge_inputs([make_line(unit.id, 3), make_line(unit.id, 3)])

        with pytest.raises(InsufficientStockError):
            plan_deductions(merged, {unit.id: unit})
