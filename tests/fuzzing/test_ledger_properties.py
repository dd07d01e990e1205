"""
Hypothesis-based properties of stock arithmetic and yield totals.

Boundaries fuzzed here:
- Deduction on the pieces path and the volume path
- Restoration from the quantities a deduction reports as removed
- Outcome / waste percentages for arbitrary input and output volumes
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from production_kernel.domain.dtos import StockStatus, StockUnitState
from production_kernel.domain.ledger import deduct, restore
from production_kernel.domain.metrics import totals
from production_kernel.exceptions import InsufficientStockError

volumes = st.decimals(
    min_value=Decimal("0.001"),
    max_value=Decimal("500"),
    places=9,
    allow_nan=False,
    allow_infinity=False,
)


@composite
def stock_units(draw, countable=True):
    pieces = draw(st.integers(min_value=1, max_value=2000)) if countable else None
    return StockUnitState(
        id=uuid4(),
        tenant_id=uuid4(),
        identifier="N-RW-0001",
        pieces=str(pieces) if pieces is not None else None,
        volume=draw(volumes),
        status=draw(st.sampled_from([StockStatus.RECEIVED, StockStatus.PRODUCED])),
    )


@composite
def pieces_requests(draw):
    unit = draw(stock_units())
    used = draw(st.integers(min_value=1, max_value=int(unit.pieces)))
    return unit, used


@composite
def volume_requests(draw):
    unit = draw(stock_units(countable=False))
    used = draw(
        st.decimals(
            min_value=Decimal("0.000000001"),
            max_value=unit.volume,
            places=9,
            allow_nan=False,
            allow_infinity=False,
        )
    )
    return unit, used


class TestDeductRestoreIdentity:
    @given(pieces_requests())
    @settings(max_examples=200)
    def test_pieces_path_round_trips(self, case):
        unit, used = case

        deduction = deduct(unit, used, Decimal("0"))
        back = restore(
            deduction.apply_to(unit),
            deduction.pieces_removed,
            deduction.volume_removed,
            prior_status=unit.status,
        )

        assert back == unit

    @given(volume_requests())
    @settings(max_examples=200)
    def test_volume_path_round_trips(self, case):
        unit, used = case

        deduction = deduct(unit, None, used)
        back = restore(
            deduction.apply_to(unit),
            deduction.pieces_removed,
            deduction.volume_removed,
            prior_status=unit.status,
        )

        assert back == unit


class TestDeductionBounds:
    @given(pieces_requests())
    def test_pieces_path_never_goes_negative(self, case):
        unit, used = case

        deduction = deduct(unit, used, Decimal("0"))

        assert int(deduction.new_pieces) >= 0
        assert deduction.new_volume >= 0
        assert deduction.volume_removed >= 0

    @given(volume_requests())
    def test_empty_unit_is_consumed(self, case):
        unit, used = case

        deduction = deduct(unit, None, used)

        assert deduction.new_volume >= 0
        if deduction.new_volume == 0:
            assert deduction.new_status == StockStatus.CONSUMED
        else:
            assert deduction.new_status == unit.status

    @given(stock_units(), st.integers(min_value=1, max_value=50))
    def test_overdraw_is_refused(self, unit, extra):
        with pytest.raises(InsufficientStockError):
            deduct(unit, int(unit.pieces) + extra, Decimal("0"))


class TestTotals:
    @given(
        st.lists(volumes, min_size=1, max_size=8),
        st.lists(st.one_of(st.none(), volumes), max_size=8),
    )
    def test_outcome_and_waste_sum_to_hundred(self, inputs, outputs):
        result = totals(inputs, outputs)

        assert result.outcome_percentage + result.waste_percentage == Decimal("100")
        assert result.input_volume == sum(inputs, Decimal("0"))
