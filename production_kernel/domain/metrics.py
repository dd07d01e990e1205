"""
Module: production_kernel.domain.metrics
Responsibility: Pure calculations over an entry's line items: volume totals,
    outcome and waste percentages, planned work, and the volume of a package
    from its dimensions.
Architecture position: Kernel > Domain.  Pure functions, zero I/O.

Invariants enforced:
    - outcome + waste == 100 for every computed EntryTotals.
    - outcome is 0 unless both input and output volume are positive.
    - planned work is None whenever nothing contributes a positive amount.

Failure modes:
    - None.  Unparseable dimensions contribute nothing; they never raise.
"""

from collections.abc import Iterable
from decimal import Decimal

from production_kernel.db.types import HUNDRED, ZERO, decimal_from, quantize
from production_kernel.domain.dtos import EntryTotals, WorkFormula, WorkInput

MM_PER_M = Decimal("1000")
MM2_PER_M2 = Decimal("1000000")
MM3_PER_M3 = Decimal("1000000000")

DEFAULT_PERCENT_PLACES = 4


def totals(
    input_volumes: Iterable[Decimal],
    output_volumes: Iterable[Decimal | None],
    percent_places: int = DEFAULT_PERCENT_PLACES,
) -> EntryTotals:
    """
    Sum input and output volume and derive yield percentages.

    Output rows without a volume count as zero.
    """
    input_volume = sum(input_volumes, ZERO)
    output_volume = sum((v for v in output_volumes if v is not None), ZERO)

    if input_volume > ZERO and output_volume > ZERO:
        outcome = quantize(HUNDRED * output_volume / input_volume, percent_places)
    else:
        outcome = quantize(ZERO, percent_places)

    return EntryTotals(
        input_volume=input_volume,
        output_volume=output_volume,
        outcome_percentage=outcome,
        waste_percentage=HUNDRED - outcome,
    )


def _positive(value: str | None) -> Decimal | None:
    try:
        parsed = decimal_from(value)
    except ValueError:
        return None
    if parsed is None or not parsed.is_finite() or parsed <= ZERO:
        return None
    return parsed


def planned_work(
    formula: WorkFormula | None,
    work_inputs: Iterable[WorkInput],
    output_count: int = 0,
) -> Decimal | None:
    """
    Planned work for a process formula.

    length_x_pieces and area are rounded to 2 places, volume to 3, pieces
    and output_packages are whole numbers.  hours is entered by hand, so it
    and a missing formula give None.
    """
    if formula is None or formula == WorkFormula.HOURS:
        return None

    if formula == WorkFormula.OUTPUT_PACKAGES:
        return Decimal(output_count) if output_count > 0 else None

    total = ZERO
    for item in work_inputs:
        pieces = item.pieces_used or 0
        if formula == WorkFormula.LENGTH_X_PIECES:
            length = _positive(item.length)
            if length is not None and pieces > 0:
                total += length / MM_PER_M * pieces
        elif formula == WorkFormula.AREA:
            length = _positive(item.length)
            width = _positive(item.width)
            if length is not None and width is not None and pieces > 0:
                total += length * width * pieces / MM2_PER_M2
        elif formula == WorkFormula.VOLUME:
            total += item.volume or ZERO
        elif formula == WorkFormula.PIECES:
            total += pieces

    if total <= ZERO:
        return None

    if formula in (WorkFormula.LENGTH_X_PIECES, WorkFormula.AREA):
        return quantize(total, 2)
    if formula == WorkFormula.VOLUME:
        return quantize(total, 3)
    return total


def is_range(value: str) -> bool:
    """True for dimension ranges such as "100-150"."""
    return "-" in value.strip()[1:]


def calculate_volume(
    thickness: str | None,
    width: str | None,
    length: str | None,
    pieces: str | None,
) -> Decimal | None:
    """
    Volume in m3 of ``pieces`` boards of the given millimetre dimensions.

    Returns None for blanks, ranges, "-" and non-positive values, since
    such packages are measured rather than computed.
    """
    values = (thickness, width, length, pieces)
    if any(v is None or not v.strip() for v in values):
        return None
    if any(is_range(v) for v in (thickness, width, length)):
        return None

    parsed = [_positive(v) for v in values]
    if any(p is None for p in parsed):
        return None

    t, w, ln, p = parsed
    return quantize(t * w * ln * p / MM3_PER_M3)
