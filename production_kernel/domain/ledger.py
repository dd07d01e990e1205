"""
Module: production_kernel.domain.ledger
Responsibility: Stock arithmetic for consuming and restoring packages.
    Computes what a deduction does to a stock unit, what the exact inverse
    is, and merges input lines that draw from the same unit.
Architecture position: Kernel > Domain.  Pure functions, zero I/O.  The
    validation service persists the images these functions return.

Invariants enforced:
    - Pieces and volume never go negative.  Over-deduction raises
      InsufficientStockError; it is never clamped.
    - Partial piece consumption scales volume proportionally, quantized to
      the configured volume precision.
    - A deduction records the quantities it actually removed, so restoring
      them returns the unit to its exact prior image.
    - Every deduction of one attempt is computed before any of them is
      written.

Failure modes:
    - InsufficientStockError when pieces or volume requested exceed stock.
    - StockUnitNotFoundError when an input references a missing unit.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from production_kernel.db.types import VOLUME_DECIMAL_PLACES, ZERO, parse_pieces, quantize
from production_kernel.domain.dtos import InputLine, StockStatus, StockUnitState
from production_kernel.exceptions import InsufficientStockError, StockUnitNotFoundError


@dataclass(frozen=True)
class NetDeduction:
    """All input lines drawing from one stock unit, summed."""

    stock_unit_id: UUID
    pieces_used: int | None
    volume_used: Decimal
    line_count: int = 1


@dataclass(frozen=True)
class Deduction:
    """
    Result of consuming stock from one unit.

    ``pieces_removed`` is None when the volume path was taken.
    """

    stock_unit_id: UUID
    new_pieces: str | None
    new_volume: Decimal
    new_status: StockStatus
    pieces_removed: int | None
    volume_removed: Decimal

    def apply_to(self, unit: StockUnitState) -> StockUnitState:
        return replace(
            unit,
            pieces=self.new_pieces,
            volume=self.new_volume,
            status=self.new_status,
        )


def deduct(
    unit: StockUnitState,
    pieces_used: int | None,
    volume_used: Decimal,
    volume_places: int = VOLUME_DECIMAL_PLACES,
) -> Deduction:
    """
    Consume stock from a unit.

    Pieces path: taken when ``pieces_used`` is given and the unit has a
    countable piece count.  Remaining volume is scaled by
    remaining / current pieces.  Otherwise the volume path subtracts
    ``volume_used`` directly.

    Raises:
        InsufficientStockError: Request exceeds what the unit holds.
    """
    current_pieces = parse_pieces(unit.pieces)

    if pieces_used is not None and current_pieces is not None:
        if pieces_used > current_pieces:
            raise InsufficientStockError(
                unit.id, "pieces", pieces_used, current_pieces
            )
        remaining = current_pieces - pieces_used
        if remaining == 0:
            return Deduction(
                stock_unit_id=unit.id,
                new_pieces="0",
                new_volume=ZERO,
                new_status=StockStatus.CONSUMED,
                pieces_removed=pieces_used,
                volume_removed=unit.volume,
            )
        new_volume = quantize(unit.volume * remaining / current_pieces, volume_places)
        return Deduction(
            stock_unit_id=unit.id,
            new_pieces=str(remaining),
            new_volume=new_volume,
            new_status=unit.status,
            pieces_removed=pieces_used,
            volume_removed=unit.volume - new_volume,
        )

    if volume_used > unit.volume:
        raise InsufficientStockError(unit.id, "m3", volume_used, unit.volume)

    new_volume = max(ZERO, unit.volume - volume_used)
    return Deduction(
        stock_unit_id=unit.id,
        new_pieces=unit.pieces,
        new_volume=new_volume,
        new_status=StockStatus.CONSUMED if new_volume == ZERO else unit.status,
        pieces_removed=None,
        volume_removed=unit.volume - new_volume,
    )


def restored_status(unit: StockUnitState) -> StockStatus:
    """Status a consumed unit returns to once stock is added back."""
    if unit.status != StockStatus.CONSUMED:
        return unit.status
    if unit.origin_entry_id is not None:
        return StockStatus.PRODUCED
    return StockStatus.RECEIVED


def restore(
    unit: StockUnitState,
    pieces_restored: int | None,
    volume_restored: Decimal,
    prior_status: StockStatus | None = None,
) -> StockUnitState:
    """
    Add stock back to a unit.  Exact inverse of ``deduct`` when given the
    quantities a Deduction reports as removed.

    ``prior_status``, when known, is the status the unit held before it was
    consumed and takes precedence over the origin-based default.
    """
    pieces = unit.pieces
    current = parse_pieces(unit.pieces)
    if pieces_restored is not None and current is not None:
        pieces = str(current + pieces_restored)

    return replace(
        unit,
        pieces=pieces,
        volume=unit.volume + volume_restored,
        status=prior_status or restored_status(unit),
    )


def merge_inputs(inputs: Iterable[InputLine]) -> dict[UUID, NetDeduction]:
    """
    Aggregate input lines by stock unit, preserving first-seen order.

    Pieces are summed only when every merged line specifies pieces;
    otherwise the merged deduction is volume-only.
    """
    merged: dict[UUID, NetDeduction] = {}
    for line in inputs:
        previous = merged.get(line.stock_unit_id)
        if previous is None:
            merged[line.stock_unit_id] = NetDeduction(
                stock_unit_id=line.stock_unit_id,
                pieces_used=line.pieces_used,
                volume_used=line.volume_consumed,
            )
            continue
        if previous.pieces_used is not None and line.pieces_used is not None:
            pieces = previous.pieces_used + line.pieces_used
        else:
            pieces = None
        merged[line.stock_unit_id] = NetDeduction(
            stock_unit_id=line.stock_unit_id,
            pieces_used=pieces,
            volume_used=previous.volume_used + line.volume_consumed,
            line_count=previous.line_count + 1,
        )
    return merged


def plan_deductions(
    merged: Mapping[UUID, NetDeduction],
    units: Mapping[UUID, StockUnitState],
    volume_places: int = VOLUME_DECIMAL_PLACES,
) -> list[tuple[StockUnitState, Deduction]]:
    """
    Compute every deduction up front.

    Returns (prior image, deduction) pairs in merge order.  Nothing is
    returned unless every deduction is feasible.

    Raises:
        StockUnitNotFoundError: An input references an unknown unit.
        InsufficientStockError: Any unit cannot cover its merged deduction.
    """
    planned: list[tuple[StockUnitState, Deduction]] = []
    for stock_unit_id, net in merged.items():
        unit = units.get(stock_unit_id)
        if unit is None:
            raise StockUnitNotFoundError(stock_unit_id)
        planned.append(
            (unit, deduct(unit, net.pieces_used, net.volume_used, volume_places))
        )
    return planned
