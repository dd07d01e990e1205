"""
Module: production_kernel.domain.dtos
Responsibility: Immutable value objects passed between the store and the
    validation components.  Services never hand ORM instances around; every
    read from ProductionStore returns one of these.
Architecture position: Kernel > Domain.  Pure, no I/O, no ORM imports.

Invariants enforced:
    - All records are frozen dataclasses.
    - Quantities are Decimal; pieces on stock units stay string-encoded
      exactly as stored (parse with db.types.parse_pieces).
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class EntryStatus(str, Enum):
    """Lifecycle status of a production entry.

    ``validating`` is the lock state held while one submit is in flight.
    """

    DRAFT = "draft"
    VALIDATING = "validating"
    VALIDATED = "validated"


class EntryType(str, Enum):
    STANDARD = "standard"
    CORRECTION = "correction"


class StockStatus(str, Enum):
    """Status of a stock unit.  ``consumed`` means nothing is left."""

    RECEIVED = "received"
    PRODUCED = "produced"
    CONSUMED = "consumed"


class WorkFormula(str, Enum):
    """How planned work is derived for a process."""

    LENGTH_X_PIECES = "length_x_pieces"
    AREA = "area"
    VOLUME = "volume"
    PIECES = "pieces"
    OUTPUT_PACKAGES = "output_packages"
    HOURS = "hours"


@dataclass(frozen=True)
class OutputAttributes:
    """Descriptive attributes a package must carry to be stocked."""

    product: str | None = None
    species: str | None = None
    humidity: str | None = None
    product_type: str | None = None
    processing: str | None = None
    certification: str | None = None
    quality: str | None = None

    def missing(self, required: tuple[str, ...]) -> tuple[str, ...]:
        """Names from ``required`` that are unset or blank."""
        return tuple(
            name for name in required
            if not (getattr(self, name, None) or "").strip()
        )

    def as_dict(self) -> dict[str, str | None]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Dimensions:
    """Millimetre dimensions as entered; ranges like "100-150" are kept verbatim."""

    thickness: str | None = None
    width: str | None = None
    length: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class ProcessRecord:
    id: UUID
    code: str
    name: str
    work_formula: WorkFormula | None = None


@dataclass(frozen=True)
class EntryTotals:
    """Volumes and yield percentages recomputed on every validation."""

    input_volume: Decimal
    output_volume: Decimal
    outcome_percentage: Decimal
    waste_percentage: Decimal


@dataclass(frozen=True)
class EntryRecord:
    id: UUID
    tenant_id: UUID
    owner_id: UUID
    process_id: UUID
    production_date: date
    status: EntryStatus
    entry_type: EntryType = EntryType.STANDARD
    corrects_entry_id: UUID | None = None
    totals: EntryTotals | None = None
    planned_work: Decimal | None = None
    actual_work: Decimal | None = None
    invoice_number: str | None = None
    notes: str | None = None
    validated_at: datetime | None = None


@dataclass(frozen=True)
class InputLine:
    """One consumed stock unit on an entry.  pieces_used None = volume only."""

    id: UUID
    entry_id: UUID
    stock_unit_id: UUID
    pieces_used: int | None
    volume_consumed: Decimal


@dataclass(frozen=True)
class OutputRow:
    """A staged output as stored on the entry, before materialization."""

    id: UUID
    entry_id: UUID
    identifier: str | None
    attributes: OutputAttributes = field(default_factory=OutputAttributes)
    dimensions: Dimensions = field(default_factory=Dimensions)
    pieces: str | None = None
    volume: Decimal | None = None
    notes: str | None = None
    sort_order: int = 0


@dataclass(frozen=True)
class StockUnitState:
    """Full image of a stock unit.  Used both as a read and as an upsert payload."""

    id: UUID
    tenant_id: UUID
    identifier: str
    pieces: str | None
    volume: Decimal
    status: StockStatus
    origin_entry_id: UUID | None = None
    sequence: int | None = None
    attributes: OutputAttributes = field(default_factory=OutputAttributes)
    dimensions: Dimensions = field(default_factory=Dimensions)
    notes: str | None = None


@dataclass(frozen=True)
class ConsumptionRecord:
    """Stock actually removed from one unit by one validated entry."""

    entry_id: UUID
    stock_unit_id: UUID
    pieces_deducted: int | None
    volume_deducted: Decimal
    prior_status: StockStatus


@dataclass(frozen=True)
class WorkInput:
    """What the planned-work formulas need from one input line."""

    pieces_used: int | None
    volume: Decimal
    length: str | None = None
    width: str | None = None
