"""
Module: production_kernel.services.sql_store
Responsibility: SQLAlchemy implementation of ProductionStore.  Maps ORM rows
    to domain DTOs and runs every write in its own short session.
Architecture position: Kernel > Services.  The only service module that
    imports models/.

Invariants enforced:
    - One session per call, committed on exit (session_scope).  No session
      outlives a call, so a committed status change is immediately visible
      to every other worker.
    - Conditional status updates check rowcount == 1.
    - SQLAlchemyError never escapes; it is wrapped in PersistenceFailureError.

Failure modes:
    - PersistenceFailureError on any database error, including unique
      constraint violations raced past the service-level checks.
"""

from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from production_kernel.db.engine import session_scope
from production_kernel.domain.dtos import (
    ConsumptionRecord,
    Dimensions,
    EntryRecord,
    EntryStatus,
    EntryTotals,
    EntryType,
    InputLine,
    OutputAttributes,
    OutputRow,
    ProcessRecord,
    StockStatus,
    StockUnitState,
    WorkFormula,
)
from production_kernel.exceptions import PersistenceFailureError
from production_kernel.logging_config import get_logger
from production_kernel.models import (
    Process,
    ProductionEntry,
    ProductionInput,
    ProductionOutput,
    StockConsumption,
    StockUnit,
)
from production_kernel.services.store import ProductionStore

logger = get_logger("services.sql_store")

_ATTRIBUTE_COLUMNS = (
    "product",
    "species",
    "humidity",
    "product_type",
    "processing",
    "certification",
    "quality",
)
_DIMENSION_COLUMNS = ("thickness", "width", "length")
_EDITABLE_ENTRY_FIELDS = frozenset({"planned_work", "actual_work", "invoice_number", "notes"})


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _attributes(row) -> OutputAttributes:
    return OutputAttributes(**{name: getattr(row, name) for name in _ATTRIBUTE_COLUMNS})


def _dimensions(row) -> Dimensions:
    return Dimensions(**{name: getattr(row, name) for name in _DIMENSION_COLUMNS})


def _assign_descriptive(row, attributes: OutputAttributes, dimensions: Dimensions) -> None:
    for name, value in attributes.as_dict().items():
        setattr(row, name, value)
    for name, value in dimensions.as_dict().items():
        setattr(row, name, value)


def _entry_record(row: ProductionEntry) -> EntryRecord:
    totals = None
    if row.total_input_volume is not None and row.total_output_volume is not None:
        totals = EntryTotals(
            input_volume=row.total_input_volume,
            output_volume=row.total_output_volume,
            outcome_percentage=row.outcome_percentage or Decimal("0"),
            waste_percentage=row.waste_percentage or Decimal("0"),
        )
    return EntryRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        owner_id=row.owner_id,
        process_id=row.process_id,
        production_date=row.production_date,
        status=EntryStatus(row.status),
        entry_type=EntryType(row.entry_type),
        corrects_entry_id=row.corrects_entry_id,
        totals=totals,
        planned_work=row.planned_work,
        actual_work=row.actual_work,
        invoice_number=row.invoice_number,
        notes=row.notes,
        validated_at=row.validated_at,
    )


def _input_line(row: ProductionInput) -> InputLine:
    return InputLine(
        id=row.id,
        entry_id=row.entry_id,
        stock_unit_id=row.stock_unit_id,
        pieces_used=row.pieces_used,
        volume_consumed=row.volume_consumed,
    )


def _output_row(row: ProductionOutput) -> OutputRow:
    return OutputRow(
        id=row.id,
        entry_id=row.entry_id,
        identifier=row.identifier,
        attributes=_attributes(row),
        dimensions=_dimensions(row),
        pieces=row.pieces,
        volume=row.volume,
        notes=row.notes,
        sort_order=row.sort_order,
    )


def _unit_state(row: StockUnit) -> StockUnitState:
    return StockUnitState(
        id=row.id,
        tenant_id=row.tenant_id,
        identifier=row.identifier,
        pieces=row.pieces,
        volume=row.volume,
        status=StockStatus(row.status),
        origin_entry_id=row.origin_entry_id,
        sequence=row.sequence,
        attributes=_attributes(row),
        dimensions=_dimensions(row),
        notes=row.notes,
    )


def _consumption_record(row: StockConsumption) -> ConsumptionRecord:
    return ConsumptionRecord(
        entry_id=row.entry_id,
        stock_unit_id=row.stock_unit_id,
        pieces_deducted=row.pieces_deducted,
        volume_deducted=row.volume_deducted,
        prior_status=StockStatus(row.prior_status),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlProductionStore(ProductionStore):
    """
    ProductionStore over SQLAlchemy 2.x ORM.

    Args:
        session_factory: Factory from db.engine.get_session_factory().
            Each call opens, commits and closes its own session.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @contextmanager
    def _unit_of_work(self, operation: str) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "store_operation_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise PersistenceFailureError(operation, str(exc)) from exc

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: UUID) -> EntryRecord | None:
        with self._unit_of_work("get_entry") as session:
            row = session.get(ProductionEntry, entry_id)
            return _entry_record(row) if row is not None else None

    def get_process(self, process_id: UUID) -> ProcessRecord | None:
        with self._unit_of_work("get_process") as session:
            row = session.get(Process, process_id)
            if row is None:
                return None
            return ProcessRecord(
                id=row.id,
                code=row.code,
                name=row.name,
                work_formula=WorkFormula(row.work_formula) if row.work_formula else None,
            )

    def cas_update_entry_status(
        self,
        entry_id: UUID,
        expected: EntryStatus,
        next_status: EntryStatus,
    ) -> bool:
        with self._unit_of_work("cas_update_entry_status") as session:
            result = session.execute(
                update(ProductionEntry)
                .where(
                    ProductionEntry.id == entry_id,
                    ProductionEntry.status == expected.value,
                )
                .values(status=next_status.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def finalize_entry(
        self,
        entry_id: UUID,
        totals: EntryTotals,
        planned_work: Decimal | None,
        validated_at: datetime,
    ) -> bool:
        with self._unit_of_work("finalize_entry") as session:
            result = session.execute(
                update(ProductionEntry)
                .where(
                    ProductionEntry.id == entry_id,
                    ProductionEntry.status == EntryStatus.VALIDATING.value,
                )
                .values(
                    status=EntryStatus.VALIDATED.value,
                    total_input_volume=totals.input_volume,
                    total_output_volume=totals.output_volume,
                    outcome_percentage=totals.outcome_percentage,
                    waste_percentage=totals.waste_percentage,
                    planned_work=planned_work,
                    validated_at=validated_at,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def reset_entry(self, entry_id: UUID) -> None:
        with self._unit_of_work("reset_entry") as session:
            session.execute(
                update(ProductionEntry)
                .where(ProductionEntry.id == entry_id)
                .values(
                    status=EntryStatus.DRAFT.value,
                    total_input_volume=None,
                    total_output_volume=None,
                    outcome_percentage=None,
                    waste_percentage=None,
                    validated_at=None,
                )
                .execution_options(synchronize_session=False)
            )

    def create_entry(self, entry: EntryRecord) -> None:
        with self._unit_of_work("create_entry") as session:
            session.add(
                ProductionEntry(
                    id=entry.id,
                    tenant_id=entry.tenant_id,
                    owner_id=entry.owner_id,
                    process_id=entry.process_id,
                    production_date=entry.production_date,
                    status=entry.status.value,
                    entry_type=entry.entry_type.value,
                    corrects_entry_id=entry.corrects_entry_id,
                    planned_work=entry.planned_work,
                    actual_work=entry.actual_work,
                    invoice_number=entry.invoice_number,
                    notes=entry.notes,
                )
            )

    def update_entry_fields(self, entry_id: UUID, **values: object) -> None:
        unknown = set(values) - _EDITABLE_ENTRY_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        with self._unit_of_work("update_entry_fields") as session:
            session.execute(
                update(ProductionEntry)
                .where(ProductionEntry.id == entry_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    def delete_entry(self, entry_id: UUID) -> None:
        with self._unit_of_work("delete_entry") as session:
            session.execute(
                delete(StockConsumption).where(StockConsumption.entry_id == entry_id)
            )
            row = session.get(ProductionEntry, entry_id)
            if row is not None:
                session.delete(row)

    def list_corrections(self, entry_id: UUID) -> list[EntryRecord]:
        with self._unit_of_work("list_corrections") as session:
            rows = session.scalars(
                select(ProductionEntry).where(ProductionEntry.corrects_entry_id == entry_id)
            ).all()
            return [_entry_record(r) for r in rows]

    # ------------------------------------------------------------------
    # Staged rows
    # ------------------------------------------------------------------

    def list_inputs(self, entry_id: UUID) -> list[InputLine]:
        with self._unit_of_work("list_inputs") as session:
            rows = session.scalars(
                select(ProductionInput)
                .where(ProductionInput.entry_id == entry_id)
                .order_by(ProductionInput.created_at, ProductionInput.id)
            ).all()
            return [_input_line(r) for r in rows]

    def list_outputs(self, entry_id: UUID) -> list[OutputRow]:
        with self._unit_of_work("list_outputs") as session:
            rows = session.scalars(
                select(ProductionOutput)
                .where(ProductionOutput.entry_id == entry_id)
                .order_by(ProductionOutput.sort_order, ProductionOutput.id)
            ).all()
            return [_output_row(r) for r in rows]

    def get_input(self, input_id: UUID) -> InputLine | None:
        with self._unit_of_work("get_input") as session:
            row = session.get(ProductionInput, input_id)
            return _input_line(row) if row is not None else None

    def save_input(self, line: InputLine) -> None:
        with self._unit_of_work("save_input") as session:
            self._merge_input(session, line)

    @staticmethod
    def _merge_input(session: Session, line: InputLine) -> None:
        row = session.get(ProductionInput, line.id)
        if row is None:
            row = ProductionInput(id=line.id, entry_id=line.entry_id)
            session.add(row)
        row.stock_unit_id = line.stock_unit_id
        row.pieces_used = line.pieces_used
        row.volume_consumed = line.volume_consumed

    def delete_input(self, input_id: UUID) -> None:
        with self._unit_of_work("delete_input") as session:
            session.execute(delete(ProductionInput).where(ProductionInput.id == input_id))

    def save_output(self, row: OutputRow) -> None:
        with self._unit_of_work("save_output") as session:
            self._merge_output(session, row)

    @staticmethod
    def _merge_output(session: Session, output: OutputRow) -> None:
        row = session.get(ProductionOutput, output.id)
        if row is None:
            row = ProductionOutput(id=output.id, entry_id=output.entry_id)
            session.add(row)
        row.identifier = output.identifier
        _assign_descriptive(row, output.attributes, output.dimensions)
        row.pieces = output.pieces
        row.volume = output.volume
        row.notes = output.notes
        row.sort_order = output.sort_order

    def delete_outputs(self, output_ids: Iterable[UUID]) -> None:
        ids = list(output_ids)
        if not ids:
            return
        with self._unit_of_work("delete_outputs") as session:
            session.execute(delete(ProductionOutput).where(ProductionOutput.id.in_(ids)))

    def replace_staged_rows(
        self,
        entry_id: UUID,
        inputs: Iterable[InputLine],
        outputs: Iterable[OutputRow],
    ) -> None:
        with self._unit_of_work("replace_staged_rows") as session:
            session.execute(delete(ProductionInput).where(ProductionInput.entry_id == entry_id))
            session.execute(delete(ProductionOutput).where(ProductionOutput.entry_id == entry_id))
            session.flush()
            session.expunge_all()
            for line in inputs:
                self._merge_input(session, line)
            for output in outputs:
                self._merge_output(session, output)

    # ------------------------------------------------------------------
    # Stock units
    # ------------------------------------------------------------------

    def get_stock_units(self, ids: Iterable[UUID]) -> dict[UUID, StockUnitState]:
        wanted = list(ids)
        if not wanted:
            return {}
        with self._unit_of_work("get_stock_units") as session:
            rows = session.scalars(select(StockUnit).where(StockUnit.id.in_(wanted))).all()
            return {r.id: _unit_state(r) for r in rows}

    def list_stock_units_by_origin(self, entry_id: UUID) -> list[StockUnitState]:
        with self._unit_of_work("list_stock_units_by_origin") as session:
            rows = session.scalars(
                select(StockUnit)
                .where(StockUnit.origin_entry_id == entry_id)
                .order_by(StockUnit.sequence, StockUnit.id)
            ).all()
            return [_unit_state(r) for r in rows]

    def upsert_stock_unit(self, unit: StockUnitState) -> None:
        with self._unit_of_work("upsert_stock_unit") as session:
            row = session.get(StockUnit, unit.id)
            if row is None:
                row = StockUnit(id=unit.id)
                session.add(row)
            row.tenant_id = unit.tenant_id
            row.origin_entry_id = unit.origin_entry_id
            row.identifier = unit.identifier
            row.sequence = unit.sequence
            row.pieces = unit.pieces
            row.volume = unit.volume
            row.status = unit.status.value
            _assign_descriptive(row, unit.attributes, unit.dimensions)
            row.notes = unit.notes

    def delete_stock_units(self, ids: Iterable[UUID]) -> None:
        doomed = list(ids)
        if not doomed:
            return
        with self._unit_of_work("delete_stock_units") as session:
            session.execute(delete(StockUnit).where(StockUnit.id.in_(doomed)))

    def find_stock_units_by_identifier(
        self,
        tenant_id: UUID,
        identifiers: Iterable[str],
    ) -> list[StockUnitState]:
        wanted = [i for i in identifiers if i]
        if not wanted:
            return []
        with self._unit_of_work("find_stock_units_by_identifier") as session:
            rows = session.scalars(
                select(StockUnit).where(
                    StockUnit.tenant_id == tenant_id,
                    StockUnit.identifier.in_(wanted),
                )
            ).all()
            return [_unit_state(r) for r in rows]

    def find_inputs_referencing_stock_units(
        self,
        ids: Iterable[UUID],
        exclude_entry_id: UUID | None = None,
    ) -> list[InputLine]:
        wanted = list(ids)
        if not wanted:
            return []
        with self._unit_of_work("find_inputs_referencing_stock_units") as session:
            stmt = select(ProductionInput).where(ProductionInput.stock_unit_id.in_(wanted))
            if exclude_entry_id is not None:
                stmt = stmt.where(ProductionInput.entry_id != exclude_entry_id)
            return [_input_line(r) for r in session.scalars(stmt).all()]

    def list_identifiers_like(self, tenant_id: UUID, prefix: str) -> list[str]:
        pattern = f"{prefix}%"
        with self._unit_of_work("list_identifiers_like") as session:
            stocked = session.scalars(
                select(StockUnit.identifier).where(
                    StockUnit.tenant_id == tenant_id,
                    StockUnit.identifier.like(pattern),
                )
            ).all()
            staged = session.scalars(
                select(ProductionOutput.identifier)
                .join(ProductionEntry, ProductionOutput.entry_id == ProductionEntry.id)
                .where(
                    ProductionEntry.tenant_id == tenant_id,
                    ProductionOutput.identifier.like(pattern),
                )
            ).all()
            return [*stocked, *staged]

    # ------------------------------------------------------------------
    # Consumption records
    # ------------------------------------------------------------------

    def list_consumptions(self, entry_id: UUID) -> list[ConsumptionRecord]:
        with self._unit_of_work("list_consumptions") as session:
            rows = session.scalars(
                select(StockConsumption)
                .where(StockConsumption.entry_id == entry_id)
                .order_by(StockConsumption.created_at, StockConsumption.id)
            ).all()
            return [_consumption_record(r) for r in rows]

    def save_consumption(self, record: ConsumptionRecord) -> None:
        with self._unit_of_work("save_consumption") as session:
            row = session.scalars(
                select(StockConsumption).where(
                    StockConsumption.entry_id == record.entry_id,
                    StockConsumption.stock_unit_id == record.stock_unit_id,
                )
            ).one_or_none()
            if row is None:
                row = StockConsumption(
                    entry_id=record.entry_id,
                    stock_unit_id=record.stock_unit_id,
                )
                session.add(row)
            row.pieces_deducted = record.pieces_deducted
            row.volume_deducted = record.volume_deducted
            row.prior_status = record.prior_status.value

    def delete_consumptions(
        self,
        entry_id: UUID,
        stock_unit_ids: Iterable[UUID] | None = None,
    ) -> int:
        with self._unit_of_work("delete_consumptions") as session:
            stmt = delete(StockConsumption).where(StockConsumption.entry_id == entry_id)
            if stock_unit_ids is not None:
                ids = list(stock_unit_ids)
                if not ids:
                    return 0
                stmt = stmt.where(StockConsumption.stock_unit_id.in_(ids))
            return session.execute(stmt).rowcount
