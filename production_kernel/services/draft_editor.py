"""
DraftEditor -- staged input and output editing for production entries.

Responsibility:
    Adds, changes and removes the input lines and staged output rows of a
    draft entry, records work figures, and runs batch edits of a validated
    entry through re-validation.

Architecture position:
    Kernel > Services.  Writes staged rows only; stock units are never
    touched here.  Stock moves happen in ValidationService.

Invariants enforced:
    - Input lines carry positive quantities that the stock unit can cover,
      counting every other line of the same entry drawing from that unit.
    - Staged rows of a validated entry change only through ``apply_edits``,
      which re-validates; a failed re-validation puts the previous rows back.
    - Output sort order is the position in the list passed to save_outputs.

Failure modes:
    - UnauthorizedError, EntryNotFoundError, PreconditionFailedError.
    - InvalidInputError for non-positive or malformed quantities.
    - InsufficientStockError when an input asks for more than is available.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from uuid import UUID, uuid4

from production_config import get_active_config
from production_config.schema import ProductionConfig
from production_kernel.db.types import ZERO, parse_pieces, quantize
from production_kernel.domain import metrics
from production_kernel.domain.dtos import (
    Dimensions,
    EntryRecord,
    EntryStatus,
    InputLine,
    OutputAttributes,
    OutputRow,
    WorkInput,
)
from production_kernel.exceptions import (
    EntryNotFoundError,
    InputNotFoundError,
    InsufficientStockError,
    InvalidInputError,
    PreconditionFailedError,
    ProcessNotFoundError,
    StockUnitNotFoundError,
    UnauthorizedError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.services.authorization import Actor, Authorizer
from production_kernel.services.store import ProductionStore
from production_kernel.services.validation_service import (
    ValidationResult,
    ValidationService,
)

logger = get_logger("services.draft_editor")


@dataclass(frozen=True)
class OutputDraft:
    """An output row as submitted by the caller.  ``id`` None means new."""

    identifier: str | None = None
    attributes: OutputAttributes = field(default_factory=OutputAttributes)
    dimensions: Dimensions = field(default_factory=Dimensions)
    pieces: str | None = None
    volume: Decimal | None = None
    notes: str | None = None
    id: UUID | None = None


class DraftEditor:
    """
    Editing operations on an entry's staged rows.

    Args:
        store: Persistence collaborator.
        authorizer: Consulted with ``can_edit``.
        validation: Used by ``apply_edits`` to re-validate.
        config: Defaults to get_active_config().
    """

    def __init__(
        self,
        store: ProductionStore,
        authorizer: Authorizer,
        validation: ValidationService,
        config: ProductionConfig | None = None,
    ):
        self._store = store
        self._authorizer = authorizer
        self._validation = validation
        self._config = config or get_active_config()

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def add_input(
        self,
        actor: Actor,
        entry_id: UUID,
        stock_unit_id: UUID,
        pieces_used: int | None = None,
        volume: Decimal | None = None,
    ) -> InputLine:
        """
        Stage consumption of a stock unit.

        With ``pieces_used`` and no ``volume`` the volume is the unit's
        volume scaled by the share of pieces taken.
        """
        entry = self._editable_draft(actor, entry_id)
        line = self._checked_line(
            entry,
            line_id=uuid4(),
            stock_unit_id=stock_unit_id,
            pieces_used=pieces_used,
            volume=volume,
        )
        self._store.save_input(line)
        logger.info(
            "input_added",
            extra={"entry_id": str(entry_id), "stock_unit_id": str(stock_unit_id)},
        )
        return line

    def update_input(
        self,
        actor: Actor,
        input_id: UUID,
        pieces_used: int | None = None,
        volume: Decimal | None = None,
    ) -> InputLine:
        current = self._store.get_input(input_id)
        if current is None:
            raise InputNotFoundError(input_id)
        entry = self._editable_draft(actor, current.entry_id)
        line = self._checked_line(
            entry,
            line_id=current.id,
            stock_unit_id=current.stock_unit_id,
            pieces_used=pieces_used,
            volume=volume,
        )
        self._store.save_input(line)
        logger.info("input_updated", extra={"input_id": str(input_id)})
        return line

    def remove_input(self, actor: Actor, input_id: UUID) -> None:
        current = self._store.get_input(input_id)
        if current is None:
            raise InputNotFoundError(input_id)
        self._editable_draft(actor, current.entry_id)
        self._store.delete_input(input_id)
        logger.info("input_removed", extra={"input_id": str(input_id)})

    def _checked_line(
        self,
        entry: EntryRecord,
        line_id: UUID,
        stock_unit_id: UUID,
        pieces_used: int | None,
        volume: Decimal | None,
    ) -> InputLine:
        """
        Build an input line and check it against available stock.

        Other lines of the same entry drawing from the same unit count
        against what is available.
        """
        if pieces_used is None and volume is None:
            raise InvalidInputError("volume", None, "pieces or volume is required")
        if pieces_used is not None and pieces_used <= 0:
            raise InvalidInputError("pieces_used", pieces_used, "must be positive")
        if volume is not None and volume <= ZERO:
            raise InvalidInputError("volume", volume, "must be positive")

        unit = self._store.get_stock_units([stock_unit_id]).get(stock_unit_id)
        if unit is None:
            raise StockUnitNotFoundError(stock_unit_id)
        if unit.tenant_id != entry.tenant_id:
            raise StockUnitNotFoundError(stock_unit_id)

        siblings = [
            line for line in self._store.list_inputs(entry.id)
            if line.stock_unit_id == stock_unit_id and line.id != line_id
        ]
        unit_pieces = parse_pieces(unit.pieces)

        if pieces_used is not None and unit_pieces is not None:
            available = unit_pieces - sum(line.pieces_used or 0 for line in siblings)
            if pieces_used > available:
                raise InsufficientStockError(unit.id, "pieces", pieces_used, max(available, 0))
            if volume is None:
                volume = quantize(
                    unit.volume * pieces_used / unit_pieces,
                    self._config.quantities.volume_places,
                )
        elif volume is None:
            raise InvalidInputError(
                "volume", None, "unit has no countable pieces; give a volume"
            )

        available_volume = unit.volume - sum(line.volume_consumed for line in siblings)
        if volume > available_volume:
            raise InsufficientStockError(unit.id, "m3", volume, max(available_volume, ZERO))

        return InputLine(
            id=line_id,
            entry_id=entry.id,
            stock_unit_id=stock_unit_id,
            pieces_used=pieces_used,
            volume_consumed=volume,
        )

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def save_outputs(
        self,
        actor: Actor,
        entry_id: UUID,
        drafts: list[OutputDraft],
    ) -> list[OutputRow]:
        """
        Make the entry's staged outputs equal ``drafts``.

        Drafts without an id are inserted, drafts with an id update that
        row, and rows not listed are deleted.
        """
        entry = self._editable_draft(actor, entry_id)
        rows = self._output_rows(entry, drafts)

        existing = {row.id for row in self._store.list_outputs(entry_id)}
        kept = {row.id for row in rows}
        self._store.delete_outputs(existing - kept)
        for row in rows:
            self._store.save_output(row)

        logger.info(
            "outputs_saved",
            extra={
                "entry_id": str(entry_id),
                "saved": len(rows),
                "deleted": len(existing - kept),
            },
        )
        return rows

    def _output_rows(self, entry: EntryRecord, drafts: list[OutputDraft]) -> list[OutputRow]:
        existing = {row.id for row in self._store.list_outputs(entry.id)}
        rows: list[OutputRow] = []
        for position, draft in enumerate(drafts):
            if draft.id is not None and draft.id not in existing:
                raise InvalidInputError("id", draft.id, "not an output of this entry")
            volume = draft.volume
            if volume is None:
                volume = metrics.calculate_volume(
                    draft.dimensions.thickness,
                    draft.dimensions.width,
                    draft.dimensions.length,
                    draft.pieces,
                )
            if volume is not None and volume < ZERO:
                raise InvalidInputError("volume", volume, "must not be negative")
            rows.append(
                OutputRow(
                    id=draft.id or uuid4(),
                    entry_id=entry.id,
                    identifier=(draft.identifier or "").strip() or None,
                    attributes=draft.attributes,
                    dimensions=draft.dimensions,
                    pieces=draft.pieces,
                    volume=volume,
                    notes=draft.notes,
                    sort_order=position,
                )
            )
        return rows

    # ------------------------------------------------------------------
    # Entry fields
    # ------------------------------------------------------------------

    def record_work(
        self,
        actor: Actor,
        entry_id: UUID,
        actual_work: Decimal | None,
    ) -> Decimal | None:
        """Store actual work and refresh planned work.  Returns planned work."""
        entry = self._editable(actor, entry_id)
        if actual_work is not None and actual_work < ZERO:
            raise InvalidInputError("actual_work", actual_work, "must not be negative")

        process = self._store.get_process(entry.process_id)
        if process is None:
            raise ProcessNotFoundError(entry.process_id)

        inputs = self._store.list_inputs(entry_id)
        units = self._store.get_stock_units({line.stock_unit_id for line in inputs})
        planned = metrics.planned_work(
            process.work_formula,
            [
                WorkInput(
                    pieces_used=line.pieces_used,
                    volume=line.volume_consumed,
                    length=units[line.stock_unit_id].dimensions.length
                    if line.stock_unit_id in units else None,
                    width=units[line.stock_unit_id].dimensions.width
                    if line.stock_unit_id in units else None,
                )
                for line in inputs
            ],
            output_count=len(self._store.list_outputs(entry_id)),
        )
        self._store.update_entry_fields(
            entry_id, planned_work=planned, actual_work=actual_work
        )
        logger.info(
            "work_recorded",
            extra={"entry_id": str(entry_id), "planned_work": planned, "actual_work": actual_work},
        )
        return planned

    def set_invoice_number(
        self,
        actor: Actor,
        entry_id: UUID,
        invoice_number: str | None,
    ) -> str | None:
        self._editable(actor, entry_id)
        value = (invoice_number or "").strip() or None
        self._store.update_entry_fields(entry_id, invoice_number=value)
        return value

    # ------------------------------------------------------------------
    # Batch edit of a validated entry
    # ------------------------------------------------------------------

    def apply_edits(
        self,
        actor: Actor,
        entry_id: UUID,
        inputs: list[InputLine],
        outputs: list[OutputDraft],
    ) -> ValidationResult:
        """
        Replace a validated entry's staged rows and re-validate it.

        On any failure result the staged rows are put back as they were, so
        the entry, its stock and its rows all match the last validation.
        """
        with LogContext.bind(entry_id=str(entry_id), operation="apply_edits"):
            entry = self._load(entry_id)
            if not self._authorizer.can_edit(actor, entry):
                raise UnauthorizedError(actor.id, "edit", entry_id)
            if entry.status != EntryStatus.VALIDATED:
                raise PreconditionFailedError(
                    entry_id, "batch edits apply to validated entries"
                )

            for line in inputs:
                if line.volume_consumed <= ZERO:
                    raise InvalidInputError("volume", line.volume_consumed, "must be positive")
                if line.pieces_used is not None and line.pieces_used <= 0:
                    raise InvalidInputError("pieces_used", line.pieces_used, "must be positive")

            snapshot_inputs = self._store.list_inputs(entry_id)
            snapshot_outputs = self._store.list_outputs(entry_id)

            new_inputs = [replace(line, entry_id=entry_id) for line in inputs]
            new_outputs = self._output_rows(entry, outputs)
            self._store.replace_staged_rows(entry_id, new_inputs, new_outputs)

            result = self._validation.submit(actor, entry_id)
            if not result.is_success:
                self._store.replace_staged_rows(entry_id, snapshot_inputs, snapshot_outputs)
                logger.warning(
                    "edits_reverted",
                    extra={"code": result.code, "status": result.status.value},
                )
            return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, entry_id: UUID) -> EntryRecord:
        entry = self._store.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def _editable(self, actor: Actor, entry_id: UUID) -> EntryRecord:
        entry = self._load(entry_id)
        if entry.status == EntryStatus.VALIDATING:
            raise PreconditionFailedError(entry_id, "entry is being validated")
        if not self._authorizer.can_edit(actor, entry):
            raise UnauthorizedError(actor.id, "edit", entry_id)
        return entry

    def _editable_draft(self, actor: Actor, entry_id: UUID) -> EntryRecord:
        entry = self._editable(actor, entry_id)
        if entry.status != EntryStatus.DRAFT:
            raise PreconditionFailedError(
                entry_id, "staged rows of a validated entry change through apply_edits"
            )
        return entry
