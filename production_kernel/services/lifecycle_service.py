"""
EntryLifecycle -- creating, correcting and deleting production entries.

Responsibility:
    Opens new draft entries, opens correction entries against a validated
    entry, and deletes entries.  Deleting a validated entry takes the same
    status lock as validation, then unwinds its stock effects before the
    rows go.

Architecture position:
    Kernel > Services.  Delegates stock unwinding to
    ValidationService.unwind_validated so there is one restore path.

Invariants enforced:
    - A correction targets a validated standard entry and starts from the
      original's output units that nothing else has consumed.
    - A validated entry that has corrections, or whose outputs are consumed
      elsewhere, is never deleted.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from production_kernel.db.types import parse_pieces
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.dtos import (
    EntryRecord,
    EntryStatus,
    EntryType,
    InputLine,
    StockStatus,
)
from production_kernel.exceptions import (
    AlreadyInProgressError,
    EntryNotFoundError,
    PreconditionFailedError,
    ProcessNotFoundError,
    UnauthorizedError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.services.authorization import Actor, Authorizer, Role
from production_kernel.services.store import ProductionStore
from production_kernel.services.validation_service import ValidationService

logger = get_logger("services.lifecycle")


class EntryLifecycle:
    """
    Args:
        store: Persistence collaborator.
        authorizer: Consulted with ``can_delete``.
        validation: Supplies ``unwind_validated`` for deleting validated entries.
        clock: Default production date for corrections.
    """

    def __init__(
        self,
        store: ProductionStore,
        authorizer: Authorizer,
        validation: ValidationService,
        clock: Clock | None = None,
    ):
        self._store = store
        self._authorizer = authorizer
        self._validation = validation
        self._clock = clock or SystemClock()

    def create_entry(
        self,
        actor: Actor,
        process_id: UUID,
        production_date: date,
        notes: str | None = None,
    ) -> EntryRecord:
        """Open a draft entry owned by ``actor``."""
        if self._store.get_process(process_id) is None:
            raise ProcessNotFoundError(process_id)

        entry = EntryRecord(
            id=uuid4(),
            tenant_id=actor.tenant_id,
            owner_id=actor.id,
            process_id=process_id,
            production_date=production_date,
            status=EntryStatus.DRAFT,
            notes=notes,
        )
        self._store.create_entry(entry)
        logger.info(
            "entry_created",
            extra={"entry_id": str(entry.id), "process_id": str(process_id)},
        )
        return entry

    def create_correction(
        self,
        actor: Actor,
        original_id: UUID,
        production_date: date | None = None,
    ) -> EntryRecord:
        """
        Open a correction draft that consumes the original's free outputs.

        Raises:
            PreconditionFailedError: The original is not a validated standard
                entry, or all of its outputs are already consumed.
        """
        original = self._store.get_entry(original_id)
        if original is None:
            raise EntryNotFoundError(original_id)
        if original.tenant_id != actor.tenant_id and not actor.has(Role.SUPER_ADMIN):
            raise UnauthorizedError(actor.id, "correct", original_id)
        if original.entry_type != EntryType.STANDARD:
            raise PreconditionFailedError(original_id, "corrections cannot be corrected")
        if original.status != EntryStatus.VALIDATED:
            raise PreconditionFailedError(original_id, "only validated entries can be corrected")

        units = self._store.list_stock_units_by_origin(original_id)
        referenced = {
            line.stock_unit_id
            for line in self._store.find_inputs_referencing_stock_units(u.id for u in units)
        }
        free = [
            u for u in units
            if u.status != StockStatus.CONSUMED and u.id not in referenced
        ]
        if not free:
            raise PreconditionFailedError(original_id, "no unconsumed outputs to correct")

        correction = EntryRecord(
            id=uuid4(),
            tenant_id=original.tenant_id,
            owner_id=actor.id,
            process_id=original.process_id,
            production_date=production_date or self._clock.now().date(),
            status=EntryStatus.DRAFT,
            entry_type=EntryType.CORRECTION,
            corrects_entry_id=original_id,
        )
        self._store.create_entry(correction)
        for unit in free:
            self._store.save_input(
                InputLine(
                    id=uuid4(),
                    entry_id=correction.id,
                    stock_unit_id=unit.id,
                    pieces_used=parse_pieces(unit.pieces),
                    volume_consumed=unit.volume,
                )
            )

        logger.info(
            "correction_created",
            extra={
                "entry_id": str(correction.id),
                "corrects_entry_id": str(original_id),
                "input_count": len(free),
            },
        )
        return correction

    def delete_entry(self, actor: Actor, entry_id: UUID) -> None:
        """
        Delete an entry.

        Drafts go directly.  A validated entry is locked, its stock effects
        unwound, then deleted; if unwinding is refused the lock is released
        and the entry stays validated.

        Raises:
            AlreadyInProgressError: The entry is being validated.
            PreconditionFailedError: Corrections point at the entry.
            ReferencedElsewhereError: Its outputs are consumed elsewhere.
        """
        with LogContext.bind(entry_id=str(entry_id), operation="delete_entry"):
            entry = self._store.get_entry(entry_id)
            if entry is None:
                raise EntryNotFoundError(entry_id)
            if entry.status == EntryStatus.VALIDATING:
                raise AlreadyInProgressError(entry_id, entry.status.value)
            if not self._authorizer.can_delete(actor, entry):
                raise UnauthorizedError(actor.id, "delete", entry_id)

            if entry.status == EntryStatus.VALIDATED:
                corrections = self._store.list_corrections(entry_id)
                if corrections:
                    raise PreconditionFailedError(
                        entry_id, f"{len(corrections)} correction(s) reference this entry"
                    )
                self._validation.unwind_validated(entry)

            self._store.delete_entry(entry_id)
            logger.info(
                "entry_deleted",
                extra={"prior_status": entry.status.value, "entry_type": entry.entry_type.value},
            )
