"""
ValidationService -- the sole entry point that moves a production entry
between draft, validating and validated.

Responsibility:
    Takes the status lock with a compare-and-swap, undoes the previous
    validation's consumption when re-validating, checks preconditions,
    deducts input stock, materializes outputs, and commits totals with a
    second conditional update.  Every failure after the lock is compensated
    by the RollbackCoordinator before a result is returned.

Architecture position:
    Kernel > Services -- imperative shell around the pure ledger and
    metrics functions.  Depends on ProductionStore and Authorizer
    abstractions only.

Invariants enforced:
    - The CAS on status is the only concurrency guard.  A miss is
      ALREADY_IN_PROGRESS; nothing is written.
    - Every deduction is computed before the first stock write, and each
      stock unit is written once per attempt (merged inputs).
    - For a validated entry, totals equal the sums of its input and output
      rows, recomputed on every validation.
    - No partial success: a failure result is only returned after rollback.

Failure modes:
    Returned as ValidationResult / RevertResult with the error's code:
    UNAUTHORIZED, NOT_FOUND, ALREADY_IN_PROGRESS, PRECONDITION_FAILED,
    INSUFFICIENT_STOCK, IDENTIFIER_CONFLICT, FK_CONSTRAINT,
    PERSISTENCE_FAILURE, PARTIALLY_RECOVERED.  Exceptions that are not
    ProductionKernelError are rolled back and re-raised.

Usage:
    service = ValidationService(store, RoleAuthorizer())
    result = service.submit(actor, entry_id)
    if not result.is_success:
        show(result.code, result.message)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from production_config import get_active_config
from production_config.schema import ProductionConfig
from production_kernel.domain import ledger, metrics
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.dtos import (
    ConsumptionRecord,
    EntryRecord,
    EntryStatus,
    EntryTotals,
    InputLine,
    OutputRow,
    StockStatus,
    StockUnitState,
    WorkInput,
)
from production_kernel.domain.workflow import find_transition, lock_action_for
from production_kernel.exceptions import (
    AlreadyInProgressError,
    EntryNotFoundError,
    PartiallyRecoveredError,
    PreconditionFailedError,
    ProcessNotFoundError,
    ProductionKernelError,
    ReferencedElsewhereError,
    UnauthorizedError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.services.authorization import Actor, Authorizer
from production_kernel.services.output_materializer import OutputMaterializer
from production_kernel.services.rollback_coordinator import RollbackCoordinator
from production_kernel.services.store import ProductionStore

logger = get_logger("services.validation")


class ValidationStatus(str, Enum):
    """Status of a submit attempt."""

    VALIDATED = "validated"
    FAILED = "failed"
    PARTIALLY_RECOVERED = "partially_recovered"


class RevertStatus(str, Enum):
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass(frozen=True)
class ValidationResult:
    """Result of ``submit``."""

    status: ValidationStatus
    entry_id: UUID
    code: str
    message: str
    totals: EntryTotals | None = None
    planned_work: Decimal | None = None
    original_code: str | None = None
    unrecovered_unit_ids: tuple[UUID, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status == ValidationStatus.VALIDATED

    @classmethod
    def failure(cls, entry_id: UUID, exc: ProductionKernelError) -> ValidationResult:
        if isinstance(exc, PartiallyRecoveredError):
            return cls(
                status=ValidationStatus.PARTIALLY_RECOVERED,
                entry_id=entry_id,
                code=exc.code,
                message=str(exc),
                original_code=exc.original_code,
                unrecovered_unit_ids=tuple(exc.unrecovered_unit_ids),
            )
        return cls(
            status=ValidationStatus.FAILED,
            entry_id=entry_id,
            code=exc.code,
            message=str(exc),
        )


@dataclass(frozen=True)
class RevertResult:
    """Result of ``revert``."""

    status: RevertStatus
    entry_id: UUID
    code: str
    message: str
    restored_count: int = 0
    deleted_count: int = 0

    @property
    def is_success(self) -> bool:
        return self.status == RevertStatus.REVERTED


@dataclass(frozen=True)
class _Snapshot:
    """Everything one attempt reads up front."""

    inputs: list[InputLine]
    outputs: list[OutputRow]
    materialized: list[StockUnitState]
    consumptions: list[ConsumptionRecord]


@dataclass(frozen=True)
class _Restoration:
    stock_unit_id: UUID
    pieces: int | None
    volume: Decimal
    prior_status: StockStatus | None
    recorded: ConsumptionRecord | None


def previous_consumption(
    entry: EntryRecord,
    consumptions: list[ConsumptionRecord],
    inputs: list[InputLine],
) -> list[_Restoration]:
    """
    What a previous validation took from stock.

    Consumption records are authoritative.  Entries validated without them
    fall back to their merged input rows.
    """
    if consumptions:
        return [
            _Restoration(
                stock_unit_id=c.stock_unit_id,
                pieces=c.pieces_deducted,
                volume=c.volume_deducted,
                prior_status=c.prior_status,
                recorded=c,
            )
            for c in consumptions
        ]
    if entry.status != EntryStatus.VALIDATED:
        return []
    return [
        _Restoration(
            stock_unit_id=net.stock_unit_id,
            pieces=net.pieces_used,
            volume=net.volume_used,
            prior_status=None,
            recorded=None,
        )
        for net in ledger.merge_inputs(inputs).values()
    ]


class ValidationService:
    """
    Drives the validation state machine for production entries.

    Args:
        store: Persistence collaborator.
        authorizer: Capability check for submit and revert.
        config: Defaults to get_active_config().
        clock: Stamps validated_at.  Defaults to SystemClock.
        sleep: Backoff sleeper handed to the RollbackCoordinator.
    """

    def __init__(
        self,
        store: ProductionStore,
        authorizer: Authorizer,
        config: ProductionConfig | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._authorizer = authorizer
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._materializer = OutputMaterializer(store)

    # ------------------------------------------------------------------
    # submit
    # ------------------------------------------------------------------

    def submit(self, actor: Actor, entry_id: UUID) -> ValidationResult:
        """
        Validate a draft, or re-validate a validated entry.

        Returns:
            ValidationResult.  Never raises ProductionKernelError.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.id),
            tenant_id=str(actor.tenant_id),
            entry_id=str(entry_id),
            operation="submit",
        ):
            logger.info("validation_started")
            t0 = time.monotonic()

            try:
                entry = self._acquire_lock(actor, entry_id)
            except ProductionKernelError as exc:
                logger.warning("validation_rejected", extra={"code": exc.code})
                return ValidationResult.failure(entry_id, exc)

            rollback = RollbackCoordinator(
                self._store,
                entry_id,
                prior_status=entry.status,
                policy=self._config.rollback,
                sleep=self._sleep,
            )

            try:
                result = self._run_locked(entry, rollback)
            except ProductionKernelError as exc:
                return self._fail(entry, exc, rollback, t0)
            except Exception:
                rollback.undo()
                logger.error("validation_crashed", exc_info=True)
                raise

            logger.info(
                "validation_completed",
                extra={
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    "input_volume": result.totals.input_volume if result.totals else None,
                    "output_volume": result.totals.output_volume if result.totals else None,
                    "revalidation": entry.status == EntryStatus.VALIDATED,
                },
            )
            return result

    def _acquire_lock(self, actor: Actor, entry_id: UUID) -> EntryRecord:
        """
        Take the validating lock.  Returns the entry as it was before the lock.

        Raises:
            EntryNotFoundError, AlreadyInProgressError, PreconditionFailedError,
            UnauthorizedError.
        """
        entry = self._store.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)

        if entry.status == EntryStatus.VALIDATING:
            raise AlreadyInProgressError(entry_id, entry.status.value)

        action = lock_action_for(entry.status)
        if action is None:
            raise PreconditionFailedError(
                entry_id, f"cannot validate an entry in status {entry.status.value}"
            )

        if not self._authorizer.can_submit(actor, entry):
            raise UnauthorizedError(actor.id, action, entry_id)

        if not self._store.cas_update_entry_status(
            entry_id, entry.status, EntryStatus.VALIDATING
        ):
            raise AlreadyInProgressError(entry_id, entry.status.value)

        logger.info("validation_lock_acquired", extra={"action": action})
        return entry

    def _read_snapshot(self, entry: EntryRecord) -> _Snapshot:
        """Fan out the independent reads."""
        revalidating = entry.status == EntryStatus.VALIDATED
        with ThreadPoolExecutor(
            max_workers=self._config.reads.fanout_workers,
            thread_name_prefix="validation-read",
        ) as pool:
            inputs = pool.submit(self._store.list_inputs, entry.id)
            outputs = pool.submit(self._store.list_outputs, entry.id)
            materialized = pool.submit(self._store.list_stock_units_by_origin, entry.id)
            consumptions = (
                pool.submit(self._store.list_consumptions, entry.id)
                if revalidating else None
            )
            return _Snapshot(
                inputs=inputs.result(),
                outputs=outputs.result(),
                materialized=materialized.result(),
                consumptions=consumptions.result() if consumptions else [],
            )

    def _check_preconditions(self, entry: EntryRecord, snapshot: _Snapshot) -> None:
        """
        Raises:
            PreconditionFailedError: On the first unmet precondition.
        """
        if not snapshot.inputs:
            raise PreconditionFailedError(entry.id, "entry has no inputs")
        if not snapshot.outputs:
            raise PreconditionFailedError(entry.id, "entry has no outputs")

        required = self._config.outputs.required_attributes
        for position, row in enumerate(snapshot.outputs, start=1):
            missing = row.attributes.missing(required)
            if missing:
                raise PreconditionFailedError(
                    entry.id, f"output {position} is missing {', '.join(missing)}"
                )
            if row.volume is None or row.volume <= 0:
                raise PreconditionFailedError(
                    entry.id, f"output {position} must have a positive volume"
                )
            if not (row.identifier or "").strip():
                raise PreconditionFailedError(
                    entry.id, f"output {position} has no identifier"
                )

    def _run_locked(self, entry: EntryRecord, rollback: RollbackCoordinator) -> ValidationResult:
        process = self._store.get_process(entry.process_id)
        if process is None:
            raise ProcessNotFoundError(entry.process_id)

        snapshot = self._read_snapshot(entry)
        self._check_preconditions(entry, snapshot)

        plan = self._materializer.plan(entry, snapshot.outputs, snapshot.materialized)

        if entry.status == EntryStatus.VALIDATED:
            restorations = previous_consumption(entry, snapshot.consumptions, snapshot.inputs)
            self._restore_stock(entry, restorations, rollback)

        merged = ledger.merge_inputs(snapshot.inputs)
        units = self._store.get_stock_units(merged.keys())
        planned = ledger.plan_deductions(
            merged, units, self._config.quantities.volume_places
        )

        recorded = {c.stock_unit_id: c for c in snapshot.consumptions}
        for unit, deduction in planned:
            after = deduction.apply_to(unit)
            rollback.record_stock_write(unit, after)
            self._store.upsert_stock_unit(after)

            rollback.record_consumption(unit.id, recorded.get(unit.id))
            self._store.save_consumption(
                ConsumptionRecord(
                    entry_id=entry.id,
                    stock_unit_id=unit.id,
                    pieces_deducted=deduction.pieces_removed,
                    volume_deducted=deduction.volume_removed,
                    prior_status=unit.status,
                )
            )

        logger.info(
            "stock_deducted",
            extra={"unit_count": len(planned), "input_count": len(snapshot.inputs)},
        )

        self._materializer.apply(plan, rollback)

        totals = metrics.totals(
            (line.volume_consumed for line in snapshot.inputs),
            (row.volume for row in snapshot.outputs),
            self._config.quantities.percent_places,
        )
        planned_work = metrics.planned_work(
            process.work_formula,
            [
                WorkInput(
                    pieces_used=line.pieces_used,
                    volume=line.volume_consumed,
                    length=units[line.stock_unit_id].dimensions.length,
                    width=units[line.stock_unit_id].dimensions.width,
                )
                for line in snapshot.inputs
            ],
            output_count=len(snapshot.outputs),
        )

        if not self._store.finalize_entry(entry.id, totals, planned_work, self._clock.now()):
            raise AlreadyInProgressError(entry.id, EntryStatus.VALIDATING.value)

        return ValidationResult(
            status=ValidationStatus.VALIDATED,
            entry_id=entry.id,
            code="OK",
            message="Entry validated",
            totals=totals,
            planned_work=planned_work,
        )

    def _restore_stock(
        self,
        entry: EntryRecord,
        restorations: list[_Restoration],
        rollback: RollbackCoordinator | None,
    ) -> int:
        """
        Add back what a previous validation consumed.  Returns units restored.

        A recorded consumption is deleted before its stock is added back, and
        only the caller whose delete removed the row restores it.  The unit is
        read after that claim, so a concurrent restore is never overwritten.
        """
        restored = 0
        for item in restorations:
            if item.recorded is not None:
                if rollback is not None:
                    rollback.record_consumption(item.stock_unit_id, item.recorded)
                if not self._store.delete_consumptions(entry.id, [item.stock_unit_id]):
                    logger.info(
                        "restore_already_claimed",
                        extra={"stock_unit_id": str(item.stock_unit_id)},
                    )
                    continue

            unit = self._store.get_stock_units([item.stock_unit_id]).get(item.stock_unit_id)
            if unit is None:
                logger.warning(
                    "restore_unit_missing",
                    extra={"stock_unit_id": str(item.stock_unit_id)},
                )
                continue
            after = ledger.restore(unit, item.pieces, item.volume, item.prior_status)
            if rollback is not None:
                rollback.record_stock_write(unit, after)
            self._store.upsert_stock_unit(after)
            restored += 1

        if restored:
            logger.info("previous_consumption_restored", extra={"unit_count": restored})
        return restored

    def _fail(
        self,
        entry: EntryRecord,
        exc: ProductionKernelError,
        rollback: RollbackCoordinator,
        t0: float,
    ) -> ValidationResult:
        logger.warning(
            "validation_failed",
            extra={"code": exc.code, "reason": str(exc)},
        )
        report = rollback.undo()
        duration_ms = round((time.monotonic() - t0) * 1000, 2)

        if report.is_complete:
            logger.info(
                "validation_rolled_back",
                extra={"code": exc.code, "duration_ms": duration_ms},
            )
            return ValidationResult.failure(entry.id, exc)

        partial = PartiallyRecoveredError(
            entry.id,
            original_code=exc.code,
            unrecovered_unit_ids=list(report.failed_unit_ids),
            status_restored=report.status_restored,
        )
        logger.error(
            "validation_partially_recovered",
            extra={
                "original_code": exc.code,
                "unrecovered_unit_ids": [str(u) for u in report.failed_unit_ids],
                "status_restored": report.status_restored,
                "duration_ms": duration_ms,
            },
        )
        return ValidationResult.failure(entry.id, partial)

    # ------------------------------------------------------------------
    # revert
    # ------------------------------------------------------------------

    def revert(self, actor: Actor, entry_id: UUID) -> RevertResult:
        """
        Operator action: undo everything a validation did and return to draft.

        A validated entry is locked first, so a concurrent revert or submit
        sees ``validating`` and backs off.  Works from persisted rows only,
        so it also recovers entries left in ``validating`` by a crashed worker.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.id),
            tenant_id=str(actor.tenant_id),
            entry_id=str(entry_id),
            operation="revert",
        ):
            logger.info("revert_started")
            try:
                entry = self._store.get_entry(entry_id)
                if entry is None:
                    raise EntryNotFoundError(entry_id)
                if not self._authorizer.can_revert(actor, entry):
                    raise UnauthorizedError(actor.id, "revert", entry_id)
                if entry.status == EntryStatus.VALIDATED:
                    result = self.unwind_validated(entry)
                else:
                    result = self.unwind(entry)
            except ProductionKernelError as exc:
                logger.warning("revert_failed", extra={"code": exc.code})
                return RevertResult(
                    status=RevertStatus.FAILED,
                    entry_id=entry_id,
                    code=exc.code,
                    message=str(exc),
                )

            logger.info(
                "revert_completed",
                extra={
                    "restored_count": result.restored_count,
                    "deleted_count": result.deleted_count,
                },
            )
            return result

    def unwind_validated(self, entry: EntryRecord) -> RevertResult:
        """
        Take the validating lock on a validated entry and unwind it.

        A refusal raised before any write hands the lock back, leaving the
        entry validated.  Any later failure leaves it ``validating`` for a
        forced revert.

        Raises:
            AlreadyInProgressError: Another worker holds the lock.
            ReferencedElsewhereError: A materialized unit is consumed by
                another entry.
        """
        if not self._store.cas_update_entry_status(
            entry.id, EntryStatus.VALIDATED, EntryStatus.VALIDATING
        ):
            raise AlreadyInProgressError(entry.id, EntryStatus.VALIDATED.value)
        logger.info("revert_lock_acquired")
        try:
            return self.unwind(entry)
        except (ReferencedElsewhereError, PreconditionFailedError):
            self._store.cas_update_entry_status(
                entry.id, EntryStatus.VALIDATING, EntryStatus.VALIDATED
            )
            raise

    def unwind(self, entry: EntryRecord) -> RevertResult:
        """
        Undo a validation from persisted rows and reset the entry to draft.

        ``entry`` is the record as read before any lock was taken; its status
        decides whether input rows may stand in for missing consumption
        records.  No authorization check: callers do that.

        Raises:
            ReferencedElsewhereError: A materialized unit is consumed by
                another entry.  Checked before any write.
        """
        if entry.status == EntryStatus.DRAFT:
            return RevertResult(
                status=RevertStatus.REVERTED,
                entry_id=entry.id,
                code="OK",
                message="Entry is already a draft",
            )
        if find_transition(entry.status, "revert", EntryStatus.DRAFT) is None:
            raise PreconditionFailedError(
                entry.id, f"cannot revert from {entry.status.value}"
            )

        materialized = self._store.list_stock_units_by_origin(entry.id)
        material_ids = [u.id for u in materialized]
        references = self._store.find_inputs_referencing_stock_units(
            material_ids, exclude_entry_id=entry.id
        )
        if references:
            raise ReferencedElsewhereError(
                sorted({r.stock_unit_id for r in references}, key=str),
                sorted({r.entry_id for r in references}, key=str),
            )

        restorations = previous_consumption(
            entry,
            self._store.list_consumptions(entry.id),
            self._store.list_inputs(entry.id),
        )
        restored = self._restore_stock(entry, restorations, rollback=None)

        self._store.delete_stock_units(material_ids)
        self._store.delete_consumptions(entry.id)
        self._store.reset_entry(entry.id)

        return RevertResult(
            status=RevertStatus.REVERTED,
            entry_id=entry.id,
            code="OK",
            message="Entry reverted to draft",
            restored_count=restored,
            deleted_count=len(material_ids),
        )
