"""
RollbackCoordinator -- compensating rollback for one validation attempt.

Responsibility:
    Records the pre-image of every stock unit and consumption record a
    validation attempt touches, and on failure writes those images back,
    then returns the entry status from ``validating`` to what it was.

Architecture position:
    Kernel > Services -- imperative shell.  Created per attempt by
    ValidationService and handed to the materializer and ledger steps.

Invariants enforced:
    - Undo restores the earliest recorded image of each unit, so a unit
      written several times in one attempt returns to its pre-attempt state.
    - One corrective write per unit (plus a temporary identifier write when
      the attempt changed that unit's identifier, so the tenant uniqueness
      constraint holds while images are swapped back).
    - Units the attempt inserted are deleted before any image is restored,
      freeing their identifiers.

Failure modes:
    - Corrective writes that still fail after ``max_attempts`` are logged at
      ERROR and reported in RollbackReport; they are never raised.  The
      caller turns an incomplete report into PARTIALLY_RECOVERED.

Audit relevance:
    Every corrective write and its retries are logged with the stock unit
    id, so an operator can reconcile a partially recovered entry by hand.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from functools import partial
from uuid import UUID

from production_config.schema import RollbackPolicy
from production_kernel.domain.dtos import ConsumptionRecord, EntryStatus, StockUnitState
from production_kernel.exceptions import PersistenceFailureError
from production_kernel.logging_config import get_logger
from production_kernel.services.store import ProductionStore

logger = get_logger("services.rollback")


@dataclass(frozen=True)
class RollbackReport:
    """Outcome of one undo pass."""

    restored_unit_ids: tuple[UUID, ...]
    failed_unit_ids: tuple[UUID, ...]
    status_restored: bool

    @property
    def is_complete(self) -> bool:
        return not self.failed_unit_ids and self.status_restored


def temporary_identifier(unit_id: UUID) -> str:
    """Placeholder identifier that cannot collide with a real one."""
    return f"~{unit_id.hex}"


class RollbackCoordinator:
    """
    In-memory inverse log for one attempt.

    Args:
        store: Store the attempt writes to.
        entry_id: Entry being validated.
        prior_status: Status the entry held before the lock was taken.
        policy: Retry budget for each corrective write.
        sleep: Injected for tests; defaults to time.sleep.
    """

    def __init__(
        self,
        store: ProductionStore,
        entry_id: UUID,
        prior_status: EntryStatus,
        policy: RollbackPolicy,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._entry_id = entry_id
        self._prior_status = prior_status
        self._policy = policy
        self._sleep = sleep
        # unit id -> earliest image (None = did not exist)
        self._before: dict[UUID, StockUnitState | None] = {}
        # unit id -> latest image (None = deleted)
        self._after: dict[UUID, StockUnitState | None] = {}
        # stock unit id -> earliest consumption record (None = did not exist)
        self._consumption_before: dict[UUID, ConsumptionRecord | None] = {}
        self._order: list[UUID] = []

    @property
    def mutation_count(self) -> int:
        return len(self._before) + len(self._consumption_before)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_stock_write(
        self,
        before: StockUnitState | None,
        after: StockUnitState,
    ) -> None:
        """Record an insert (before=None) or update of a stock unit."""
        self._remember(after.id, before)
        self._after[after.id] = after

    def record_stock_delete(self, before: StockUnitState) -> None:
        self._remember(before.id, before)
        self._after[before.id] = None

    def record_consumption(
        self,
        stock_unit_id: UUID,
        before: ConsumptionRecord | None,
    ) -> None:
        """Record a change to this entry's consumption record for a unit."""
        if stock_unit_id not in self._consumption_before:
            self._consumption_before[stock_unit_id] = before

    def _remember(self, unit_id: UUID, before: StockUnitState | None) -> None:
        if unit_id not in self._before:
            self._before[unit_id] = before
            self._order.append(unit_id)

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def undo(self) -> RollbackReport:
        """
        Replay the inverse log, newest unit first, then release the lock.

        Never raises for store failures; see RollbackReport.
        """
        failed: list[UUID] = []
        restored: list[UUID] = []
        newest_first = list(reversed(self._order))

        logger.info(
            "rollback_started",
            extra={
                "unit_count": len(self._order),
                "consumption_count": len(self._consumption_before),
                "prior_status": self._prior_status.value,
            },
        )

        # 1. Units inserted by the attempt
        for unit_id in newest_first:
            if self._before[unit_id] is None and self._after.get(unit_id) is not None:
                if self._retry("delete_inserted_unit", unit_id,
                               partial(self._store.delete_stock_units, [unit_id])):
                    restored.append(unit_id)
                else:
                    failed.append(unit_id)

        # 2. Park units whose identifier changed on a temporary identifier
        for unit_id in newest_first:
            before = self._before[unit_id]
            after = self._after.get(unit_id)
            if before is None or after is None or after.identifier == before.identifier:
                continue
            parked_image = replace(before, identifier=temporary_identifier(unit_id))
            if not self._retry("park_identifier", unit_id,
                               partial(self._store.upsert_stock_unit, parked_image)):
                failed.append(unit_id)

        # 3. Restore pre-images of updated and deleted units
        for unit_id in newest_first:
            before = self._before[unit_id]
            if before is None or unit_id in failed:
                continue
            if self._retry("restore_unit", unit_id,
                           partial(self._store.upsert_stock_unit, before)):
                restored.append(unit_id)
            else:
                failed.append(unit_id)

        # 4. Consumption records
        for stock_unit_id, record in reversed(list(self._consumption_before.items())):
            if record is None:
                action = partial(
                    self._store.delete_consumptions, self._entry_id, [stock_unit_id]
                )
            else:
                action = partial(self._store.save_consumption, record)
            if not self._retry("restore_consumption", stock_unit_id, action):
                failed.append(stock_unit_id)

        # 5. Release the lock
        status_restored = self._release_lock()

        report = RollbackReport(
            restored_unit_ids=tuple(restored),
            failed_unit_ids=tuple(dict.fromkeys(failed)),
            status_restored=status_restored,
        )
        log = logger.info if report.is_complete else logger.error
        log(
            "rollback_completed",
            extra={
                "restored_count": len(report.restored_unit_ids),
                "failed_count": len(report.failed_unit_ids),
                "status_restored": status_restored,
            },
        )
        return report

    def _release_lock(self) -> bool:
        outcome: list[bool] = []

        def revert() -> None:
            outcome.append(
                self._store.cas_update_entry_status(
                    self._entry_id, EntryStatus.VALIDATING, self._prior_status
                )
            )

        if not self._retry("release_lock", self._entry_id, revert):
            return False
        if not outcome[-1]:
            logger.warning(
                "rollback_lock_not_held",
                extra={"expected_status": EntryStatus.VALIDATING.value},
            )
            return False
        return True

    def _retry(self, operation: str, unit_id: UUID, action: Callable[[], object]) -> bool:
        """Run ``action`` with exponential backoff.  True on success."""
        delay = self._policy.backoff_seconds
        for attempt in range(1, self._policy.max_attempts + 1):
            try:
                action()
                return True
            except PersistenceFailureError as exc:
                if attempt == self._policy.max_attempts:
                    logger.error(
                        "rollback_write_failed",
                        extra={
                            "operation": operation,
                            "stock_unit_id": str(unit_id),
                            "attempts": attempt,
                            "error": str(exc),
                        },
                    )
                    return False
                logger.warning(
                    "rollback_write_retry",
                    extra={
                        "operation": operation,
                        "stock_unit_id": str(unit_id),
                        "attempt": attempt,
                    },
                )
                if delay > 0:
                    self._sleep(delay)
                delay *= 2
        return False
