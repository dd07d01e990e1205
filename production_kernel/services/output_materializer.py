"""
OutputMaterializer -- staged output rows into stock units.

Responsibility:
    Diffs an entry's staged output rows against the stock units it already
    materialized (on a previous validation) and applies the difference:
    update in place, insert, or delete.

Architecture position:
    Kernel > Services -- imperative shell.  ``plan`` only reads; ``apply``
    writes through the store and records every write with the
    RollbackCoordinator.

Algorithm:
    Existing units sorted by sequence are paired positionally with rows
    sorted by sort_order.  The first min(units, rows) pairs are updated in
    place so unit ids stay stable; extra rows become new units; extra units
    are orphans.

Invariants enforced:
    - Identifiers are unique within the entry and collide with no tenant
      stock unit outside this entry's own units; checked before any write.
    - Orphans consumed by another entry are never deleted; the whole
      validation aborts with FK_CONSTRAINT instead.
    - An updated unit already consumed by another entry keeps its current
      quantities and status; only descriptive fields follow the row.
    - Identifier changes among the entry's own units go through a temporary
      identifier, so the tenant uniqueness constraint holds at every write.

Failure modes:
    - IdentifierConflictError: duplicate or already-used identifier.
    - ReferencedElsewhereError: orphan unit consumed by another entry.
    - PersistenceFailureError from the store.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID, uuid4

from production_kernel.domain.dtos import (
    EntryRecord,
    OutputRow,
    StockStatus,
    StockUnitState,
)
from production_kernel.domain.identifiers import check_unique_within
from production_kernel.exceptions import (
    IdentifierConflictError,
    ReferencedElsewhereError,
)
from production_kernel.logging_config import get_logger
from production_kernel.services.rollback_coordinator import (
    RollbackCoordinator,
    temporary_identifier,
)
from production_kernel.services.store import ProductionStore

logger = get_logger("services.output_materializer")


@dataclass(frozen=True)
class MaterializationPlan:
    """The write set for one entry, computed before any write."""

    entry_id: UUID
    updates: tuple[tuple[StockUnitState, StockUnitState], ...]
    inserts: tuple[StockUnitState, ...]
    orphans: tuple[StockUnitState, ...]
    shared_unit_ids: frozenset[UUID] = frozenset()


@dataclass(frozen=True)
class MaterializationResult:
    updated: int
    inserted: int
    deleted: int


def _stock_image(
    entry: EntryRecord,
    row: OutputRow,
    sequence: int,
    current: StockUnitState | None,
    keep_quantities: bool,
) -> StockUnitState:
    if current is None:
        return StockUnitState(
            id=uuid4(),
            tenant_id=entry.tenant_id,
            identifier=row.identifier or "",
            pieces=row.pieces,
            volume=row.volume,
            status=StockStatus.PRODUCED,
            origin_entry_id=entry.id,
            sequence=sequence,
            attributes=row.attributes,
            dimensions=row.dimensions,
            notes=row.notes,
        )

    image = replace(
        current,
        identifier=row.identifier or current.identifier,
        sequence=sequence,
        attributes=row.attributes,
        dimensions=row.dimensions,
        notes=row.notes,
    )
    if keep_quantities:
        return image
    return replace(
        image,
        pieces=row.pieces,
        volume=row.volume,
        status=StockStatus.PRODUCED,
    )


class OutputMaterializer:
    """Plans and applies the stock-unit diff for an entry's outputs."""

    def __init__(self, store: ProductionStore):
        self._store = store

    def plan(
        self,
        entry: EntryRecord,
        rows: list[OutputRow],
        existing_units: list[StockUnitState],
    ) -> MaterializationPlan:
        """
        Compute the diff and check it can be applied.

        Raises:
            IdentifierConflictError: Identifiers repeat within the entry or
                are used by a tenant stock unit that is not this entry's.
            ReferencedElsewhereError: An orphan is consumed by another entry.
        """
        ordered_rows = sorted(rows, key=lambda r: r.sort_order)
        ordered_units = sorted(
            existing_units,
            key=lambda u: (u.sequence is None, u.sequence or 0),
        )

        identifiers = [r.identifier for r in ordered_rows]
        check_unique_within(entry.tenant_id, identifiers)

        own_ids = {u.id for u in ordered_units}
        taken = [
            u.identifier
            for u in self._store.find_stock_units_by_identifier(
                entry.tenant_id, [i for i in identifiers if i]
            )
            if u.id not in own_ids
        ]
        if taken:
            raise IdentifierConflictError(entry.tenant_id, sorted(taken))

        references = self._store.find_inputs_referencing_stock_units(
            own_ids, exclude_entry_id=entry.id
        )
        shared = frozenset(line.stock_unit_id for line in references)

        paired = min(len(ordered_units), len(ordered_rows))
        orphans = tuple(ordered_units[paired:])

        blocked = [u.id for u in orphans if u.id in shared]
        if blocked:
            raise ReferencedElsewhereError(
                blocked,
                sorted(
                    {line.entry_id for line in references if line.stock_unit_id in blocked},
                    key=str,
                ),
            )

        updates = tuple(
            (
                unit,
                _stock_image(entry, row, index, unit, keep_quantities=unit.id in shared),
            )
            for index, (unit, row) in enumerate(zip(ordered_units, ordered_rows))
        )
        inserts = tuple(
            _stock_image(entry, row, index, None, keep_quantities=False)
            for index, row in enumerate(ordered_rows)
            if index >= paired
        )

        return MaterializationPlan(
            entry_id=entry.id,
            updates=updates,
            inserts=inserts,
            orphans=orphans,
            shared_unit_ids=shared,
        )

    def apply(
        self,
        plan: MaterializationPlan,
        rollback: RollbackCoordinator,
    ) -> MaterializationResult:
        """
        Write the plan: delete orphans, park renamed units, update, insert.

        Each write is recorded with ``rollback`` before it is issued.
        """
        for orphan in plan.orphans:
            rollback.record_stock_delete(orphan)
            self._store.delete_stock_units([orphan.id])

        renamed = [
            (before, after)
            for before, after in plan.updates
            if before.identifier != after.identifier
        ]
        for before, _after in renamed:
            parked = replace(before, identifier=temporary_identifier(before.id))
            rollback.record_stock_write(before, parked)
            self._store.upsert_stock_unit(parked)

        for before, after in plan.updates:
            rollback.record_stock_write(before, after)
            self._store.upsert_stock_unit(after)

        for unit in plan.inserts:
            rollback.record_stock_write(None, unit)
            self._store.upsert_stock_unit(unit)

        result = MaterializationResult(
            updated=len(plan.updates),
            inserted=len(plan.inserts),
            deleted=len(plan.orphans),
        )
        logger.info(
            "outputs_materialized",
            extra={
                "updated": result.updated,
                "inserted": result.inserted,
                "deleted": result.deleted,
                "renamed": len(renamed),
                "shared": len(plan.shared_unit_ids),
            },
        )
        return result
