"""
Module: production_kernel.services.store
Responsibility: Persistence contract for the validation workflow.  Services
    depend on this interface only; SqlProductionStore implements it over
    SQLAlchemy.
Architecture position: Kernel > Services.  Depends on domain DTOs only.

Invariants enforced:
    - Every method reads or writes typed DTOs, never ORM instances.
    - Every write is its own committed unit of work.  There is no enclosing
      transaction across calls; atomicity of a validation attempt comes from
      the RollbackCoordinator, not from the database.
    - cas_update_entry_status and finalize_entry are conditional updates and
      report whether exactly one row matched.

Failure modes:
    - PersistenceFailureError for any backend error.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from production_kernel.domain.dtos import (
    ConsumptionRecord,
    EntryRecord,
    EntryStatus,
    EntryTotals,
    InputLine,
    OutputRow,
    ProcessRecord,
    StockUnitState,
)


class ProductionStore(ABC):
    """Record store for entries, staged rows, stock units and consumption."""

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    @abstractmethod
    def get_entry(self, entry_id: UUID) -> EntryRecord | None:
        ...

    @abstractmethod
    def get_process(self, process_id: UUID) -> ProcessRecord | None:
        ...

    @abstractmethod
    def cas_update_entry_status(
        self,
        entry_id: UUID,
        expected: EntryStatus,
        next_status: EntryStatus,
    ) -> bool:
        """Set status to ``next_status`` iff it currently equals ``expected``."""
        ...

    @abstractmethod
    def finalize_entry(
        self,
        entry_id: UUID,
        totals: EntryTotals,
        planned_work: Decimal | None,
        validated_at: datetime,
    ) -> bool:
        """Persist totals and mark validated iff status is still ``validating``."""
        ...

    @abstractmethod
    def reset_entry(self, entry_id: UUID) -> None:
        """Force status to draft and clear totals and validated_at."""
        ...

    @abstractmethod
    def create_entry(self, entry: EntryRecord) -> None:
        ...

    @abstractmethod
    def update_entry_fields(self, entry_id: UUID, **values: object) -> None:
        """Update planned_work, actual_work, invoice_number or notes."""
        ...

    @abstractmethod
    def delete_entry(self, entry_id: UUID) -> None:
        """Delete an entry with its staged rows and consumption records."""
        ...

    @abstractmethod
    def list_corrections(self, entry_id: UUID) -> list[EntryRecord]:
        """Entries whose corrects_entry_id points at ``entry_id``."""
        ...

    # ------------------------------------------------------------------
    # Staged rows
    # ------------------------------------------------------------------

    @abstractmethod
    def list_inputs(self, entry_id: UUID) -> list[InputLine]:
        ...

    @abstractmethod
    def list_outputs(self, entry_id: UUID) -> list[OutputRow]:
        """Staged outputs ordered by sort_order."""
        ...

    @abstractmethod
    def get_input(self, input_id: UUID) -> InputLine | None:
        ...

    @abstractmethod
    def save_input(self, line: InputLine) -> None:
        """Insert or update an input line."""
        ...

    @abstractmethod
    def delete_input(self, input_id: UUID) -> None:
        ...

    @abstractmethod
    def save_output(self, row: OutputRow) -> None:
        """Insert or update a staged output row."""
        ...

    @abstractmethod
    def delete_outputs(self, output_ids: Iterable[UUID]) -> None:
        ...

    @abstractmethod
    def replace_staged_rows(
        self,
        entry_id: UUID,
        inputs: Iterable[InputLine],
        outputs: Iterable[OutputRow],
    ) -> None:
        """Replace all of an entry's inputs and outputs in one write."""
        ...

    # ------------------------------------------------------------------
    # Stock units
    # ------------------------------------------------------------------

    @abstractmethod
    def get_stock_units(self, ids: Iterable[UUID]) -> dict[UUID, StockUnitState]:
        ...

    @abstractmethod
    def list_stock_units_by_origin(self, entry_id: UUID) -> list[StockUnitState]:
        """Units materialized by ``entry_id``, ordered by sequence."""
        ...

    @abstractmethod
    def upsert_stock_unit(self, unit: StockUnitState) -> None:
        ...

    @abstractmethod
    def delete_stock_units(self, ids: Iterable[UUID]) -> None:
        ...

    @abstractmethod
    def find_stock_units_by_identifier(
        self,
        tenant_id: UUID,
        identifiers: Iterable[str],
    ) -> list[StockUnitState]:
        ...

    @abstractmethod
    def find_inputs_referencing_stock_units(
        self,
        ids: Iterable[UUID],
        exclude_entry_id: UUID | None = None,
    ) -> list[InputLine]:
        ...

    @abstractmethod
    def list_identifiers_like(self, tenant_id: UUID, prefix: str) -> list[str]:
        """Identifiers starting with ``prefix`` on stock units and staged outputs."""
        ...

    # ------------------------------------------------------------------
    # Consumption records
    # ------------------------------------------------------------------

    @abstractmethod
    def list_consumptions(self, entry_id: UUID) -> list[ConsumptionRecord]:
        ...

    @abstractmethod
    def save_consumption(self, record: ConsumptionRecord) -> None:
        """Insert or replace the record for (entry, stock unit)."""
        ...

    @abstractmethod
    def delete_consumptions(
        self,
        entry_id: UUID,
        stock_unit_ids: Iterable[UUID] | None = None,
    ) -> int:
        """
        Delete an entry's records, optionally only for some units.

        Returns the number of rows removed, so a caller can tell whether it
        or a concurrent revert claimed a record.
        """
        ...
