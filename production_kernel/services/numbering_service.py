"""
IdentifierNumbering -- assigns package identifiers to staged outputs.

Every staged output without an identifier gets the next free
``{prefix}-{code}-{number}``.  Numbers already used by the tenant's stock
units and staged outputs are skipped; numbering wraps at the configured
maximum.  Processes listed in ``identifiers.inherit_code_processes`` keep the
process code of the package they consume (a sorted package stays in the
numbering series it came from).
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from production_config import get_active_config
from production_config.schema import ProductionConfig
from production_kernel.domain.dtos import EntryRecord, EntryStatus, OutputRow, ProcessRecord
from production_kernel.domain.identifiers import (
    extract_code,
    format_identifier,
    next_numbers,
    used_numbers,
)
from production_kernel.exceptions import (
    EntryNotFoundError,
    PreconditionFailedError,
    ProcessNotFoundError,
    UnauthorizedError,
)
from production_kernel.logging_config import get_logger
from production_kernel.services.authorization import Actor, Authorizer
from production_kernel.services.store import ProductionStore

logger = get_logger("services.numbering")


class IdentifierNumbering:
    def __init__(
        self,
        store: ProductionStore,
        authorizer: Authorizer,
        config: ProductionConfig | None = None,
    ):
        self._store = store
        self._authorizer = authorizer
        self._policy = (config or get_active_config()).identifiers

    def assign_identifiers(self, actor: Actor, entry_id: UUID) -> list[OutputRow]:
        """
        Number the entry's unnumbered outputs in sort order.

        Returns:
            The rows that received an identifier.

        Raises:
            PreconditionFailedError: The entry is being validated, or the
                numbering series is exhausted.
        """
        entry = self._store.get_entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        if entry.status == EntryStatus.VALIDATING:
            raise PreconditionFailedError(entry_id, "entry is being validated")
        if not self._authorizer.can_edit(actor, entry):
            raise UnauthorizedError(actor.id, "edit", entry_id)

        pending = [
            row for row in self._store.list_outputs(entry_id)
            if not (row.identifier or "").strip()
        ]
        if not pending:
            return []

        process = self._store.get_process(entry.process_id)
        if process is None:
            raise ProcessNotFoundError(entry.process_id)
        code = self.code_for(entry, process)

        series = f"{self._policy.prefix}-{code}-"
        taken = used_numbers(
            self._store.list_identifiers_like(entry.tenant_id, series),
            self._policy.prefix,
            code,
        )
        try:
            numbers = next_numbers(taken, len(pending), self._policy.max_number)
        except ValueError as exc:
            raise PreconditionFailedError(entry_id, str(exc)) from exc

        numbered = [
            replace(
                row,
                identifier=format_identifier(
                    self._policy.prefix, code, number, self._policy.width
                ),
            )
            for row, number in zip(pending, numbers)
        ]
        for row in numbered:
            self._store.save_output(row)

        logger.info(
            "identifiers_assigned",
            extra={
                "entry_id": str(entry_id),
                "code": code,
                "count": len(numbered),
                "first": numbered[0].identifier,
            },
        )
        return numbered

    def code_for(self, entry: EntryRecord, process: ProcessRecord) -> str:
        """Process code used in identifiers for ``entry``."""
        if process.name.strip().lower() not in self._policy.inherit_code_processes:
            return process.code

        inputs = self._store.list_inputs(entry.id)
        if not inputs:
            return process.code
        first = self._store.get_stock_units([inputs[0].stock_unit_id])
        unit = first.get(inputs[0].stock_unit_id)
        inherited = extract_code(unit.identifier if unit else None, self._policy.prefix)
        return inherited or process.code
