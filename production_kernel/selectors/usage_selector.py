"""
Module: production_kernel.selectors.usage_selector
Responsibility: Which of an entry's output packages have been taken up by
    other entries.  Used before editing or deleting a validated entry so the
    caller can tell the user which packages are locked.
Architecture position: Kernel > Selectors.  Reads stock_units and
    production_inputs only.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from production_kernel.models import ProductionEntry, ProductionInput, StockUnit
from production_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OutputUsage:
    """One output package and the entries consuming it."""

    stock_unit_id: UUID
    identifier: str
    status: str
    used_by_entry_ids: tuple[UUID, ...] = ()

    @property
    def is_used(self) -> bool:
        return bool(self.used_by_entry_ids)


@dataclass(frozen=True)
class UsageReport:
    entry_id: UUID
    outputs: tuple[OutputUsage, ...]

    @property
    def used(self) -> tuple[OutputUsage, ...]:
        return tuple(o for o in self.outputs if o.is_used)

    @property
    def free(self) -> tuple[OutputUsage, ...]:
        return tuple(o for o in self.outputs if not o.is_used)

    @property
    def has_usage(self) -> bool:
        return any(o.is_used for o in self.outputs)


class OutputUsageSelector(BaseSelector[StockUnit]):
    """Read-side view of downstream consumption of an entry's outputs."""

    def check_output_usage(self, entry_id: UUID) -> UsageReport:
        """
        Output units materialized by ``entry_id``, in sequence order, each
        with the other entries whose inputs reference it.
        """
        units = self.session.scalars(
            select(StockUnit)
            .where(StockUnit.origin_entry_id == entry_id)
            .order_by(StockUnit.sequence, StockUnit.id)
        ).all()
        if not units:
            return UsageReport(entry_id=entry_id, outputs=())

        rows = self.session.execute(
            select(ProductionInput.stock_unit_id, ProductionInput.entry_id)
            .join(ProductionEntry, ProductionInput.entry_id == ProductionEntry.id)
            .where(
                ProductionInput.stock_unit_id.in_([u.id for u in units]),
                ProductionInput.entry_id != entry_id,
            )
            .order_by(ProductionEntry.production_date, ProductionEntry.id)
        ).all()

        users: dict[UUID, list[UUID]] = {}
        for stock_unit_id, consumer_id in rows:
            consumers = users.setdefault(stock_unit_id, [])
            if consumer_id not in consumers:
                consumers.append(consumer_id)

        return UsageReport(
            entry_id=entry_id,
            outputs=tuple(
                OutputUsage(
                    stock_unit_id=unit.id,
                    identifier=unit.identifier,
                    status=unit.status,
                    used_by_entry_ids=tuple(users.get(unit.id, ())),
                )
                for unit in units
            ),
        )
