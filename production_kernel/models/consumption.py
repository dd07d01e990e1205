"""
Module: production_kernel.models.consumption
Responsibility: ORM persistence for the stock actually removed from each
    stock unit by a validated entry.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per (entry, stock unit): UniqueConstraint(entry_id, stock_unit_id).
    - Rows record the deltas really applied, so adding them back restores the
      unit exactly, including proportional volume rounding.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import TrackedBase, UUIDString


class StockConsumption(TrackedBase):
    """Deduction applied to one stock unit by one entry's validation."""

    __tablename__ = "stock_consumptions"

    __table_args__ = (
        UniqueConstraint("entry_id", "stock_unit_id", name="uq_stock_consumption_entry_unit"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("production_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    stock_unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_units.id"),
        nullable=False,
    )

    pieces_deducted: Mapped[int | None] = mapped_column(Integer, nullable=True)

    volume_deducted: Mapped[Decimal] = mapped_column(nullable=False)

    prior_status: Mapped[str] = mapped_column(String(20), nullable=False)
