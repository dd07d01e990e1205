"""
Module: production_kernel.models.entry
Responsibility: ORM persistence for production entries, their consumed inputs
    and their staged output rows.
Architecture position: Kernel > Models.  May import from db/ and sibling
    models only.  MUST NOT import from services/, selectors/, domain/, or
    outer layers.

Invariants enforced:
    - status is the lock column.  It only moves through conditional UPDATEs
      issued by the store (draft/validated -> validating -> validated/prior).
    - Totals are Numeric(38, 9) and are recomputed on every validation.
    - Inputs and outputs are owned by their entry (delete-orphan cascade).

Failure modes:
    - IntegrityError when deleting an entry still referenced by a correction.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from production_kernel.db.base import TrackedBase, UUIDString
from production_kernel.models.stock_unit import PackageAttributesMixin


class ProductionEntry(TrackedBase):
    """
    One manufacturing step: what was consumed and what was produced.

    Contract:
        Created as ``draft``.  Becomes ``validated`` only through the
        validation workflow, which owns every status change.

    Guarantees:
        - entry_type is ``standard`` or ``correction``; a correction points
          at the entry it corrects through corrects_entry_id.
        - validated_at is set iff status is ``validated``.
    """

    __tablename__ = "production_entries"

    __table_args__ = (
        Index("idx_production_entry_tenant_status", "tenant_id", "status"),
        Index("idx_production_entry_corrects", "corrects_entry_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    process_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("processes.id"),
        nullable=False,
    )

    production_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    entry_type: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")

    corrects_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("production_entries.id"),
        nullable=True,
    )

    # Totals, written on validation
    total_input_volume: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_output_volume: Mapped[Decimal | None] = mapped_column(nullable=True)
    outcome_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    waste_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)

    planned_work: Mapped[Decimal | None] = mapped_column(nullable=True)
    actual_work: Mapped[Decimal | None] = mapped_column(nullable=True)

    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    validated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    inputs: Mapped[list["ProductionInput"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    outputs: Mapped[list["ProductionOutput"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ProductionEntry {self.id} status={self.status}>"


class ProductionInput(TrackedBase):
    """
    A stock unit consumed by an entry.

    pieces_used is None when consumption is measured by volume only.
    """

    __tablename__ = "production_inputs"

    __table_args__ = (
        Index("idx_production_input_entry", "entry_id"),
        Index("idx_production_input_stock_unit", "stock_unit_id"),
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

    pieces_used: Mapped[int | None] = mapped_column(Integer, nullable=True)

    volume_consumed: Mapped[Decimal] = mapped_column(nullable=False)

    entry: Mapped["ProductionEntry"] = relationship(back_populates="inputs")


class ProductionOutput(PackageAttributesMixin, TrackedBase):
    """
    A staged output row.  Becomes a stock unit when the entry validates.

    identifier may be unassigned while the entry is a draft.
    """

    __tablename__ = "production_outputs"

    __table_args__ = (
        Index("idx_production_output_entry", "entry_id"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("production_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    identifier: Mapped[str | None] = mapped_column(String(50), nullable=True)

    pieces: Mapped[str | None] = mapped_column(String(20), nullable=True)

    volume: Mapped[Decimal | None] = mapped_column(nullable=True)

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entry: Mapped["ProductionEntry"] = relationship(back_populates="outputs")
