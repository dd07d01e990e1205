"""
Module: production_kernel.models.stock_unit
Responsibility: ORM persistence for stock units ("packages") and the
    descriptive columns they share with staged production outputs.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Identifier uniqueness per tenant: UniqueConstraint(tenant_id, identifier).
    - Quantity precision: volume is Numeric(38, 9); pieces is a string-encoded
      integer (nullable when the unit is measured by volume only).

Failure modes:
    - IntegrityError on a duplicate (tenant_id, identifier).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import TrackedBase, UUIDString


class PackageAttributesMixin:
    """Descriptive columns shared by stock units and staged outputs."""

    product: Mapped[str | None] = mapped_column(String(100), nullable=True)
    species: Mapped[str | None] = mapped_column(String(100), nullable=True)
    humidity: Mapped[str | None] = mapped_column(String(100), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    processing: Mapped[str | None] = mapped_column(String(100), nullable=True)
    certification: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quality: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Free text in millimetres; ranges such as "100-150" are allowed
    thickness: Mapped[str | None] = mapped_column(String(50), nullable=True)
    width: Mapped[str | None] = mapped_column(String(50), nullable=True)
    length: Mapped[str | None] = mapped_column(String(50), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)


class StockUnit(PackageAttributesMixin, TrackedBase):
    """
    A physical inventory package.

    Contract:
        Received units have no origin entry.  Units materialized by a
        production entry carry origin_entry_id and their position among that
        entry's outputs in ``sequence``.

    Guarantees:
        - status is one of received / produced / consumed.
        - identifier is unique within the tenant.
    """

    __tablename__ = "stock_units"

    __table_args__ = (
        UniqueConstraint("tenant_id", "identifier", name="uq_stock_unit_tenant_identifier"),
        Index("idx_stock_unit_origin", "origin_entry_id"),
        Index("idx_stock_unit_status", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    origin_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("production_entries.id"),
        nullable=True,
    )

    identifier: Mapped[str] = mapped_column(String(50), nullable=False)

    sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)

    pieces: Mapped[str | None] = mapped_column(String(20), nullable=True)

    volume: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return f"<StockUnit {self.identifier} status={self.status}>"
