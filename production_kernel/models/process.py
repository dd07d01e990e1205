"""ORM persistence for production processes (reference data)."""

from uuid import UUID

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import TrackedBase, UUIDString


class Process(TrackedBase):
    """
    A manufacturing step such as planing or sorting.

    ``code`` is the two-letter segment of output identifiers; ``work_formula``
    selects how planned work is derived from the entry's inputs.
    """

    __tablename__ = "processes"

    tenant_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    code: Mapped[str] = mapped_column(String(10), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    work_formula: Mapped[str | None] = mapped_column(String(30), nullable=True)

    def __repr__(self) -> str:
        return f"<Process {self.code} {self.name}>"
