"""
Module: produce_kernel.models.product
Responsibility: Read-only product reference data consumed from the outer
    catalogue layer (id, code, name, unit weight).
Architecture position: Kernel > Models.  May import from db/ only.

The ledger never writes products except in tests and seeding scripts; the
unit weight is used to derive line weights when a trade line carries no
explicit total weight.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from produce_kernel.db.base import Base


class Product(Base):
    """A tradeable produce item (e.g. a grade and pack size of apples)."""

    __tablename__ = "products"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # Weight of one unit (box, crate); None when sold loose by weight
    unit_weight: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Product {self.code}: {self.name}>"
