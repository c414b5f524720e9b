import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field


class Budget(SQLModel, table=True):
    """A monthly-aligned budget period for a category.

    ``starts_at`` is always the first day of a month and ``ends_at``, when
    set, the last day of a month. A missing ``ends_at`` marks the category's
    open-ended period; at most one may exist per category.
    """

    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("category_id", "starts_at", name="uq_budgets_category_id_starts_at"),
        UniqueConstraint("category_id", "ends_at", name="uq_budgets_category_id_ends_at"),
        # NULLs are distinct in the constraint above, so the open-ended slot
        # needs its own partial index.
        Index(
            "uq_budgets_category_id_open_ended",
            "category_id",
            unique=True,
            postgresql_where=text("ends_at IS NULL"),
            sqlite_where=text("ends_at IS NULL"),
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    category_id: uuid.UUID = Field(foreign_key="categories.id", index=True)

    amount: Decimal = Field(max_digits=11, decimal_places=2)

    starts_at: date
    ends_at: Optional[date] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
