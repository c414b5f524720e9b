import uuid
from datetime import datetime, date
from decimal import Decimal
from typing import Optional
from sqlmodel import SQLModel, Field


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    wallet_id: uuid.UUID = Field(foreign_key="wallets.id", index=True)
    category_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="categories.id",
        index=True,
    )

    # Negative for outgoing money, positive for income
    amount: Decimal = Field(max_digits=11, decimal_places=2)
    effective_date: date = Field(default_factory=date.today, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
