import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlmodel import SQLModel, Field


class Goal(SQLModel, table=True):
    __tablename__ = "goals"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    description: str = Field(max_length=255)
    amount: Decimal = Field(max_digits=11, decimal_places=2)
    starts_at: date
    ends_at: date

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
