import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import SQLModel, Field


class Wallet(SQLModel, table=True):
    __tablename__ = "wallets"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    description: str = Field(max_length=255)
    # Running total of the wallet's payments plus the opening balance
    balance: Decimal = Field(default=Decimal("0"), max_digits=11, decimal_places=2)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
