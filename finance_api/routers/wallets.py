import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlmodel import Field, Session, SQLModel, select

from ..core.security import get_current_user
from ..database import get_session
from ..models.payment import Payment
from ..models.user import User
from ..models.wallet import Wallet
from ..services.wallet_balance import check_balance
from .deps import get_owned_wallet

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/wallets",
    tags=["wallets"],
)


class WalletCreate(SQLModel):
    description: str = Field(min_length=1, max_length=255)
    balance: Decimal = Field(default=Decimal("0"), max_digits=11, decimal_places=2)


class WalletUpdate(SQLModel):
    # The balance only moves through payments once the wallet exists
    description: str = Field(min_length=1, max_length=255)


class WalletRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    description: str
    balance: Decimal
    created_at: datetime
    updated_at: datetime


def _ensure_description_free(
    session: Session,
    user: User,
    description: str,
    exclude: Optional[uuid.UUID] = None,
) -> None:
    stmt = select(Wallet).where(
        Wallet.user_id == user.id,
        func.lower(Wallet.description) == description.lower(),
    )
    if exclude is not None:
        stmt = stmt.where(Wallet.id != exclude)
    if session.exec(stmt).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Wallet description already taken")


@router.get(
    "",
    response_model=List[WalletRead],
)
def list_wallets(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    stmt = select(Wallet).where(Wallet.user_id == current_user.id).order_by(Wallet.description.asc())
    return list(session.exec(stmt).all())


@router.post(
    "",
    response_model=WalletRead,
    status_code=status.HTTP_201_CREATED,
)
def create_wallet(
    payload: WalletCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    description = payload.description.strip()
    _ensure_description_free(session, current_user, description)
    check_balance(payload.balance)

    now = datetime.utcnow()
    wallet = Wallet(
        id=uuid.uuid4(),
        user_id=current_user.id,
        description=description,
        balance=payload.balance,
        created_at=now,
        updated_at=now,
    )
    session.add(wallet)
    session.commit()
    session.refresh(wallet)
    return wallet


@router.patch(
    "/{wallet_id}",
    response_model=WalletRead,
)
def update_wallet(
    payload: WalletUpdate,
    wallet: Wallet = Depends(get_owned_wallet),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    description = payload.description.strip()
    _ensure_description_free(session, current_user, description, exclude=wallet.id)

    wallet.description = description
    wallet.updated_at = datetime.utcnow()
    session.add(wallet)
    session.commit()
    session.refresh(wallet)
    return wallet


@router.delete(
    "/{wallet_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_wallet(
    wallet: Wallet = Depends(get_owned_wallet),
    session: Session = Depends(get_session),
):
    payments = session.exec(select(Payment).where(Payment.wallet_id == wallet.id)).all()
    for payment in payments:
        session.delete(payment)
    session.flush()
    session.delete(wallet)
    session.commit()
    logger.info("Deleted wallet %s with %d payments", wallet.id, len(payments))
    return None
