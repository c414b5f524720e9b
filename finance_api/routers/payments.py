import logging
import uuid
from datetime import datetime, date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import SQLModel, Session, select

from ..core.errors import FieldError, ValidationError
from ..core.security import get_current_user
from ..database import get_session
from ..models.payment import Payment
from ..models.user import User
from ..models.wallet import Wallet
from ..services.wallet_balance import BALANCE_LIMIT, adjust_balance
from .deps import find_category, find_wallet, get_owned_wallet

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


class PaymentCreate(SQLModel):
    amount: Decimal
    effective_date: Optional[date] = None
    category_id: Optional[uuid.UUID] = None


class PaymentUpdate(SQLModel):
    amount: Optional[Decimal] = None
    effective_date: Optional[date] = None
    category_id: Optional[uuid.UUID] = None


class PaymentRead(SQLModel):
    id: uuid.UUID
    wallet_id: uuid.UUID
    category_id: Optional[uuid.UUID] = None
    amount: Decimal
    effective_date: date
    created_at: datetime
    updated_at: datetime


def _validate_amount(amount: Optional[Decimal]) -> Decimal:
    """Check ``amount`` after rounding it to cents and return the value to store."""
    if amount is None:
        raise ValidationError([FieldError("amount", "blank")])
    if not -BALANCE_LIMIT < amount < BALANCE_LIMIT:
        raise ValidationError([FieldError("amount", "out_of_range")])
    amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if amount == 0:
        raise ValidationError([FieldError("amount", "other_than")])
    if not -BALANCE_LIMIT < amount < BALANCE_LIMIT:
        raise ValidationError([FieldError("amount", "out_of_range")])
    return amount


def get_owned_payment(
    payment_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> Payment:
    payment = session.get(Payment, payment_id)
    if payment is not None:
        wallet = session.get(Wallet, payment.wallet_id)
        if wallet is not None and wallet.user_id == current_user.id:
            return payment
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")


@router.post(
    "/wallets/{wallet_id}/payments",
    response_model=PaymentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_payment(
    payload: PaymentCreate,
    wallet: Wallet = Depends(get_owned_wallet),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Record a payment and add its amount to the wallet balance."""
    amount = _validate_amount(payload.amount)
    if payload.category_id is not None:
        find_category(session, payload.category_id, current_user)

    now = datetime.utcnow()
    payment = Payment(
        id=uuid.uuid4(),
        wallet_id=wallet.id,
        category_id=payload.category_id,
        amount=amount,
        effective_date=payload.effective_date or date.today(),
        created_at=now,
        updated_at=now,
    )
    adjust_balance(wallet, amount)

    session.add(wallet)
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return payment


@router.get(
    "/wallets/{wallet_id}/payments",
    response_model=List[PaymentRead],
)
def list_wallet_payments(
    wallet: Wallet = Depends(get_owned_wallet),
    session: Session = Depends(get_session),
):
    stmt = (
        select(Payment)
        .where(Payment.wallet_id == wallet.id)
        .order_by(Payment.effective_date.desc())
    )
    return list(session.exec(stmt).all())


@router.get(
    "/payments",
    response_model=List[PaymentRead],
)
def list_payments(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    stmt = (
        select(Payment)
        .join(Wallet, Wallet.id == Payment.wallet_id)
        .where(Wallet.user_id == current_user.id)
        .order_by(Payment.effective_date.desc())
    )
    return list(session.exec(stmt).all())


@router.get(
    "/payments/{payment_id}",
    response_model=PaymentRead,
)
def get_payment(payment: Payment = Depends(get_owned_payment)):
    return payment


@router.patch(
    "/payments/{payment_id}",
    response_model=PaymentRead,
)
def update_payment(
    payload: PaymentUpdate,
    payment: Payment = Depends(get_owned_payment),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """Partially update a payment; an amount change moves the wallet balance by the difference."""
    sent = payload.model_fields_set
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )

    if "category_id" in sent and payload.category_id is not None:
        find_category(session, payload.category_id, current_user)
    if "amount" in sent:
        amount = _validate_amount(payload.amount)
        delta = amount - payment.amount
        if delta:
            wallet = find_wallet(session, payment.wallet_id, current_user)
            adjust_balance(wallet, delta)
            session.add(wallet)
        payment.amount = amount
    if "category_id" in sent:
        payment.category_id = payload.category_id
    if payload.effective_date is not None:
        payment.effective_date = payload.effective_date

    payment.updated_at = datetime.utcnow()
    session.add(payment)
    session.commit()
    session.refresh(payment)
    return payment


@router.delete(
    "/payments/{payment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_payment(
    payment: Payment = Depends(get_owned_payment),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    wallet = find_wallet(session, payment.wallet_id, current_user)
    adjust_balance(wallet, -payment.amount)

    session.add(wallet)
    session.delete(payment)
    session.commit()
    return None
