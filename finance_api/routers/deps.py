import uuid

from fastapi import Depends, HTTPException, status
from sqlmodel import Session

from ..core.security import get_current_user
from ..database import get_session
from ..models.category import Category
from ..models.user import User
from ..models.wallet import Wallet
from ..services.budget_allocator import BudgetAllocator


def find_category(session: Session, category_id: uuid.UUID, user: User) -> Category:
    category = session.get(Category, category_id)
    if not category or category.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return category


def find_wallet(session: Session, wallet_id: uuid.UUID, user: User) -> Wallet:
    wallet = session.get(Wallet, wallet_id)
    if not wallet or wallet.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet not found")
    return wallet


def get_owned_category(
    category_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> Category:
    return find_category(session, category_id, current_user)


def get_owned_wallet(
    wallet_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> Wallet:
    return find_wallet(session, wallet_id, current_user)


def get_budget_allocator(session: Session = Depends(get_session)) -> BudgetAllocator:
    return BudgetAllocator(session)
