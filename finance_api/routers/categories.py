import logging
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlmodel import Field, Session, SQLModel, select

from ..core.security import get_current_user
from ..database import get_session
from ..models.budget import Budget
from ..models.category import Category
from ..models.payment import Payment
from ..models.user import User
from .deps import get_owned_category

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/categories",
    tags=["categories"],
)


class CategoryIn(SQLModel):
    description: str = Field(min_length=1, max_length=255)


class CategoryRead(CategoryIn):
    id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime
    updated_at: datetime


def _ensure_description_free(
    session: Session,
    user: User,
    description: str,
    exclude: Optional[uuid.UUID] = None,
) -> None:
    stmt = select(Category).where(
        Category.user_id == user.id,
        func.lower(Category.description) == description.lower(),
    )
    if exclude is not None:
        stmt = stmt.where(Category.id != exclude)
    if session.exec(stmt).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category description already taken")


@router.get(
    "",
    response_model=List[CategoryRead],
    status_code=status.HTTP_200_OK,
)
def list_categories(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    stmt = (
        select(Category)
        .where(Category.user_id == current_user.id)
        .order_by(Category.description.asc())
    )
    return list(session.exec(stmt).all())


@router.post(
    "",
    response_model=CategoryRead,
    status_code=status.HTTP_201_CREATED,
)
def create_category(
    payload: CategoryIn,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    description = payload.description.strip()
    _ensure_description_free(session, current_user, description)

    now = datetime.utcnow()
    category = Category(
        id=uuid.uuid4(),
        user_id=current_user.id,
        description=description,
        created_at=now,
        updated_at=now,
    )
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


@router.get(
    "/{category_id}",
    response_model=CategoryRead,
)
def get_category(category: Category = Depends(get_owned_category)):
    return category


@router.patch(
    "/{category_id}",
    response_model=CategoryRead,
)
def update_category(
    payload: CategoryIn,
    category: Category = Depends(get_owned_category),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    description = payload.description.strip()
    _ensure_description_free(session, current_user, description, exclude=category.id)

    category.description = description
    category.updated_at = datetime.utcnow()
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


@router.delete(
    "/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_category(
    category: Category = Depends(get_owned_category),
    session: Session = Depends(get_session),
):
    """Delete a category together with its budgets; its payments are kept uncategorized."""
    budgets = session.exec(select(Budget).where(Budget.category_id == category.id)).all()
    for budget in budgets:
        session.delete(budget)

    payments = session.exec(select(Payment).where(Payment.category_id == category.id)).all()
    for payment in payments:
        payment.category_id = None
        payment.updated_at = datetime.utcnow()
        session.add(payment)

    session.flush()
    session.delete(category)
    session.commit()
    logger.info(
        "Deleted category %s (%d budgets removed, %d payments detached)",
        category.id, len(budgets), len(payments),
    )
    return None
