import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, SQLModel, select

from ..core.errors import FieldError, ValidationError
from ..core.security import get_current_user
from ..database import get_session
from ..models.budget import Budget
from ..models.category import Category
from ..models.user import User
from ..services.budget_allocator import BudgetAllocator
from .deps import get_budget_allocator, get_owned_category

logger = logging.getLogger(__name__)

router = APIRouter(tags=["budgets"])


# Amount and date rules live in BudgetAllocator so every violation is
# reported together as a structured 422.
class BudgetCreate(SQLModel):
    amount: Optional[Decimal] = None
    starts_at: Optional[date] = None
    ends_at: Optional[date] = None


class BudgetUpdate(SQLModel):
    amount: Optional[Decimal] = None
    ends_at: Optional[date] = None


class BudgetRead(SQLModel):
    id: uuid.UUID
    category_id: uuid.UUID
    amount: Decimal
    starts_at: date
    ends_at: Optional[date] = None
    created_at: datetime
    updated_at: datetime


def get_owned_budget(
    budget_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> Budget:
    budget = session.get(Budget, budget_id)
    if budget is not None:
        category = session.get(Category, budget.category_id)
        if category is not None and category.user_id == current_user.id:
            return budget
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Budget not found")


@router.get(
    "/categories/{category_id}/budgets",
    response_model=List[BudgetRead],
    status_code=status.HTTP_200_OK,
)
def list_budgets(
    category: Category = Depends(get_owned_category),
    session: Session = Depends(get_session),
):
    stmt = (
        select(Budget)
        .where(Budget.category_id == category.id)
        .order_by(Budget.starts_at.asc())
    )
    return list(session.exec(stmt).all())


@router.post(
    "/categories/{category_id}/budgets",
    response_model=BudgetRead,
    status_code=status.HTTP_201_CREATED,
)
def create_budget(
    payload: BudgetCreate,
    category: Category = Depends(get_owned_category),
    allocator: BudgetAllocator = Depends(get_budget_allocator),
):
    return allocator.create(category, payload.amount, payload.starts_at, payload.ends_at)


@router.get(
    "/categories/{category_id}/budgets/current",
    response_model=Optional[BudgetRead],
)
def current_budget(
    on: Optional[date] = None,
    category: Category = Depends(get_owned_category),
    allocator: BudgetAllocator = Depends(get_budget_allocator),
):
    """Budget applying to ``on`` (today when omitted), or null."""
    return allocator.resolve(category.id, on or allocator.today())


@router.get(
    "/categories/{category_id}/budgets/open-ended",
    response_model=List[BudgetRead],
)
def open_ended_budgets(
    category: Category = Depends(get_owned_category),
    allocator: BudgetAllocator = Depends(get_budget_allocator),
):
    return allocator.list_open_ended(category.id)


@router.get(
    "/budgets/{budget_id}",
    response_model=BudgetRead,
)
def get_budget(budget: Budget = Depends(get_owned_budget)):
    return budget


@router.patch(
    "/budgets/{budget_id}",
    response_model=BudgetRead,
)
def update_budget(
    payload: BudgetUpdate,
    budget: Budget = Depends(get_owned_budget),
    allocator: BudgetAllocator = Depends(get_budget_allocator),
):
    # starts_at and category_id are not part of BudgetUpdate; sending them is a no-op
    sent = payload.model_fields_set
    if not sent & {"amount", "ends_at"}:
        return budget
    if "ends_at" in sent and payload.ends_at is None:
        # Periods can be closed here but never reopened.
        raise ValidationError([FieldError("ends_at", "blank")])
    amount = payload.amount if "amount" in sent else budget.amount
    return allocator.update(budget, amount, payload.ends_at)


@router.delete(
    "/budgets/{budget_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_budget(
    budget: Budget = Depends(get_owned_budget),
    session: Session = Depends(get_session),
):
    session.delete(budget)
    session.commit()
    logger.info("Deleted budget %s of category %s", budget.id, budget.category_id)
    return None
