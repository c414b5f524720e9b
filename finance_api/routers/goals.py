import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlmodel import Field, Session, SQLModel, select

from ..core.errors import FieldError, ValidationError
from ..core.security import get_current_user
from ..database import get_session
from ..models.goal import Goal
from ..models.user import User

router = APIRouter(
    prefix="/goals",
    tags=["goals"],
)


class GoalCreate(SQLModel):
    description: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0, lt=1_000_000_000, max_digits=11, decimal_places=2)
    starts_at: date
    ends_at: date


class GoalUpdate(SQLModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[Decimal] = Field(default=None, gt=0, lt=1_000_000_000, max_digits=11, decimal_places=2)
    starts_at: Optional[date] = None
    ends_at: Optional[date] = None


class GoalRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    description: str
    amount: Decimal
    starts_at: date
    ends_at: date
    created_at: datetime
    updated_at: datetime


def _check_dates(starts_at: date, ends_at: date) -> None:
    if ends_at <= starts_at:
        raise ValidationError([FieldError("ends_at", "not_after_starts_at")])


def _ensure_description_free(session: Session, user: User, description: str, exclude: Optional[uuid.UUID] = None) -> None:
    stmt = select(Goal).where(
        Goal.user_id == user.id,
        func.lower(Goal.description) == description.lower(),
    )
    if exclude is not None:
        stmt = stmt.where(Goal.id != exclude)
    if session.exec(stmt).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Goal description already taken")


def get_owned_goal(
    goal_id: uuid.UUID,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> Goal:
    goal = session.get(Goal, goal_id)
    if not goal or goal.user_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    return goal


@router.get(
    "",
    response_model=List[GoalRead],
)
def list_goals(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    stmt = select(Goal).where(Goal.user_id == current_user.id).order_by(Goal.ends_at.asc())
    return list(session.exec(stmt).all())


@router.post(
    "",
    response_model=GoalRead,
    status_code=status.HTTP_201_CREATED,
)
def create_goal(
    payload: GoalCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    description = payload.description.strip()
    _check_dates(payload.starts_at, payload.ends_at)
    _ensure_description_free(session, current_user, description)

    now = datetime.utcnow()
    goal = Goal(
        id=uuid.uuid4(),
        user_id=current_user.id,
        description=description,
        amount=payload.amount,
        starts_at=payload.starts_at,
        ends_at=payload.ends_at,
        created_at=now,
        updated_at=now,
    )
    session.add(goal)
    session.commit()
    session.refresh(goal)
    return goal


@router.get(
    "/{goal_id}",
    response_model=GoalRead,
)
def get_goal(goal: Goal = Depends(get_owned_goal)):
    return goal


@router.patch(
    "/{goal_id}",
    response_model=GoalRead,
)
def update_goal(
    payload: GoalUpdate,
    goal: Goal = Depends(get_owned_goal),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )
    if "description" in changes:
        changes["description"] = changes["description"].strip()
        _ensure_description_free(session, current_user, changes["description"], exclude=goal.id)
    _check_dates(changes.get("starts_at", goal.starts_at), changes.get("ends_at", goal.ends_at))

    for key, value in changes.items():
        setattr(goal, key, value)
    goal.updated_at = datetime.utcnow()
    session.add(goal)
    session.commit()
    session.refresh(goal)
    return goal


@router.delete(
    "/{goal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_goal(
    goal: Goal = Depends(get_owned_goal),
    session: Session = Depends(get_session),
):
    session.delete(goal)
    session.commit()
    return None
