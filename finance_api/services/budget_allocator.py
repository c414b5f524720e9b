"""Budget period allocation.

Keeps each category's budget periods on a non-overlapping, month-aligned
timeline. Creating a period without an end date closes the category's
current open-ended period (supersession) in the same transaction as the
insert, so a category never ends up with two open-ended periods.
"""
import calendar
import logging
import threading
import uuid
import weakref
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, List, Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from ..core.errors import FieldError, InvariantViolationError, ValidationError
from ..models.budget import Budget
from ..models.category import Category

logger = logging.getLogger(__name__)

MAX_AMOUNT = Decimal("1000000000")
CENT = Decimal("0.01")

_registry_lock = threading.Lock()
# Entries disappear once no caller holds the lock.
_category_locks: "weakref.WeakValueDictionary[uuid.UUID, threading.Lock]" = weakref.WeakValueDictionary()


def category_lock(category_id: uuid.UUID) -> threading.Lock:
    """Process-local lock serializing allocator writes for one category."""
    with _registry_lock:
        lock = _category_locks.get(category_id)
        if lock is None:
            lock = _category_locks[category_id] = threading.Lock()
        return lock


def beginning_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def _coerce_amount(amount) -> Optional[Decimal]:
    """Parse ``amount`` and round it to cents, the scale the column stores."""
    if amount is None:
        return None
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    # Out-of-range values fail validation either way; quantize would overflow on huge ones.
    if not value.is_finite() or abs(value) > MAX_AMOUNT:
        return value
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_amount(amount) -> List[FieldError]:
    if amount is None:
        return [FieldError("amount", "blank")]
    try:
        value = _coerce_amount(amount)
    except (InvalidOperation, ValueError):
        return [FieldError("amount", "not_a_number")]
    if not value.is_finite():
        return [FieldError("amount", "not_a_number")]
    if value <= 0:
        return [FieldError("amount", "greater_than")]
    if value >= MAX_AMOUNT:
        return [FieldError("amount", "less_than")]
    return []


class BudgetAllocator:
    def __init__(self, session: Session, today: Callable[[], date] = date.today):
        self.session = session
        self.today = today

    # Queries

    def list_open_ended(self, category_id: uuid.UUID) -> List[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.category_id == category_id, Budget.ends_at.is_(None))
            .order_by(Budget.starts_at.asc())
        )
        return list(self.session.exec(stmt).all())

    def resolve(self, category_id: uuid.UUID, on: date) -> Optional[Budget]:
        """Return the period covering ``on``, or None.

        Should several periods match, the one ending first wins, with
        open-ended periods sorting last.
        """
        stmt = (
            select(Budget)
            .where(Budget.category_id == category_id, Budget.starts_at <= on)
            .where(or_(Budget.ends_at.is_(None), Budget.ends_at >= on))
            .order_by(Budget.ends_at.asc().nulls_last(), Budget.starts_at.asc())
        )
        matches = list(self.session.exec(stmt).all())
        if len(matches) > 1:
            logger.warning(
                "%d budget periods of category %s cover %s; using %s",
                len(matches), category_id, on, matches[0].id,
            )
        return matches[0] if matches else None

    # Commands

    def create(self, category: Category, amount, starts_at: Optional[date], ends_at: Optional[date] = None) -> Budget:
        with category_lock(category.id):
            try:
                budget = self._create_locked(category, amount, starts_at, ends_at)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        self.session.refresh(budget)
        logger.info("Created budget %s for category %s from %s to %s", budget.id, category.id, budget.starts_at, budget.ends_at)
        return budget

    def update(self, budget: Budget, amount, ends_at: Optional[date] = None) -> Budget:
        """Change a period's amount and, optionally, close it at ``ends_at``.

        ``starts_at`` and ``category_id`` are never touched here.
        """
        with category_lock(budget.category_id):
            errors = validate_amount(amount)
            if ends_at is not None:
                ends_at = end_of_month(ends_at)
                errors.extend(self._check_ends_at(budget.category_id, budget.starts_at, ends_at, exclude=budget.id))
            if errors:
                logger.info("Rejected update of budget %s: %s", budget.id, errors)
                raise ValidationError(errors)

            budget.amount = _coerce_amount(amount)
            if ends_at is not None:
                budget.ends_at = ends_at
            budget.updated_at = datetime.utcnow()
            try:
                self.session.add(budget)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        self.session.refresh(budget)
        return budget

    # Internals

    def _create_locked(self, category: Category, amount, starts_at, ends_at) -> Budget:
        self._lock_category_row(category.id)

        if starts_at is not None:
            starts_at = beginning_of_month(starts_at)
        if ends_at is not None:
            ends_at = end_of_month(ends_at)

        errors: List[FieldError] = []
        if ends_at is None and starts_at is not None:
            errors.extend(self._supersede_open_ended(category.id, starts_at))

        errors.extend(validate_amount(amount))
        if starts_at is None:
            errors.append(FieldError("starts_at", "blank"))
        else:
            if starts_at < beginning_of_month(self.today()):
                errors.append(FieldError("starts_at", "in_past"))
            if self._taken(category.id, Budget.starts_at, starts_at):
                errors.append(FieldError("starts_at", "taken"))
        errors.extend(self._check_ends_at(category.id, starts_at, ends_at))

        if errors:
            logger.info("Rejected budget for category %s: %s", category.id, errors)
            raise ValidationError(errors)

        now = datetime.utcnow()
        budget = Budget(
            id=uuid.uuid4(),
            category_id=category.id,
            amount=_coerce_amount(amount),
            starts_at=starts_at,
            ends_at=ends_at,
            created_at=now,
            updated_at=now,
        )
        self._insert(budget)
        return budget

    def _supersede_open_ended(self, category_id: uuid.UUID, starts_at: date) -> List[FieldError]:
        open_ended = self.list_open_ended(category_id)
        if not open_ended:
            return []
        if len(open_ended) > 1:
            ids = ", ".join(str(b.id) for b in open_ended)
            logger.error("Category %s has %d open-ended budgets: %s", category_id, len(open_ended), ids)
            raise InvariantViolationError(
                f"category {category_id} has {len(open_ended)} open-ended budgets ({ids})"
            )

        current = open_ended[0]
        if current.starts_at > starts_at:
            # New period starts before an already scheduled one; keep only
            # that period's first month.
            new_ends_at = end_of_month(current.starts_at)
        else:
            new_ends_at = starts_at - timedelta(days=1)

        problems = self._check_ends_at(category_id, current.starts_at, new_ends_at, exclude=current.id)
        if problems:
            logger.info("Cannot close open-ended budget %s at %s: %s", current.id, new_ends_at, problems)
            return [FieldError("ends_at", "supersession_failed")]

        logger.info("Closing open-ended budget %s at %s", current.id, new_ends_at)
        current.ends_at = new_ends_at
        current.updated_at = datetime.utcnow()
        self.session.add(current)
        self.session.flush()
        return []

    def _check_ends_at(self, category_id, starts_at, ends_at, exclude: Optional[uuid.UUID] = None) -> List[FieldError]:
        errors = []
        if ends_at is not None and starts_at is not None and ends_at <= starts_at:
            errors.append(FieldError("ends_at", "not_after_starts_at"))
        if self._taken(category_id, Budget.ends_at, ends_at, exclude=exclude):
            errors.append(FieldError("ends_at", "taken"))
        return errors

    def _taken(self, category_id, column, value, exclude: Optional[uuid.UUID] = None) -> bool:
        stmt = select(Budget.id).where(Budget.category_id == category_id)
        stmt = stmt.where(column.is_(None) if value is None else column == value)
        if exclude is not None:
            stmt = stmt.where(Budget.id != exclude)
        return self.session.exec(stmt.limit(1)).first() is not None

    def _lock_category_row(self, category_id: uuid.UUID) -> None:
        # FOR UPDATE is a no-op on SQLite; the per-category lock covers it there.
        self.session.exec(select(Category.id).where(Category.id == category_id).with_for_update()).first()

    def _insert(self, budget: Budget) -> None:
        self.session.add(budget)
        self.session.flush()
