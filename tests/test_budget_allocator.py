"""
Tests for BudgetAllocator: normalization, validation, supersession and resolve.
"""
import gc
import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from conftest import make_budget, make_category, make_user
from finance_api.core.errors import InvariantViolationError, ValidationError
from finance_api.models.budget import Budget
from finance_api.models.category import Category
from finance_api.services.budget_allocator import (
    BudgetAllocator,
    beginning_of_month,
    _category_locks,
    category_lock,
    end_of_month,
)


TODAY = date(2024, 1, 10)


@pytest.fixture
def allocator(db_session):
    return BudgetAllocator(db_session, today=lambda: TODAY)


def _budgets(session, category):
    stmt = select(Budget).where(Budget.category_id == category.id).order_by(Budget.starts_at)
    return list(session.exec(stmt).all())


def test_month_helpers():
    assert beginning_of_month(date(2024, 2, 17)) == date(2024, 2, 1)
    assert end_of_month(date(2024, 2, 3)) == date(2024, 2, 29)
    assert end_of_month(date(2023, 2, 3)) == date(2023, 2, 28)
    assert end_of_month(date(2024, 12, 31)) == date(2024, 12, 31)


def test_create_normalizes_dates_to_month_bounds(allocator, category):
    budget = allocator.create(category, Decimal("250.00"), date(2024, 2, 17), date(2024, 4, 3))

    assert budget.starts_at == date(2024, 2, 1)
    assert budget.ends_at == date(2024, 4, 30)
    assert budget.amount == Decimal("250.00")
    assert budget.category_id == category.id


def test_create_in_current_month_is_allowed(allocator, category):
    budget = allocator.create(category, 10, date(2024, 1, 25))

    assert budget.starts_at == date(2024, 1, 1)
    assert budget.ends_at is None


@pytest.mark.parametrize(
    "amount,kind",
    [
        (None, "blank"),
        ("abc", "not_a_number"),
        (0, "greater_than"),
        (Decimal("-0.01"), "greater_than"),
        (Decimal("1000000000.00"), "less_than"),
        ("0.001", "greater_than"),
        ("999999999.995", "less_than"),
    ],
)
def test_create_rejects_bad_amount(allocator, category, db_session, amount, kind):
    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, amount, date(2024, 2, 1))

    assert exc_info.value.has("amount", kind)
    assert _budgets(db_session, category) == []


def test_create_accepts_largest_amount(allocator, category):
    budget = allocator.create(category, Decimal("999999999.99"), date(2024, 2, 1))

    assert budget.amount == Decimal("999999999.99")


def test_create_stores_amount_rounded_to_cents(allocator, category, db_session):
    budget = allocator.create(category, Decimal("12.345"), date(2024, 2, 1))

    db_session.refresh(budget)
    assert budget.amount == Decimal("12.35")


def test_create_requires_starts_at(allocator, category):
    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, 10, None)

    assert exc_info.value.has("starts_at", "blank")


def test_create_rejects_past_month(allocator, category, db_session):
    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, 10, date(2023, 12, 31), date(2024, 3, 1))

    assert exc_info.value.errors == [("starts_at", "in_past")]
    assert _budgets(db_session, category) == []


def test_create_rejects_end_before_start(allocator, category):
    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, 10, date(2024, 3, 1), date(2024, 2, 1))

    assert exc_info.value.has("ends_at", "not_after_starts_at")


def test_create_allows_single_month_period(allocator, category):
    budget = allocator.create(category, 10, date(2024, 3, 5), date(2024, 3, 5))

    assert (budget.starts_at, budget.ends_at) == (date(2024, 3, 1), date(2024, 3, 31))


def test_create_reports_all_violations_together(allocator, category):
    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, None, date(2023, 6, 1), date(2023, 5, 1))

    assert exc_info.value.as_dict() == {
        "amount": ["blank"],
        "starts_at": ["in_past"],
        "ends_at": ["not_after_starts_at"],
    }


def test_create_rejects_taken_starts_at(allocator, category, db_session):
    make_budget(db_session, category, date(2024, 2, 1), date(2024, 2, 29))

    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, 10, date(2024, 2, 14), date(2024, 5, 1))

    assert exc_info.value.errors == [("starts_at", "taken")]


def test_create_rejects_taken_ends_at(allocator, category, db_session):
    make_budget(db_session, category, date(2024, 3, 1), date(2024, 4, 30))

    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, 10, date(2024, 2, 1), date(2024, 4, 2))

    assert exc_info.value.errors == [("ends_at", "taken")]


def test_same_dates_in_other_category_are_free(allocator, category, db_session, user):
    other = make_category(db_session, user, "Rent")
    make_budget(db_session, other, date(2024, 2, 1), date(2024, 2, 29))

    budget = allocator.create(category, 10, date(2024, 2, 1), date(2024, 2, 29))

    assert budget.category_id == category.id


def test_supersession_backdate_before_future(allocator, category, db_session):
    existing = make_budget(db_session, category, date(2024, 3, 1))

    budget = allocator.create(category, 10, date(2024, 1, 1))

    db_session.refresh(existing)
    assert existing.ends_at == date(2024, 3, 31)
    assert budget.starts_at == date(2024, 1, 1)
    assert budget.ends_at is None


def test_supersession_forward_extension(allocator, category, db_session):
    existing = make_budget(db_session, category, date(2024, 1, 1))

    budget = allocator.create(category, 10, date(2024, 4, 1))

    db_session.refresh(existing)
    assert existing.ends_at == date(2024, 3, 31)
    assert budget.starts_at == date(2024, 4, 1)
    assert budget.ends_at is None
    assert allocator.list_open_ended(category.id) == [budget]


def test_supersession_leaves_other_categories_alone(allocator, category, db_session, user):
    other = make_category(db_session, user, "Rent")
    foreign = make_budget(db_session, other, date(2024, 1, 1))

    allocator.create(category, 10, date(2024, 4, 1))

    db_session.refresh(foreign)
    assert foreign.ends_at is None


def test_closed_candidate_does_not_supersede(allocator, category, db_session):
    existing = make_budget(db_session, category, date(2024, 1, 1))

    allocator.create(category, 10, date(2024, 6, 1), date(2024, 6, 30))

    db_session.refresh(existing)
    assert existing.ends_at is None


def test_supersession_with_same_start_fails_without_changes(allocator, category, db_session):
    existing = make_budget(db_session, category, date(2024, 2, 1))

    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, 10, date(2024, 2, 20))

    assert exc_info.value.has("starts_at", "taken")
    assert exc_info.value.has("ends_at", "supersession_failed")
    db_session.refresh(existing)
    assert existing.ends_at is None
    assert len(_budgets(db_session, category)) == 1


def test_rejected_create_does_not_close_open_period(db_session, category):
    allocator = BudgetAllocator(db_session, today=lambda: date(2024, 3, 5))
    existing = make_budget(db_session, category, date(2024, 1, 1))

    with pytest.raises(ValidationError) as exc_info:
        allocator.create(category, 10, date(2024, 2, 1))

    assert exc_info.value.has("starts_at", "in_past")
    db_session.refresh(existing)
    assert existing.ends_at is None
    assert len(_budgets(db_session, category)) == 1


def test_failed_insert_rolls_back_supersession(allocator, category, db_session, monkeypatch):
    existing = make_budget(db_session, category, date(2024, 1, 1))

    def _boom(budget):
        raise SQLAlchemyError("insert failed")

    monkeypatch.setattr(allocator, "_insert", _boom)

    with pytest.raises(SQLAlchemyError):
        allocator.create(category, 10, date(2024, 4, 1))

    db_session.refresh(existing)
    assert existing.ends_at is None
    assert len(_budgets(db_session, category)) == 1


def test_several_open_ended_periods_are_an_invariant_violation(allocator, category, db_session, monkeypatch):
    first = make_budget(db_session, category, date(2024, 1, 1))
    second = make_budget(db_session, category, date(2024, 2, 1), date(2024, 2, 29))
    monkeypatch.setattr(allocator, "list_open_ended", lambda category_id: [first, second])

    with pytest.raises(InvariantViolationError):
        allocator.create(category, 10, date(2024, 5, 1))

    db_session.refresh(first)
    assert first.ends_at is None
    assert len(_budgets(db_session, category)) == 2


def test_sequence_of_open_ended_creates_stays_contiguous(allocator, category, db_session):
    for month in (1, 3, 6, 7):
        allocator.create(category, 10, date(2024, month, 15))

    budgets = _budgets(db_session, category)
    spans = [(b.starts_at, b.ends_at) for b in budgets]
    assert spans == [
        (date(2024, 1, 1), date(2024, 2, 29)),
        (date(2024, 3, 1), date(2024, 5, 31)),
        (date(2024, 6, 1), date(2024, 6, 30)),
        (date(2024, 7, 1), None),
    ]
    assert len(allocator.list_open_ended(category.id)) == 1
    for earlier, later in zip(budgets, budgets[1:]):
        assert earlier.ends_at < later.starts_at


def test_list_open_ended_only_returns_category_periods(allocator, category, db_session, user):
    other = make_category(db_session, user, "Rent")
    make_budget(db_session, other, date(2024, 1, 1))
    make_budget(db_session, category, date(2024, 1, 1), date(2024, 1, 31))
    open_ended = make_budget(db_session, category, date(2024, 2, 1))

    assert allocator.list_open_ended(category.id) == [open_ended]


def test_resolve(allocator, category, db_session):
    january = make_budget(db_session, category, date(2024, 1, 1), date(2024, 1, 31))
    ongoing = make_budget(db_session, category, date(2024, 2, 1))

    assert allocator.resolve(category.id, date(2024, 1, 15)) == january
    assert allocator.resolve(category.id, date(2024, 1, 31)) == january
    assert allocator.resolve(category.id, date(2024, 2, 1)) == ongoing
    assert allocator.resolve(category.id, date(2024, 6, 1)) == ongoing
    assert allocator.resolve(category.id, date(2023, 12, 1)) is None


def test_resolve_returns_none_after_last_closed_period(allocator, category, db_session):
    make_budget(db_session, category, date(2024, 1, 1), date(2024, 1, 31))

    assert allocator.resolve(category.id, date(2024, 2, 1)) is None


def test_resolve_prefers_earliest_end_when_periods_overlap(allocator, category, db_session):
    scheduled = make_budget(db_session, category, date(2024, 3, 1))
    backdated = allocator.create(category, 10, date(2024, 1, 1))

    db_session.refresh(scheduled)
    assert allocator.resolve(category.id, date(2024, 3, 15)) == scheduled
    assert allocator.resolve(category.id, date(2024, 2, 15)) == backdated
    assert allocator.resolve(category.id, date(2024, 4, 1)) == backdated


def test_update_changes_amount_only(allocator, category):
    budget = allocator.create(category, 10, date(2024, 2, 1), date(2024, 3, 31))

    updated = allocator.update(budget, Decimal("75.50"))

    assert updated.amount == Decimal("75.50")
    assert (updated.starts_at, updated.ends_at) == (date(2024, 2, 1), date(2024, 3, 31))
    assert updated.category_id == category.id


@pytest.mark.parametrize("amount,kind", [(None, "blank"), (0, "greater_than"), ("0.004", "greater_than"), (10 ** 9, "less_than")])
def test_update_rejects_bad_amount(allocator, category, db_session, amount, kind):
    budget = allocator.create(category, 10, date(2024, 2, 1))

    with pytest.raises(ValidationError) as exc_info:
        allocator.update(budget, amount)

    assert exc_info.value.errors == [("amount", kind)]
    db_session.refresh(budget)
    assert budget.amount == Decimal("10")


def test_update_closes_open_period_at_month_end(allocator, category):
    budget = allocator.create(category, 10, date(2024, 2, 1))

    updated = allocator.update(budget, budget.amount, ends_at=date(2024, 5, 2))

    assert updated.ends_at == date(2024, 5, 31)
    assert allocator.list_open_ended(category.id) == []


def test_update_rejects_taken_ends_at(allocator, category):
    allocator.create(category, 10, date(2024, 2, 1), date(2024, 5, 31))
    budget = allocator.create(category, 10, date(2024, 6, 1))

    with pytest.raises(ValidationError) as exc_info:
        allocator.update(budget, 10, ends_at=date(2024, 5, 31))

    assert exc_info.value.has("ends_at", "not_after_starts_at")
    assert exc_info.value.has("ends_at", "taken")


def test_category_lock_is_per_category(category, db_session, user):
    other = make_category(db_session, user, "Rent")

    assert category_lock(category.id) is category_lock(category.id)
    assert category_lock(category.id) is not category_lock(other.id)


def test_category_lock_is_released_when_unused(category):
    lock = category_lock(category.id)
    assert _category_locks.get(category.id) is lock

    del lock
    gc.collect()

    assert _category_locks.get(category.id) is None


def test_concurrent_open_ended_creates_serialize(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'budgets.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        category_id = make_category(session, make_user(session)).id

    barrier = threading.Barrier(2)
    failures = []

    def create(starts_at):
        with Session(engine) as session:
            category = session.get(Category, category_id)
            allocator = BudgetAllocator(session, today=lambda: TODAY)
            barrier.wait()
            try:
                allocator.create(category, 10, starts_at)
            except Exception as exc:
                failures.append(exc)

    threads = [threading.Thread(target=create, args=(day,)) for day in (date(2024, 2, 1), date(2024, 3, 1))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    with Session(engine) as session:
        open_ended = BudgetAllocator(session).list_open_ended(category_id)
        rows = session.exec(select(Budget).where(Budget.category_id == category_id)).all()
    engine.dispose()

    assert failures == []
    assert len(rows) == 2
    assert len(open_ended) == 1
    closed = [b for b in rows if b.id != open_ended[0].id]
    assert closed[0].ends_at is not None
