"""
Pytest fixtures for testing
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_ALGORITHM", "HS256")

import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from finance_api.core.jwt import create_access_token
from finance_api.core.security import hash_password
from finance_api.database import get_session
from finance_api.main import app
from finance_api.models.budget import Budget
from finance_api.models.category import Category
from finance_api.models.user import User
from finance_api.models.wallet import Wallet


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def client(db_session):
    def _get_session_override():
        return db_session

    app.dependency_overrides[get_session] = _get_session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(session: Session, email: str = "ana@example.com", password: str = "s3cret-pass") -> User:
    now = datetime.utcnow()
    user = User(
        id=uuid.uuid4(),
        email=email,
        nickname=email.split("@")[0],
        hashed_password=hash_password(password),
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_category(session: Session, user: User, description: str = "Groceries") -> Category:
    category = Category(user_id=user.id, description=description)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


def make_budget(session: Session, category: Category, starts_at: date, ends_at=None, amount="100.00") -> Budget:
    """Insert a budget row directly, skipping the allocator's rules."""
    budget = Budget(
        category_id=category.id,
        amount=Decimal(amount),
        starts_at=starts_at,
        ends_at=ends_at,
    )
    session.add(budget)
    session.commit()
    session.refresh(budget)
    return budget


def make_wallet(session: Session, user: User, description: str = "Checking", balance: str = "0") -> Wallet:
    wallet = Wallet(user_id=user.id, description=description, balance=Decimal(balance))
    session.add(wallet)
    session.commit()
    session.refresh(wallet)
    return wallet


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def user(db_session):
    return make_user(db_session)


@pytest.fixture
def other_user(db_session):
    return make_user(db_session, email="bruno@example.com")


@pytest.fixture
def category(db_session, user):
    return make_category(db_session, user)


@pytest.fixture
def headers(user):
    return auth_headers(user)
