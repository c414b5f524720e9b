import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel, create_engine

from .config import settings

logger = logging.getLogger(__name__)

SQLITE_PRAGMAS = ("PRAGMA journal_mode=WAL;", "PRAGMA busy_timeout=60000;")


def configure_sqlite(target: Engine) -> bool:
    """Switch a SQLite database to WAL with a long busy timeout.

    Returns False when the file is locked, e.g. while the reloader restarts;
    the engine still works with SQLite's defaults then.
    """
    try:
        with target.connect() as conn:
            for pragma in SQLITE_PRAGMAS:
                conn.exec_driver_sql(pragma)
    except OperationalError as exc:
        logger.warning("Could not apply SQLite pragmas to %s: %s", target.url, exc)
        return False
    return True


def build_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, echo=settings.sql_echo)

    # Single connection per checkout so pooled connections don't hold write locks.
    sqlite_engine = create_engine(
        url,
        echo=settings.sql_echo,
        connect_args={"check_same_thread": False, "timeout": 60},
        poolclass=NullPool,
    )
    configure_sqlite(sqlite_engine)
    return sqlite_engine


engine = build_engine(settings.database_url)


def get_session():
    with Session(engine) as session:
        yield session


def init_db():
    from .models import budget, category, goal, payment, user, wallet  # noqa: F401

    SQLModel.metadata.create_all(engine)
