"""Database engine setup.

For test runs (ENV=test) the engine is an in-memory SQLite database; tests
rebind ``SessionLocal`` to a ``StaticPool`` engine in ``conftest.py``.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from notifier.core.config import settings

raw_url = settings.DATABASE_URL or "sqlite:///:memory:"

if raw_url.startswith("postgresql"):
    engine = create_engine(
        raw_url,
        future=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,
    )
else:
    engine = create_engine(raw_url, future=True)

SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
