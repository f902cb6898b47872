from __future__ import annotations

import math
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from affiliate_engine.core.config import Settings, get_settings
from affiliate_engine.core.errors import StoreError
from affiliate_engine.core.logging import get_structured_logger


logger = get_structured_logger(__name__)

Base = declarative_base()


def _connect_args(config: Settings) -> dict:
    if config.DATABASE_URL.startswith("sqlite"):
        # sqlite3 waits this long on a locked database before erroring.
        return {"check_same_thread": False, "timeout": config.STORE_TIMEOUT_SECONDS}
    if config.DATABASE_URL.startswith("postgresql"):
        timeout_ms = int(config.STORE_TIMEOUT_SECONDS * 1000)
        return {
            "connect_timeout": max(1, math.ceil(config.STORE_TIMEOUT_SECONDS)),
            "options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}",
        }
    return {}


def make_engine(config: Settings | None = None) -> Engine:
    config = config or get_settings()
    kwargs: dict = {
        "echo": config.DB_ECHO,
        "future": True,
        "connect_args": _connect_args(config),
    }
    if not config.DATABASE_URL.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
        kwargs["pool_timeout"] = config.STORE_POOL_TIMEOUT_SECONDS
    return create_engine(config.DATABASE_URL, **kwargs)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True)


engine = make_engine()
SessionLocal = make_session_factory(engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    import affiliate_engine.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def store_guard(db: Session, operation: str) -> Iterator[None]:
    """Roll back and surface store failures (including timeouts) as StoreError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "store.failed",
            extra={"operation": operation, "error_type": exc.__class__.__name__},
        )
        raise StoreError(f"Store failure during {operation}", cause=exc) from exc
