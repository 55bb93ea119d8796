from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from hireflow.core.config import settings


def create_db_engine(url: str | None = None) -> Engine:
    database_url = url or settings.database_url
    connect_args: dict = {}
    if database_url.startswith("sqlite"):
        # Dispatcher lanes and bus threads share the pool.
        connect_args["check_same_thread"] = False
    return create_engine(database_url, future=True, pool_pre_ping=True, connect_args=connect_args)


engine = create_db_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    from hireflow.models import Base

    Base.metadata.create_all(bind=bind or engine)
