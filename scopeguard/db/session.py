from __future__ import annotations

from collections.abc import Generator
from functools import lru_cache

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from scopeguard.settings import Settings, get_settings


def build_db_engine(settings: Settings) -> Engine:
    url = settings.resolved_db_url()
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=build_db_engine(get_settings()), autocommit=False, autoflush=False, class_=Session)


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Main DB dependency.

    Row filters compiled by ``enforce_security`` are copied into
    ``Session.info["row_filters"]`` so that plain ``db.scalars(select(Model))``
    calls are scoped by the ``do_orm_execute`` hook in ``scopeguard.db.filters``.
    """

    factory = getattr(request.app.state, "session_factory", None) or get_session_factory()
    db = factory()
    try:
        row_filters = getattr(getattr(request, "state", None), "row_filters", None)
        if row_filters:
            db.info["row_filters"] = row_filters
        yield db
    finally:
        db.close()
