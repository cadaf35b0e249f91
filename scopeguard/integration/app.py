from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from sqlalchemy.orm import Session

from scopeguard.db import filters as _filters  # noqa: F401  (register the row filter hook)
from scopeguard.engine import AuthorizationEngine, build_engine
from scopeguard.integration import routes
from scopeguard.integration.dependencies import enforce_security
from scopeguard.logging_config import configure_logging
from scopeguard.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    engine: AuthorizationEngine | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        if getattr(app.state, "authorization_engine", None) is None:
            app.state.authorization_engine = build_engine(settings, session_factory=session_factory)
            logger.info("Authorization engine initialized")
        yield

    # Global dependency: routes opt in through decorator metadata.
    app = FastAPI(dependencies=[Depends(enforce_security)], lifespan=lifespan)
    app.state.user_id_header = settings.user_id_header
    app.state.session_factory = session_factory
    if engine is not None:
        app.state.authorization_engine = engine

    app.include_router(routes.router)
    return app
