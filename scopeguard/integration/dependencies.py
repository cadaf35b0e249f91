from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from scopeguard.engine import AuthorizationEngine
from scopeguard.errors import SECURITY_UNAVAILABLE, IdentityNotFound, SecurityEvaluationError
from scopeguard.integration.decorators import REQUIRED_PERMISSIONS_ATTR, ROW_FILTERS_ATTR
from scopeguard.settings import get_settings

logger = logging.getLogger(__name__)


def get_authorization_engine(request: Request) -> AuthorizationEngine:
    engine = getattr(request.app.state, "authorization_engine", None)
    if engine is None:
        raise RuntimeError("Authorization engine not configured. Did app startup run?")
    return engine


def extract_user_id(request: Request) -> str | None:
    """
    Read the caller's id from the trusted identity header.

    Authentication happens upstream; this layer only trusts the header it is
    configured with.
    """

    header_name = getattr(request.app.state, "user_id_header", None) or get_settings().user_id_header
    raw = request.headers.get(header_name)
    if raw is None or not raw.strip():
        logger.info("Missing %s header path=%s method=%s", header_name, request.url.path, request.method)
        return None
    return raw.strip()


def get_current_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None) or extract_user_id(request)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user_id


def enforce_security(
    request: Request,
    engine: AuthorizationEngine = Depends(get_authorization_engine),
) -> None:
    """
    Global security dependency.

    Runs after routing so it can read the metadata left by
    ``require_permission`` / ``apply_row_filter``. Routes without metadata are
    left alone.
    """

    endpoint = request.scope.get("endpoint")
    required = list(getattr(endpoint, REQUIRED_PERMISSIONS_ATTR, [])) if endpoint else []
    row_filters = dict(getattr(endpoint, ROW_FILTERS_ATTR, {})) if endpoint else {}

    if not required and not row_filters:
        return

    user_id = extract_user_id(request)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id")

    try:
        engine.get_security_context(user_id)
    except IdentityNotFound as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or inactive user") from exc
    except SecurityEvaluationError as exc:
        logger.warning("Security context unavailable user=%s error=%s", user_id, type(exc).__name__)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=SECURITY_UNAVAILABLE) from exc

    request.state.user_id = user_id

    for business_object, action in required:
        result = engine.check_permission(user_id, business_object, action)
        if result.allowed:
            continue
        if result.reason == SECURITY_UNAVAILABLE:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=SECURITY_UNAVAILABLE)
        logger.info(
            "Permission denied user=%s object=%s action=%s path=%s", user_id, business_object, action.value, request.url.path
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=result.reason)

    if row_filters:
        request.state.row_filters = {
            business_object: engine.compile_filter(user_id, business_object, operation)
            for business_object, operation in row_filters.items()
        }
