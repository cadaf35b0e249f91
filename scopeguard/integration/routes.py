from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from scopeguard.engine import AuthorizationEngine
from scopeguard.integration.dependencies import get_authorization_engine, get_current_user_id
from scopeguard.integration.schemas import (
    ElementVisibilityOut,
    PermissionCheckIn,
    PermissionMatrixOut,
    PermissionResultOut,
    UIElementOut,
)
from scopeguard.security.permissions import PermissionCheck

router = APIRouter(prefix="/security", tags=["security"])


@router.get("/objects", response_model=list[str])
def accessible_objects(
    user_id: str = Depends(get_current_user_id),
    engine: AuthorizationEngine = Depends(get_authorization_engine),
) -> list[str]:
    return engine.permissions.get_accessible_objects(user_id)


@router.get("/objects/{business_object}", response_model=PermissionMatrixOut)
def object_permissions(
    business_object: str,
    user_id: str = Depends(get_current_user_id),
    engine: AuthorizationEngine = Depends(get_authorization_engine),
) -> dict[str, bool]:
    return engine.permissions.get_user_permissions(user_id, business_object).to_dict()


@router.post("/permissions/check", response_model=dict[str, PermissionResultOut])
def check_permissions(
    checks: list[PermissionCheckIn],
    user_id: str = Depends(get_current_user_id),
    engine: AuthorizationEngine = Depends(get_authorization_engine),
) -> dict[str, dict]:
    results = engine.check_permissions(
        user_id,
        [PermissionCheck(c.business_object, c.action, c.context) for c in checks],
    )
    return {key: result.to_dict() for key, result in results.items()}


@router.get("/ui/elements", response_model=dict[str, ElementVisibilityOut])
def ui_elements(
    names: list[str] = Query(...),
    user_id: str = Depends(get_current_user_id),
    engine: AuthorizationEngine = Depends(get_authorization_engine),
) -> dict[str, dict]:
    return {name: v.to_dict() for name, v in engine.evaluate_ui_elements(user_id, names).items()}


@router.get("/ui/pages/{page}", response_model=dict[str, UIElementOut])
def ui_config(
    page: str,
    user_id: str = Depends(get_current_user_id),
    engine: AuthorizationEngine = Depends(get_authorization_engine),
) -> dict[str, dict]:
    return {
        name: {
            "name": e.name,
            "type": e.type,
            "visible": e.visible,
            "enabled": e.enabled,
            "readonly": e.readonly,
        }
        for name, e in engine.generate_ui_config(user_id, page).items()
    }
