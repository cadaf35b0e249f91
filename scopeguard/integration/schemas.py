from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from scopeguard.context import Action


class PermissionCheckIn(BaseModel):
    business_object: str
    action: Action
    context: dict[str, Any] | None = None


class PermissionResultOut(BaseModel):
    allowed: bool
    reason: str | None = None


class PermissionMatrixOut(BaseModel):
    read: bool
    write: bool
    create: bool
    delete: bool
    approve: bool


class UIElementOut(BaseModel):
    name: str
    type: str
    visible: bool
    enabled: bool
    readonly: bool


class ElementVisibilityOut(BaseModel):
    element: str
    visible: bool
    enabled: bool
    readonly: bool
    reason: str | None = None
