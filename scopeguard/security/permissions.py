"""
Permission checks: base ACL plus contextual overrides.

Denials are returned as ``PermissionResult`` values. Only ``require`` raises,
and it raises ``PermissionDenied`` carrying the same reason.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from scopeguard.context import NO_PERMISSIONS, Action, PermissionMatrix, Scope, SecurityContext
from scopeguard.errors import SECURITY_UNAVAILABLE, PermissionDenied
from scopeguard.policy import SecurityPolicy
from scopeguard.security.service import SecurityContextService

logger = logging.getLogger(__name__)

TENANT_KEYS = ("tenant_id", "establishment_id")


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "reason": self.reason}


ALLOWED = PermissionResult(allowed=True)


@dataclass(frozen=True)
class PermissionCheck:
    business_object: str
    action: Action
    context: Mapping[str, Any] | None = None

    @property
    def key(self) -> str:
        action = getattr(self.action, "value", self.action)
        return f"{self.business_object}.{action}"


def _deny(reason: str) -> PermissionResult:
    return PermissionResult(allowed=False, reason=reason)


class PermissionEvaluator:
    def __init__(self, contexts: SecurityContextService, policy: SecurityPolicy) -> None:
        self._contexts = contexts
        self._policy = policy
        objects = policy.objects
        self._overrides: dict[str, Callable[[SecurityContext, Action, Mapping[str, Any]], PermissionResult]] = {
            objects.user_management: self._check_user_management,
            objects.inspection: self._check_inspection,
        }

    def check(
        self,
        user_id: str,
        business_object: str,
        action: Action | str,
        context: Mapping[str, Any] | None = None,
    ) -> PermissionResult:
        try:
            security_context = self._contexts.get(user_id)
            result = self._evaluate(security_context, business_object, Action(action), context)
        except Exception:
            logger.exception("Permission evaluation failed user=%s object=%s action=%s", user_id, business_object, action)
            return _deny(SECURITY_UNAVAILABLE)

        logger.debug(
            "Permission %s user=%s object=%s action=%s reason=%s",
            "granted" if result.allowed else "denied",
            user_id,
            business_object,
            Action(action).value,
            result.reason,
        )
        return result

    def check_many(self, user_id: str, checks: Iterable[PermissionCheck]) -> dict[str, PermissionResult]:
        """Evaluate a batch against a single compiled context. Keys are ``"<object>.<action>"``."""
        checks = list(checks)
        try:
            security_context = self._contexts.get(user_id)
        except Exception:
            logger.exception("Permission batch evaluation failed user=%s", user_id)
            return {c.key: _deny(SECURITY_UNAVAILABLE) for c in checks}

        results: dict[str, PermissionResult] = {}
        for c in checks:
            try:
                results[c.key] = self._evaluate(security_context, c.business_object, Action(c.action), c.context)
            except Exception:
                logger.exception("Permission evaluation failed user=%s check=%s", user_id, c.key)
                results[c.key] = _deny(SECURITY_UNAVAILABLE)
        return results

    def require(
        self,
        user_id: str,
        business_object: str,
        action: Action | str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        result = self.check(user_id, business_object, action, context)
        if not result.allowed:
            raise PermissionDenied(result.reason or f"permission denied for {business_object}.{Action(action).value}")

    def get_user_permissions(self, user_id: str, business_object: str) -> PermissionMatrix:
        """Full matrix for one object; all false when the context cannot be compiled."""
        try:
            return self._contexts.get(user_id).permission_for(business_object)
        except Exception:
            logger.exception("Could not load permissions user=%s object=%s", user_id, business_object)
            return NO_PERMISSIONS

    def get_accessible_objects(self, user_id: str) -> list[str]:
        """Business objects on which the user holds at least one grant."""
        try:
            security_context = self._contexts.get(user_id)
        except Exception:
            logger.exception("Could not load accessible objects user=%s", user_id)
            return []
        return sorted(name for name, matrix in security_context.permissions.items() if matrix.any())

    def _evaluate(
        self,
        ctx: SecurityContext,
        business_object: str,
        action: Action,
        context: Mapping[str, Any] | None,
    ) -> PermissionResult:
        matrix = ctx.permissions.get(business_object)
        if matrix is None:
            return _deny(f"no permission entry for object {business_object}")
        if not matrix.allows(action):
            return _deny(f"permission {action.value} denied for object {business_object}")

        if not context:
            return ALLOWED

        tenant = self._check_tenant(ctx, context)
        if not tenant.allowed:
            return tenant

        override = self._overrides.get(business_object)
        if override is None:
            return ALLOWED
        return override(ctx, action, context)

    def _check_tenant(self, ctx: SecurityContext, context: Mapping[str, Any]) -> PermissionResult:
        if ctx.scope is not Scope.SCHOOL:
            return ALLOWED
        for key in TENANT_KEYS:
            requested = context.get(key)
            if requested is not None and requested != ctx.tenant_id:
                return _deny("access is limited to your own establishment")
        return ALLOWED

    def _check_user_management(self, ctx: SecurityContext, action: Action, context: Mapping[str, Any]) -> PermissionResult:
        target = context.get("target_user_id")
        if target is None:
            return ALLOWED

        if action is Action.DELETE and target == ctx.user_id:
            return _deny("you cannot delete your own account")

        if ctx.scope is Scope.MINISTRY and action in (Action.WRITE, Action.DELETE):
            if target not in ctx.subordinate_ids and not self._has_global_user_management(ctx):
                return _deny("management is limited to your direct subordinates")

        return ALLOWED

    def _check_inspection(self, ctx: SecurityContext, action: Action, context: Mapping[str, Any]) -> PermissionResult:
        if ctx.scope is not Scope.MINISTRY:
            return _deny("inspections are reserved to ministry staff")
        if action is Action.APPROVE and ctx.user_type not in self._policy.roles.inspection_approvers:
            return _deny("only inspectors and senior staff can approve inspections")
        return ALLOWED

    def _has_global_user_management(self, ctx: SecurityContext) -> bool:
        return ctx.permission_for(self._policy.objects.global_user_management).read
