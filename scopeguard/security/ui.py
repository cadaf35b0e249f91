"""
UI element visibility.

Rules are matched by exact name or ``*`` wildcard. Each matching rule yields
``static flags AND conditions AND type defaults``; matching rules are then
OR-combined. Evaluation errors hide the element.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict

from scopeguard.context import Action, ElementType, Scope, SecurityContext, UIRule
from scopeguard.policy import SecurityPolicy
from scopeguard.security.service import SecurityContextService

logger = logging.getLogger(__name__)

UI_ERROR_REASON = "UI rules could not be evaluated"


@dataclass(frozen=True)
class ElementVisibility:
    element: str
    visible: bool
    enabled: bool
    readonly: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "element": self.element,
            "visible": self.visible,
            "enabled": self.enabled,
            "readonly": self.readonly,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class UIElement:
    name: str
    type: str
    visible: bool
    enabled: bool
    readonly: bool
    conditions: Mapping[str, Any] | None = field(default=None)


def _hidden(element: str, reason: str) -> ElementVisibility:
    return ElementVisibility(element=element, visible=False, enabled=False, readonly=True, reason=reason)


@dataclass(frozen=True)
class _Flags:
    visible: bool = True
    enabled: bool = True
    readonly: bool = False

    def both(self, other: _Flags) -> _Flags:
        return _Flags(self.visible and other.visible, self.enabled and other.enabled, self.readonly or other.readonly)

    def either(self, other: _Flags) -> _Flags:
        return _Flags(self.visible or other.visible, self.enabled or other.enabled, self.readonly or other.readonly)


OPEN = _Flags()
NOTHING = _Flags(visible=False, enabled=False, readonly=False)


# --- conditions -------------------------------------------------------------------


class RecordStatusCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    allowed: list[str] = []
    forbidden: list[str] = []
    read_only_when: list[str] = []


class ContextualCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    own_record_only: bool = False
    same_establishment_only: bool = False
    record_status: RecordStatusCondition | None = None


class HierarchyLevelCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    requires_subordinates: bool = False


class UIConditions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_types: list[str] | None = None
    user_scopes: list[Scope] | None = None
    required_permissions: dict[str, dict[Action, bool]] | None = None
    hierarchy_level: HierarchyLevelCondition | None = None
    contextual: ContextualCondition | None = None
    pages: list[str] | None = None


class ConditionKind(str, Enum):
    """Closed set of UI rule conditions (``pages`` only scopes ``generate_config``)."""

    USER_TYPES = "user_types"
    USER_SCOPES = "user_scopes"
    REQUIRED_PERMISSIONS = "required_permissions"
    HIERARCHY_LEVEL = "hierarchy_level"
    CONTEXTUAL = "contextual"


ConditionCheck = Callable[[Any, SecurityContext, Mapping[str, Any] | None], _Flags]


def _check_user_types(value: list[str], ctx: SecurityContext, record: Mapping[str, Any] | None) -> _Flags:
    return OPEN if ctx.user_type in value else _Flags(visible=False)


def _check_user_scopes(value: list[Scope], ctx: SecurityContext, record: Mapping[str, Any] | None) -> _Flags:
    return OPEN if ctx.scope in value else _Flags(visible=False)


def _check_required_permissions(
    value: dict[str, dict[Action, bool]], ctx: SecurityContext, record: Mapping[str, Any] | None
) -> _Flags:
    for business_object, required in value.items():
        matrix = ctx.permissions.get(business_object)
        if matrix is None:
            return _Flags(visible=False)
        if any(needed and not matrix.allows(action) for action, needed in required.items()):
            return _Flags(visible=False)
    return OPEN


def _check_hierarchy_level(
    value: HierarchyLevelCondition, ctx: SecurityContext, record: Mapping[str, Any] | None
) -> _Flags:
    if value.requires_subordinates and not ctx.subordinate_ids:
        return _Flags(visible=False)
    return OPEN


def _check_contextual(value: ContextualCondition, ctx: SecurityContext, record: Mapping[str, Any] | None) -> _Flags:
    if not record:
        return OPEN

    visible = True
    readonly = False

    owner = record.get("record_owner_id")
    if value.own_record_only and owner is not None:
        visible = visible and owner == ctx.user_id

    establishment = record.get("record_establishment_id")
    if value.same_establishment_only and establishment is not None and ctx.scope is Scope.SCHOOL:
        visible = visible and establishment == ctx.tenant_id

    status = record.get("record_status")
    if value.record_status is not None and status is not None:
        rs = value.record_status
        if rs.allowed:
            visible = visible and status in rs.allowed
        if rs.forbidden:
            visible = visible and status not in rs.forbidden
        readonly = status in rs.read_only_when

    return _Flags(visible=visible, enabled=True, readonly=readonly)


CONDITION_CHECKS: dict[ConditionKind, ConditionCheck] = {
    ConditionKind.USER_TYPES: _check_user_types,
    ConditionKind.USER_SCOPES: _check_user_scopes,
    ConditionKind.REQUIRED_PERMISSIONS: _check_required_permissions,
    ConditionKind.HIERARCHY_LEVEL: _check_hierarchy_level,
    ConditionKind.CONTEXTUAL: _check_contextual,
}

_unhandled = set(ConditionKind) - set(CONDITION_CHECKS)
if _unhandled:
    raise RuntimeError(f"No check registered for UI conditions: {sorted(k.value for k in _unhandled)}")


def evaluate_conditions(conditions: UIConditions, ctx: SecurityContext, record: Mapping[str, Any] | None) -> _Flags:
    result = OPEN
    for kind, check in CONDITION_CHECKS.items():
        value = getattr(conditions, kind.value)
        if value is not None:
            result = result.both(check(value, ctx, record))
    return result


# --- element type defaults --------------------------------------------------------


def _any_grant(ctx: SecurityContext, *actions: Action) -> bool:
    return any(matrix.allows(a) for matrix in ctx.permissions.values() for a in actions)


def _button_defaults(name: str, ctx: SecurityContext, policy: SecurityPolicy) -> _Flags:
    visible = True
    if "save" in name or "create" in name:
        visible = visible and _any_grant(ctx, Action.CREATE, Action.WRITE)
    if "delete" in name:
        visible = visible and _any_grant(ctx, Action.DELETE)
    if "approve" in name:
        visible = visible and _any_grant(ctx, Action.APPROVE)
    return _Flags(visible=visible)


def _field_defaults(name: str, ctx: SecurityContext, policy: SecurityPolicy) -> _Flags:
    visible = True
    if "password" in name or "secret" in name:
        visible = False
    if "salary" in name or "budget" in name:
        visible = visible and ctx.user_type in policy.roles.financial_viewers
    return _Flags(visible=visible)


def _menu_defaults(name: str, ctx: SecurityContext, policy: SecurityPolicy) -> _Flags:
    visible = True
    if "admin" in name or "settings" in name:
        visible = visible and ctx.user_type in policy.roles.administrators
    if "ministry" in name:
        visible = visible and ctx.scope is Scope.MINISTRY
    if "school" in name:
        visible = visible and ctx.scope is Scope.SCHOOL
    return _Flags(visible=visible)


def _page_defaults(name: str, ctx: SecurityContext, policy: SecurityPolicy) -> _Flags:
    visible = True
    if "user-management" in name or "system-config" in name:
        visible = visible and ctx.permission_for(policy.objects.user_management).read
    if "inspection" in name:
        visible = visible and ctx.scope is Scope.MINISTRY
    return _Flags(visible=visible)


TYPE_DEFAULTS: dict[ElementType, Callable[[str, SecurityContext, SecurityPolicy], _Flags]] = {
    ElementType.BUTTON: _button_defaults,
    ElementType.FIELD: _field_defaults,
    ElementType.MENU: _menu_defaults,
    ElementType.SECTION: _menu_defaults,
    ElementType.PAGE: _page_defaults,
}


# --- matching ---------------------------------------------------------------------


@lru_cache(maxsize=512)
def _pattern_regex(pattern: str) -> re.Pattern[str]:
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def matches(pattern: str, element: str) -> bool:
    if "*" not in pattern:
        return pattern == element
    return _pattern_regex(pattern).fullmatch(element) is not None


def _parse_conditions(rule: UIRule) -> UIConditions | None:
    if rule.conditions is None:
        return None
    return UIConditions.model_validate(dict(rule.conditions))


def evaluate_rule(
    rule: UIRule,
    ctx: SecurityContext,
    policy: SecurityPolicy,
    record: Mapping[str, Any] | None = None,
) -> _Flags:
    result = _Flags(visible=rule.visible, enabled=rule.enabled, readonly=False)

    conditions = _parse_conditions(rule)
    if conditions is not None:
        result = result.both(evaluate_conditions(conditions, ctx, record))

    try:
        element_type = ElementType(rule.element_type)
    except ValueError:
        return result
    return result.both(TYPE_DEFAULTS[element_type](rule.element_pattern, ctx, policy))


def evaluate_element(
    element: str,
    ctx: SecurityContext,
    policy: SecurityPolicy,
    record: Mapping[str, Any] | None = None,
) -> ElementVisibility:
    applicable = [r for r in ctx.ui_rules if matches(r.element_pattern, element)]
    if not applicable:
        return ElementVisibility(element=element, visible=True, enabled=True, readonly=False)

    combined = NOTHING
    for rule in applicable:
        combined = combined.either(evaluate_rule(rule, ctx, policy, record))
    return ElementVisibility(element=element, visible=combined.visible, enabled=combined.enabled, readonly=combined.readonly)


class UIVisibilityEvaluator:
    def __init__(self, contexts: SecurityContextService, policy: SecurityPolicy) -> None:
        self._contexts = contexts
        self._policy = policy

    def evaluate(self, user_id: str, element: str, context: Mapping[str, Any] | None = None) -> ElementVisibility:
        try:
            ctx = self._contexts.get(user_id)
            return evaluate_element(element, ctx, self._policy, context)
        except Exception:
            logger.exception("UI evaluation failed user=%s element=%s", user_id, element)
            return _hidden(element, UI_ERROR_REASON)

    def evaluate_many(
        self,
        user_id: str,
        elements: Iterable[str],
        context: Mapping[str, Any] | None = None,
    ) -> dict[str, ElementVisibility]:
        elements = list(elements)
        try:
            ctx = self._contexts.get(user_id)
        except Exception:
            logger.exception("UI evaluation failed user=%s", user_id)
            return {e: _hidden(e, UI_ERROR_REASON) for e in elements}

        results: dict[str, ElementVisibility] = {}
        for element in elements:
            try:
                results[element] = evaluate_element(element, ctx, self._policy, context)
            except Exception:
                logger.exception("UI evaluation failed user=%s element=%s", user_id, element)
                results[element] = _hidden(element, UI_ERROR_REASON)
        return results

    def is_visible(self, user_id: str, element: str, context: Mapping[str, Any] | None = None) -> bool:
        return self.evaluate(user_id, element, context).visible

    def generate_config(
        self,
        user_id: str,
        page: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> dict[str, UIElement]:
        """
        Per-pattern UI configuration for a page.

        Rules whose ``pages`` condition excludes ``page`` are skipped. Rules
        sharing a pattern are OR-combined like in ``evaluate``.
        """
        try:
            ctx = self._contexts.get(user_id)
        except Exception:
            logger.exception("UI config generation failed user=%s page=%s", user_id, page)
            return {}

        config: dict[str, UIElement] = {}
        for rule in ctx.ui_rules:
            try:
                conditions = _parse_conditions(rule)
                if page and conditions is not None and conditions.pages is not None and page not in conditions.pages:
                    continue
                flags = evaluate_rule(rule, ctx, self._policy, context)
            except Exception:
                logger.exception("UI rule evaluation failed user=%s pattern=%s", user_id, rule.element_pattern)
                flags = _Flags(visible=False, enabled=False, readonly=True)

            existing = config.get(rule.element_pattern)
            if existing is not None:
                flags = flags.either(_Flags(existing.visible, existing.enabled, existing.readonly))
            config[rule.element_pattern] = UIElement(
                name=rule.element_pattern,
                type=rule.element_type,
                visible=flags.visible,
                enabled=flags.enabled,
                readonly=flags.readonly,
                conditions=rule.conditions,
            )
        return config

    def element_rules(self, user_id: str, page: str, context: Mapping[str, Any] | None = None) -> dict[str, dict[str, bool]]:
        """``generate_config`` reduced to visible/enabled flags."""
        return {
            name: {"visible": element.visible, "enabled": element.enabled}
            for name, element in self.generate_config(user_id, page, context).items()
        }
