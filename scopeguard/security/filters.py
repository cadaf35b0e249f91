"""
Row-level security: compile a user's visibility rules into a row predicate.

Each rule kind has its own compiler. A rule compiler returns ``None`` when the
rule does not apply to the caller; the remaining sub-predicates are OR-ed.
Failures never leak rows: any error compiles to ``FULL`` + match-nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from scopeguard.context import Action, RuleKind, Scope, SecurityContext, VisibilityRule
from scopeguard.errors import MalformedRuleError
from scopeguard.policy import SecurityPolicy
from scopeguard.security.predicates import (
    MATCH_ALL,
    MATCH_NONE,
    FieldEquals,
    MatchAll,
    MatchNone,
    Predicate,
    and_,
    evaluate,
    field_in,
    or_,
    predicate_from_dict,
    to_dict,
)
from scopeguard.security.service import SecurityContextService

logger = logging.getLogger(__name__)

FILTER_ERROR_MESSAGE = "Security filters could not be compiled"


class RestrictionLevel(str, Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


@dataclass(frozen=True)
class CompiledFilter:
    predicate: Predicate
    restriction_level: RestrictionLevel
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicate": to_dict(self.predicate),
            "restriction_level": self.restriction_level.value,
            "message": self.message,
        }


UNRESTRICTED = CompiledFilter(MATCH_ALL, RestrictionLevel.NONE)


def denied(message: str | None = None) -> CompiledFilter:
    return CompiledFilter(MATCH_NONE, RestrictionLevel.FULL, message)


# --- rule conditions -------------------------------------------------------------


class _Condition(BaseModel):
    model_config = ConfigDict(extra="ignore")


class HierarchyCondition(_Condition):
    field: str = "created_by_id"


class GeographyCondition(_Condition):
    restrict_by_structure: bool = False
    restrict_by_establishment: bool = False
    structure_field: str = "structure_id"
    establishment_field: str = "establishment_id"


class OwnershipCondition(_Condition):
    include_created: bool = False
    include_modified: bool = False
    include_assigned: bool = False
    created_field: str = "created_by_id"
    modified_field: str = "modified_by_id"
    assigned_field: str = "assigned_to_id"


class TenantCondition(_Condition):
    field: str = "establishment_id"
    allow_multiple_establishments: bool = False
    structure_field: str = "structure_id"


class CustomCondition(_Condition):
    restrict_by_structure: bool = False
    restrict_by_assignment: bool = False
    structure_field: str = "structure_id"
    inspector_field: str = "assigned_inspector_id"
    principal_inspector_field: str = "principal_inspector_id"
    allow_ministry_users: bool = False
    scope_field: str = "scope"
    establishment_field: str = "establishment_id"
    where: dict[str, Any] | None = None


def _parse(model: type[_Condition], rule: VisibilityRule) -> Any:
    try:
        return model.model_validate(dict(rule.condition))
    except ValidationError as exc:
        raise MalformedRuleError(f"invalid {rule.kind.value} condition: {exc.error_count()} error(s)") from exc


# --- per-kind compilers -----------------------------------------------------------

RuleCompiler = Callable[[VisibilityRule, SecurityContext, str, SecurityPolicy], "Predicate | None"]


def compile_hierarchy(rule: VisibilityRule, ctx: SecurityContext, business_object: str, policy: SecurityPolicy) -> Predicate | None:
    if ctx.hierarchy is None:
        return None
    cond = _parse(HierarchyCondition, rule)
    return field_in(cond.field, (ctx.user_id, *ctx.subordinate_ids))


def compile_geography(rule: VisibilityRule, ctx: SecurityContext, business_object: str, policy: SecurityPolicy) -> Predicate | None:
    cond = _parse(GeographyCondition, rule)
    if ctx.tenant_id is None:
        return None
    if ctx.scope is Scope.MINISTRY and cond.restrict_by_structure:
        return FieldEquals(cond.structure_field, ctx.tenant_id)
    if ctx.scope is Scope.SCHOOL and cond.restrict_by_establishment:
        return FieldEquals(cond.establishment_field, ctx.tenant_id)
    return None


def compile_ownership(rule: VisibilityRule, ctx: SecurityContext, business_object: str, policy: SecurityPolicy) -> Predicate | None:
    cond = _parse(OwnershipCondition, rule)
    fields = [
        name
        for enabled, name in (
            (cond.include_created, cond.created_field),
            (cond.include_modified, cond.modified_field),
            (cond.include_assigned, cond.assigned_field),
        )
        if enabled
    ]
    if not fields:
        return None
    return or_(*(FieldEquals(name, ctx.user_id) for name in fields))


def compile_tenant(rule: VisibilityRule, ctx: SecurityContext, business_object: str, policy: SecurityPolicy) -> Predicate | None:
    cond = _parse(TenantCondition, rule)
    if ctx.scope is Scope.SCHOOL:
        if ctx.tenant_id is None:
            return MATCH_NONE
        return FieldEquals(cond.field, ctx.tenant_id)

    if not cond.allow_multiple_establishments:
        return None

    if ctx.user_type in policy.roles.all_establishments:
        return MATCH_ALL
    if ctx.user_type in policy.roles.structure_establishments and ctx.tenant_id is not None:
        return FieldEquals(cond.structure_field, ctx.tenant_id)
    return MATCH_NONE


def _custom_establishment(cond: CustomCondition, ctx: SecurityContext, policy: SecurityPolicy) -> Predicate | None:
    parts: list[Predicate] = []
    if cond.restrict_by_structure and ctx.user_type in policy.roles.structure_establishments and ctx.tenant_id:
        parts.append(FieldEquals(cond.structure_field, ctx.tenant_id))
    if cond.restrict_by_assignment and ctx.user_type in policy.roles.inspectors:
        parts.append(FieldEquals(cond.inspector_field, ctx.user_id))
    return or_(*parts) if parts else None


def _custom_inspection(cond: CustomCondition, ctx: SecurityContext, policy: SecurityPolicy) -> Predicate | None:
    if ctx.scope is not Scope.MINISTRY:
        return MATCH_NONE
    return field_in(cond.principal_inspector_field, (ctx.user_id, *ctx.subordinate_ids))


def _custom_user_management(cond: CustomCondition, ctx: SecurityContext, policy: SecurityPolicy) -> Predicate | None:
    if ctx.scope is Scope.MINISTRY:
        return FieldEquals(cond.scope_field, Scope.MINISTRY.value) if cond.allow_ministry_users else None
    if ctx.tenant_id is None:
        return MATCH_NONE
    return FieldEquals(cond.establishment_field, ctx.tenant_id)


def compile_custom(rule: VisibilityRule, ctx: SecurityContext, business_object: str, policy: SecurityPolicy) -> Predicate | None:
    cond = _parse(CustomCondition, rule)
    objects = policy.objects
    handlers = {
        objects.establishment: _custom_establishment,
        objects.inspection: _custom_inspection,
        objects.user_management: _custom_user_management,
    }
    handler = handlers.get(business_object)
    if handler is not None:
        return handler(cond, ctx, policy)

    if cond.where is None:
        return None
    try:
        return predicate_from_dict(cond.where)
    except ValueError as exc:
        raise MalformedRuleError(f"invalid 'where' document on {business_object!r}: {exc}") from exc


RULE_COMPILERS: dict[RuleKind, RuleCompiler] = {
    RuleKind.HIERARCHY: compile_hierarchy,
    RuleKind.GEOGRAPHY: compile_geography,
    RuleKind.OWNERSHIP: compile_ownership,
    RuleKind.TENANT: compile_tenant,
    RuleKind.CUSTOM: compile_custom,
}

_unhandled = set(RuleKind) - set(RULE_COMPILERS)
if _unhandled:
    raise RuntimeError(f"No compiler registered for rule kinds: {sorted(k.value for k in _unhandled)}")


# --- compiler ---------------------------------------------------------------------


def _level_for(predicate: Predicate) -> RestrictionLevel:
    if isinstance(predicate, MatchAll):
        return RestrictionLevel.NONE
    if isinstance(predicate, MatchNone):
        return RestrictionLevel.FULL
    return RestrictionLevel.PARTIAL


def compile_rules(ctx: SecurityContext, business_object: str, policy: SecurityPolicy) -> CompiledFilter:
    """Compile an already-loaded context. Raises on malformed rules."""
    if policy.is_ministry_only(business_object) and ctx.scope is not Scope.MINISTRY:
        return denied("this object is reserved to ministry staff")

    rules = ctx.rules_for(business_object)
    if not rules:
        return UNRESTRICTED

    compiled: list[Predicate] = []
    for rule in rules:
        predicate = RULE_COMPILERS[rule.kind](rule, ctx, business_object, policy)
        if predicate is not None:
            compiled.append(predicate)

    if not compiled:
        return UNRESTRICTED

    combined = or_(*compiled)
    return CompiledFilter(combined, _level_for(combined))


def merge_with_caller_predicate(compiled: CompiledFilter | Predicate, caller: Predicate | None) -> Predicate:
    """AND the security predicate with the caller's own query predicate."""
    security = compiled.predicate if isinstance(compiled, CompiledFilter) else compiled
    if caller is None:
        return security
    return and_(security, caller)


class FilterCompiler:
    def __init__(self, contexts: SecurityContextService, policy: SecurityPolicy) -> None:
        self._contexts = contexts
        self._policy = policy

    def compile(self, user_id: str, business_object: str, operation: Action | str = Action.READ) -> CompiledFilter:
        try:
            ctx = self._contexts.get(user_id)
            result = compile_rules(ctx, business_object, self._policy)
        except Exception:
            logger.exception("Row filter compilation failed user=%s object=%s operation=%s", user_id, business_object, operation)
            return denied(FILTER_ERROR_MESSAGE)

        logger.debug(
            "Row filter user=%s object=%s operation=%s level=%s",
            user_id,
            business_object,
            getattr(operation, "value", operation),
            result.restriction_level.value,
        )
        return result

    def test_record(self, user_id: str, business_object: str, record: Mapping[str, Any]) -> bool:
        """Whether ``record`` would be visible to the user on a read."""
        compiled = self.compile(user_id, business_object, Action.READ)
        return evaluate(compiled.predicate, record)

    @staticmethod
    def evaluate(predicate: Predicate, record: Mapping[str, Any]) -> bool:
        return evaluate(predicate, record)
