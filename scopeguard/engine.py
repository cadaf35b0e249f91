"""
Single entry point for application code.

``build_engine`` wires the rule store, cache, compiler and evaluators from
``Settings``; ``AuthorizationEngine`` exposes the operations callers use.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from sqlalchemy.orm import Session

from scopeguard.cache.context_cache import ContextCache
from scopeguard.cache.stores import CacheStore, InMemoryCacheStore, RedisCacheStore
from scopeguard.context import Action, SecurityContext
from scopeguard.db import session as db_session
from scopeguard.policy import SecurityPolicy, load_policy
from scopeguard.security.compiler import ContextCompiler
from scopeguard.security.filters import CompiledFilter, FilterCompiler
from scopeguard.security.hierarchy import HierarchyResolver
from scopeguard.security.permissions import PermissionCheck, PermissionEvaluator, PermissionResult
from scopeguard.security.service import SecurityContextService
from scopeguard.security.ui import ElementVisibility, UIElement, UIVisibilityEvaluator
from scopeguard.settings import Settings
from scopeguard.store.gateway import RuleStoreGateway
from scopeguard.store.sql_gateway import SqlRuleStoreGateway

logger = logging.getLogger(__name__)


class AuthorizationEngine:
    def __init__(
        self,
        contexts: SecurityContextService,
        hierarchy: HierarchyResolver,
        policy: SecurityPolicy,
    ) -> None:
        self.policy = policy
        self._contexts = contexts
        self._hierarchy = hierarchy
        self.permissions = PermissionEvaluator(contexts, policy)
        self.filters = FilterCompiler(contexts, policy)
        self.ui = UIVisibilityEvaluator(contexts, policy)

    # Security contexts

    def get_security_context(self, user_id: str) -> SecurityContext:
        return self._contexts.get(user_id)

    def invalidate_security_context(self, user_id: str) -> None:
        """Call after the write that changed the user's groups, rules or hierarchy has committed."""
        self._contexts.invalidate(user_id)

    def invalidate_all_security_contexts(self) -> int:
        return self._contexts.invalidate_all()

    # Permissions

    def check_permission(
        self,
        user_id: str,
        business_object: str,
        action: Action | str,
        context: Mapping[str, Any] | None = None,
    ) -> PermissionResult:
        return self.permissions.check(user_id, business_object, action, context)

    def check_permissions(self, user_id: str, checks: Iterable[PermissionCheck]) -> dict[str, PermissionResult]:
        return self.permissions.check_many(user_id, checks)

    def require_permission(
        self,
        user_id: str,
        business_object: str,
        action: Action | str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        self.permissions.require(user_id, business_object, action, context)

    # Row filters

    def compile_filter(self, user_id: str, business_object: str, operation: Action | str = Action.READ) -> CompiledFilter:
        return self.filters.compile(user_id, business_object, operation)

    # UI

    def evaluate_ui_element(
        self, user_id: str, element: str, context: Mapping[str, Any] | None = None
    ) -> ElementVisibility:
        return self.ui.evaluate(user_id, element, context)

    def evaluate_ui_elements(
        self, user_id: str, elements: Iterable[str], context: Mapping[str, Any] | None = None
    ) -> dict[str, ElementVisibility]:
        return self.ui.evaluate_many(user_id, elements, context)

    def generate_ui_config(
        self, user_id: str, page: str | None = None, context: Mapping[str, Any] | None = None
    ) -> dict[str, UIElement]:
        return self.ui.generate_config(user_id, page, context)

    # Hierarchy

    def validate_manager_assignment(self, user_id: str, candidate_manager_id: str) -> None:
        """Raise ``HierarchyValidationError`` if the assignment must be rejected."""
        self._hierarchy.validate_assignment(user_id, candidate_manager_id)


def build_cache_store(settings: Settings) -> CacheStore:
    if settings.cache_url:
        logger.info("Using Redis context cache")
        return RedisCacheStore.from_url(settings.cache_url, socket_timeout=settings.store_timeout_seconds)
    logger.info("Using in-process context cache")
    return InMemoryCacheStore()


def build_engine(
    settings: Settings,
    session_factory: Callable[[], Session] | None = None,
    cache_store: CacheStore | None = None,
    policy: SecurityPolicy | None = None,
    gateway: RuleStoreGateway | None = None,
) -> AuthorizationEngine:
    if gateway is None:
        gateway = SqlRuleStoreGateway(session_factory or db_session.get_session_factory())
    if policy is None:
        policy = load_policy(settings.resolved_policy_path())

    hierarchy = HierarchyResolver(gateway, max_depth=settings.max_hierarchy_depth)
    compiler = ContextCompiler(
        gateway,
        hierarchy,
        timeout_seconds=settings.store_timeout_seconds,
        max_workers=settings.fetch_workers,
    )
    cache = ContextCache(
        cache_store if cache_store is not None else build_cache_store(settings),
        ttl_seconds=settings.context_ttl_seconds,
        max_age_seconds=settings.context_max_age_seconds,
    )
    return AuthorizationEngine(SecurityContextService(compiler, cache), hierarchy, policy)
