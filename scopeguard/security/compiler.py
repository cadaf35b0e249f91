"""
Security context compilation.

Turns the raw rows behind a user (identity, memberships, grants, visibility
rules, UI rules, hierarchy) into one immutable ``SecurityContext``. Any
failure aborts the whole compilation; a partial context is never returned.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Any

from scopeguard.context import (
    Hierarchy,
    PermissionMatrix,
    RuleKind,
    Scope,
    SecurityContext,
    UIRule,
    VisibilityRule,
)
from scopeguard.errors import IdentityNotFound, MalformedRuleError, StoreUnavailable
from scopeguard.security.hierarchy import HierarchyResolver
from scopeguard.store.gateway import PermissionGrant, RuleStoreGateway, UIRuleRow, VisibilityRuleRow

logger = logging.getLogger(__name__)


def aggregate_permissions(grants: Sequence[PermissionGrant]) -> dict[str, PermissionMatrix]:
    """OR every grant into one matrix per business object."""
    merged: dict[str, PermissionMatrix] = {}
    for grant in grants:
        current = merged.get(grant.business_object)
        merged[grant.business_object] = grant.matrix if current is None else current.merged(grant.matrix)
    return merged


def group_visibility_rules(rows: Sequence[VisibilityRuleRow]) -> dict[str, tuple[VisibilityRule, ...]]:
    grouped: dict[str, list[VisibilityRule]] = {}
    for row in rows:
        try:
            kind = RuleKind(row.kind)
        except ValueError as exc:
            raise MalformedRuleError(f"unknown rule kind {row.kind!r} on {row.business_object!r}") from exc
        if not isinstance(row.condition, Mapping):
            raise MalformedRuleError(f"rule condition on {row.business_object!r} is not a mapping")
        grouped.setdefault(row.business_object, []).append(
            VisibilityRule(kind=kind, condition=dict(row.condition), priority=row.priority)
        )

    # sorted() is stable: equal priorities keep discovery order.
    return {name: tuple(sorted(rules, key=lambda r: -r.priority)) for name, rules in grouped.items()}


def flatten_ui_rules(rows: Sequence[UIRuleRow]) -> tuple[UIRule, ...]:
    return tuple(
        UIRule(
            element_pattern=row.element_pattern,
            element_type=row.element_type,
            visible=row.visible,
            enabled=row.enabled,
            conditions=dict(row.conditions) if row.conditions is not None else None,
        )
        for row in rows
    )


class ContextCompiler:
    def __init__(
        self,
        gateway: RuleStoreGateway,
        hierarchy_resolver: HierarchyResolver,
        timeout_seconds: float = 5.0,
        max_workers: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._hierarchy = hierarchy_resolver
        self._timeout = timeout_seconds
        self._max_workers = max(1, max_workers)
        self._clock = clock

    def compile(self, user_id: str) -> SecurityContext:
        started = time.monotonic()

        identity = self._call(self._gateway.find_user_identity, user_id)
        if identity is None or not identity.active:
            raise IdentityNotFound(user_id)

        group_ids = list(self._call(self._gateway.find_active_memberships, user_id))

        jobs: dict[str, tuple[Callable[..., Any], tuple[Any, ...]]] = {
            "permissions": (self._gateway.find_permissions, (group_ids,)),
            "visibility_rules": (self._gateway.find_visibility_rules, (group_ids,)),
            "ui_rules": (self._gateway.find_ui_rules, (group_ids,)),
        }
        if identity.scope is Scope.MINISTRY:
            jobs["hierarchy"] = (self._hierarchy.resolve, (user_id,))

        results = self._gather(jobs)

        hierarchy: Hierarchy | None = results.get("hierarchy")
        context = SecurityContext(
            user_id=identity.user_id,
            scope=identity.scope,
            user_type=identity.user_type,
            tenant_id=identity.tenant_id,
            permissions=aggregate_permissions(results["permissions"]),
            data_filters=group_visibility_rules(results["visibility_rules"]),
            ui_rules=flatten_ui_rules(results["ui_rules"]),
            hierarchy=hierarchy if identity.scope is Scope.MINISTRY else None,
            last_updated=self._clock(),
        )

        logger.debug(
            "Compiled security context user=%s scope=%s groups=%d objects=%d elapsed=%.3fs",
            user_id,
            identity.scope.value,
            len(group_ids),
            len(context.permissions),
            time.monotonic() - started,
        )
        return context

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return self._gather({"result": (fn, args)})["result"]

    def _gather(self, jobs: dict[str, tuple[Callable[..., Any], tuple[Any, ...]]]) -> dict[str, Any]:
        """Run independent reads concurrently; every one must finish within the timeout."""
        executor = ThreadPoolExecutor(max_workers=min(self._max_workers, len(jobs)), thread_name_prefix="scopeguard")
        try:
            futures: dict[str, Future] = {name: executor.submit(fn, *args) for name, (fn, args) in jobs.items()}
            done, pending = wait(futures.values(), timeout=self._timeout, return_when=FIRST_EXCEPTION)

            for future in done:
                exc = future.exception()
                if exc is not None:
                    raise exc

            if pending:
                names = sorted(name for name, f in futures.items() if f in pending)
                logger.warning("Rule store read timed out after %.1fs reads=%s", self._timeout, names)
                raise StoreUnavailable(f"rule store read timed out: {', '.join(names)}")

            return {name: f.result() for name, f in futures.items()}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
