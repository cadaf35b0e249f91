from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from functools import wraps
from typing import TypeVar

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scopeguard.context import PermissionMatrix, Scope
from scopeguard.errors import StoreUnavailable
from scopeguard.models.security import (
    BusinessObject,
    GroupMembership,
    GroupPermission,
    UIRuleRecord,
    UserAccount,
    VisibilityRuleRecord,
)
from scopeguard.store.gateway import PermissionGrant, SubordinateRow, UIRuleRow, UserIdentity, VisibilityRuleRow

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    # Stored datetimes are naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _store_read(fn: Callable[..., T]) -> Callable[..., T]:
    """Translate driver/ORM failures into ``StoreUnavailable``."""

    @wraps(fn)
    def wrapper(*args, **kwargs) -> T:
        try:
            return fn(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.warning("Rule store read failed op=%s error=%s", fn.__name__, type(exc).__name__)
            raise StoreUnavailable(f"rule store read failed: {fn.__name__}") from exc

    return wrapper


class SqlRuleStoreGateway:
    """
    ``RuleStoreGateway`` over the SQLAlchemy models in ``scopeguard.models.security``.

    Each read opens its own short-lived session from ``session_factory`` so the
    compiler can issue reads from worker threads.
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Callable[[], datetime] = _utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @_store_read
    def find_user_identity(self, user_id: str) -> UserIdentity | None:
        with self._session_factory() as db:
            user = db.get(UserAccount, user_id)
            if user is None:
                return None
            scope = Scope(user.scope)
            return UserIdentity(
                user_id=user.id,
                scope=scope,
                user_type=user.user_type,
                tenant_id=user.establishment_id if scope is Scope.SCHOOL else user.structure_id,
                active=user.is_active,
            )

    @_store_read
    def find_active_memberships(self, user_id: str) -> list[int]:
        now = self._clock()
        stmt = (
            select(GroupMembership.group_id)
            .where(
                GroupMembership.user_id == user_id,
                GroupMembership.is_active.is_(True),
                or_(GroupMembership.expires_at.is_(None), GroupMembership.expires_at >= now),
            )
            .order_by(GroupMembership.id)
        )
        with self._session_factory() as db:
            return list(db.scalars(stmt).all())

    @_store_read
    def find_permissions(self, group_ids: Sequence[int]) -> list[PermissionGrant]:
        if not group_ids:
            return []
        stmt = (
            select(GroupPermission, BusinessObject.name)
            .join(BusinessObject, GroupPermission.business_object_id == BusinessObject.id)
            .where(GroupPermission.group_id.in_(list(group_ids)))
            .order_by(GroupPermission.id)
        )
        with self._session_factory() as db:
            return [
                PermissionGrant(
                    group_id=perm.group_id,
                    business_object=name,
                    matrix=PermissionMatrix(
                        read=perm.can_read,
                        write=perm.can_write,
                        create=perm.can_create,
                        delete=perm.can_delete,
                        approve=perm.can_approve,
                    ),
                )
                for perm, name in db.execute(stmt).all()
            ]

    @_store_read
    def find_visibility_rules(self, group_ids: Sequence[int]) -> list[VisibilityRuleRow]:
        if not group_ids:
            return []
        stmt = (
            select(VisibilityRuleRecord, BusinessObject.name)
            .join(BusinessObject, VisibilityRuleRecord.business_object_id == BusinessObject.id)
            .where(VisibilityRuleRecord.group_id.in_(list(group_ids)), VisibilityRuleRecord.is_active.is_(True))
            .order_by(VisibilityRuleRecord.id)
        )
        with self._session_factory() as db:
            return [
                VisibilityRuleRow(
                    group_id=rule.group_id,
                    business_object=name,
                    kind=rule.rule_kind,
                    condition=dict(rule.condition or {}),
                    priority=rule.priority,
                )
                for rule, name in db.execute(stmt).all()
            ]

    @_store_read
    def find_ui_rules(self, group_ids: Sequence[int]) -> list[UIRuleRow]:
        if not group_ids:
            return []
        stmt = select(UIRuleRecord).where(UIRuleRecord.group_id.in_(list(group_ids))).order_by(UIRuleRecord.id)
        with self._session_factory() as db:
            return [
                UIRuleRow(
                    group_id=rule.group_id,
                    element_pattern=rule.element_pattern,
                    element_type=rule.element_type,
                    visible=rule.is_visible,
                    enabled=rule.is_enabled,
                    conditions=dict(rule.conditions) if rule.conditions is not None else None,
                )
                for rule in db.scalars(stmt).all()
            ]

    @_store_read
    def find_manager(self, user_id: str) -> str | None:
        with self._session_factory() as db:
            return db.scalar(select(UserAccount.manager_id).where(UserAccount.id == user_id))

    @_store_read
    def find_direct_subordinates(self, user_id: str) -> list[SubordinateRow]:
        stmt = (
            select(UserAccount)
            .where(UserAccount.manager_id == user_id, UserAccount.is_active.is_(True))
            .order_by(UserAccount.id)
        )
        with self._session_factory() as db:
            return [SubordinateRow(id=u.id, display_name=u.display_name) for u in db.scalars(stmt).all()]
