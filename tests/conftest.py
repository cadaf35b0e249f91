"""
Pytest fixtures for the test suite.

Store-backed tests use an in-memory SQLite engine and one connection whose
outer transaction is rolled back after each test, so tests do not affect each
other. Every session the engine opens (the rule store reads one per call) is
bound to that same connection.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import String, create_engine
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from scopeguard.cache.stores import InMemoryCacheStore
from scopeguard.context import PermissionMatrix, Scope, SecurityContext
from scopeguard.db.base import Base
from scopeguard.engine import build_engine
from scopeguard.errors import IdentityNotFound
from scopeguard.models.security import (
    BusinessObject,
    GroupMembership,
    GroupPermission,
    SecurityGroup,
    UIRuleRecord,
    UserAccount,
    VisibilityRuleRecord,
)
from scopeguard.policy import SecurityPolicy
from scopeguard.settings import Settings
from scopeguard.store.gateway import SubordinateRow, UserIdentity

TEST_DB_URL = "sqlite:///:memory:"


class Document(Base):
    """Business table used to exercise the row filter hook."""

    __tablename__ = "documents"
    __business_object__ = "doc"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(100))
    created_by_id: Mapped[str] = mapped_column(String(36))
    establishment_id: Mapped[str | None] = mapped_column(String(36), nullable=True)


@pytest.fixture
def sql_engine():
    """Create a fresh in-memory SQLite engine for each test."""
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )


@pytest.fixture
def tables(sql_engine):
    """Create all ORM tables on the test engine."""
    Base.metadata.create_all(bind=sql_engine)
    return sql_engine


@pytest.fixture
def connection(tables):
    connection = tables.connect()
    transaction = connection.begin()
    yield connection
    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(connection):
    return sessionmaker(bind=connection, autocommit=False, autoflush=False, class_=Session)


@pytest.fixture
def db_session(session_factory):
    """Session bound to the test connection; its writes vanish with the rollback."""
    session = session_factory()
    yield session
    session.close()


class Seeder:
    """Small builder for rule-store rows. Every helper flushes."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self._objects: dict[str, BusinessObject] = {}

    def _add(self, row):
        self.db.add(row)
        self.db.flush()
        return row

    def user(
        self,
        user_id: str,
        scope: Scope | str = Scope.MINISTRY,
        user_type: str = "AGENT",
        *,
        structure_id: str | None = None,
        establishment_id: str | None = None,
        manager_id: str | None = None,
        is_active: bool = True,
    ) -> UserAccount:
        return self._add(
            UserAccount(
                id=user_id,
                email=f"{user_id}@example.org",
                first_name=user_id.upper(),
                last_name="Test",
                scope=Scope(scope).value,
                user_type=user_type,
                structure_id=structure_id,
                establishment_id=establishment_id,
                manager_id=manager_id,
                is_active=is_active,
            )
        )

    def group(self, name: str, scope: Scope | str = Scope.MINISTRY) -> SecurityGroup:
        return self._add(SecurityGroup(name=name, scope=Scope(scope).value))

    def member(
        self, user_id: str, group: SecurityGroup, *, is_active: bool = True, expires_at: datetime | None = None
    ) -> GroupMembership:
        return self._add(GroupMembership(user_id=user_id, group_id=group.id, is_active=is_active, expires_at=expires_at))

    def business_object(self, name: str) -> BusinessObject:
        if name not in self._objects:
            self._objects[name] = self._add(BusinessObject(name=name))
        return self._objects[name]

    def grant(self, group: SecurityGroup, business_object: str, **bits: bool) -> GroupPermission:
        return self._add(
            GroupPermission(
                group_id=group.id,
                business_object_id=self.business_object(business_object).id,
                **{f"can_{name}": value for name, value in bits.items()},
            )
        )

    def rule(
        self,
        group: SecurityGroup,
        business_object: str,
        kind: str,
        condition: Mapping[str, Any] | None = None,
        *,
        priority: int = 0,
        is_active: bool = True,
    ) -> VisibilityRuleRecord:
        return self._add(
            VisibilityRuleRecord(
                group_id=group.id,
                business_object_id=self.business_object(business_object).id,
                rule_kind=kind,
                condition=dict(condition or {}),
                priority=priority,
                is_active=is_active,
            )
        )

    def ui_rule(
        self,
        group: SecurityGroup,
        pattern: str,
        element_type: str,
        *,
        visible: bool = True,
        enabled: bool = True,
        conditions: Mapping[str, Any] | None = None,
    ) -> UIRuleRecord:
        return self._add(
            UIRuleRecord(
                group_id=group.id,
                element_pattern=pattern,
                element_type=element_type,
                is_visible=visible,
                is_enabled=enabled,
                conditions=dict(conditions) if conditions is not None else None,
            )
        )


@pytest.fixture
def seed(db_session) -> Seeder:
    return Seeder(db_session)


@pytest.fixture
def settings() -> Settings:
    # One fetch worker: every test session shares a single SQLite connection.
    return Settings(fetch_workers=1, store_timeout_seconds=5.0, cache_url=None, policy_path=None)


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def authz(settings, session_factory, cache_store):
    """AuthorizationEngine over the seeded test database."""
    return build_engine(settings, session_factory=session_factory, cache_store=cache_store, policy=SecurityPolicy())


class FakeGateway:
    """In-memory ``RuleStoreGateway`` for tests that do not need SQL."""

    def __init__(self) -> None:
        self.identities: dict[str, UserIdentity] = {}
        self.memberships: dict[str, list[int]] = {}
        self.permissions: list = []
        self.visibility_rules: list = []
        self.ui_rules: list = []
        self.managers: dict[str, str | None] = {}
        self.names: dict[str, str] = {}

    def add_user(
        self,
        user_id: str,
        scope: Scope = Scope.MINISTRY,
        user_type: str = "AGENT",
        tenant_id: str | None = None,
        manager_id: str | None = None,
        active: bool = True,
    ) -> None:
        self.identities[user_id] = UserIdentity(user_id, scope, user_type, tenant_id, active)
        self.managers[user_id] = manager_id
        self.names[user_id] = user_id.upper()

    def find_user_identity(self, user_id):
        return self.identities.get(user_id)

    def find_active_memberships(self, user_id):
        return list(self.memberships.get(user_id, []))

    def find_permissions(self, group_ids):
        return [p for p in self.permissions if p.group_id in group_ids]

    def find_visibility_rules(self, group_ids):
        return [r for r in self.visibility_rules if r.group_id in group_ids]

    def find_ui_rules(self, group_ids):
        return [r for r in self.ui_rules if r.group_id in group_ids]

    def find_manager(self, user_id):
        return self.managers.get(user_id)

    def find_direct_subordinates(self, user_id):
        return [SubordinateRow(uid, self.names[uid]) for uid, mgr in self.managers.items() if mgr == user_id]


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


class StaticContexts:
    """Stands in for ``SecurityContextService`` with pre-built contexts."""

    def __init__(self, *contexts: SecurityContext) -> None:
        self.contexts = {c.user_id: c for c in contexts}
        self.calls = 0

    def get(self, user_id: str) -> SecurityContext:
        self.calls += 1
        if user_id not in self.contexts:
            raise IdentityNotFound(user_id)
        return self.contexts[user_id]


@pytest.fixture
def static_contexts():
    return StaticContexts


def make_context(
    user_id: str = "u1",
    scope: Scope = Scope.MINISTRY,
    user_type: str = "AGENT",
    tenant_id: str | None = None,
    permissions: Mapping[str, Mapping[str, bool]] | None = None,
    **kwargs: Any,
) -> SecurityContext:
    return SecurityContext(
        user_id=user_id,
        scope=scope,
        user_type=user_type,
        tenant_id=tenant_id,
        permissions={name: PermissionMatrix(**bits) for name, bits in (permissions or {}).items()},
        **kwargs,
    )


@pytest.fixture
def context_factory():
    return make_context


@pytest.fixture
def document_model():
    return Document
