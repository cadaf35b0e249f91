"""
Read-only contract against the external rule store.

Implementations raise ``StoreUnavailable`` for I/O failures. They never
filter by business logic beyond what each method documents.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from scopeguard.context import PermissionMatrix, Scope


@dataclass(frozen=True)
class UserIdentity:
    user_id: str
    scope: Scope
    user_type: str
    tenant_id: str | None
    active: bool


@dataclass(frozen=True)
class PermissionGrant:
    group_id: int
    business_object: str
    matrix: PermissionMatrix


@dataclass(frozen=True)
class VisibilityRuleRow:
    group_id: int
    business_object: str
    kind: str
    condition: Mapping[str, Any]
    priority: int


@dataclass(frozen=True)
class UIRuleRow:
    group_id: int
    element_pattern: str
    element_type: str
    visible: bool
    enabled: bool
    conditions: Mapping[str, Any] | None


@dataclass(frozen=True)
class SubordinateRow:
    id: str
    display_name: str


class RuleStoreGateway(Protocol):
    def find_user_identity(self, user_id: str) -> UserIdentity | None:
        """Identity record, or None when the user does not exist."""

    def find_active_memberships(self, user_id: str) -> Sequence[int]:
        """Group ids of active, non-expired memberships."""

    def find_permissions(self, group_ids: Sequence[int]) -> Sequence[PermissionGrant]: ...

    def find_visibility_rules(self, group_ids: Sequence[int]) -> Sequence[VisibilityRuleRow]:
        """Active rules in discovery (insertion) order."""

    def find_ui_rules(self, group_ids: Sequence[int]) -> Sequence[UIRuleRow]: ...

    def find_manager(self, user_id: str) -> str | None: ...

    def find_direct_subordinates(self, user_id: str) -> Sequence[SubordinateRow]:
        """Active users whose manager is ``user_id``."""
