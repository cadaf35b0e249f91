"""Compiled, cacheable security snapshot of one user."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Scope(str, Enum):
    MINISTRY = "MINISTRY"
    SCHOOL = "SCHOOL"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    DELETE = "delete"
    APPROVE = "approve"


class RuleKind(str, Enum):
    """Closed set of row-visibility rule kinds."""

    HIERARCHY = "HIERARCHY"
    GEOGRAPHY = "GEOGRAPHY"
    OWNERSHIP = "OWNERSHIP"
    TENANT = "TENANT"
    CUSTOM = "CUSTOM"


class ElementType(str, Enum):
    FIELD = "FIELD"
    BUTTON = "BUTTON"
    MENU = "MENU"
    SECTION = "SECTION"
    PAGE = "PAGE"


@dataclass(frozen=True)
class PermissionMatrix:
    """Five independent grants on one business object."""

    read: bool = False
    write: bool = False
    create: bool = False
    delete: bool = False
    approve: bool = False

    def allows(self, action: Action) -> bool:
        return bool(getattr(self, Action(action).value))

    def merged(self, other: PermissionMatrix) -> PermissionMatrix:
        """OR per bit: a grant from any group can never be revoked by another."""
        return PermissionMatrix(
            read=self.read or other.read,
            write=self.write or other.write,
            create=self.create or other.create,
            delete=self.delete or other.delete,
            approve=self.approve or other.approve,
        )

    def any(self) -> bool:
        return self.read or self.write or self.create or self.delete or self.approve

    def to_dict(self) -> dict[str, bool]:
        return {a.value: self.allows(a) for a in Action}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PermissionMatrix:
        return cls(**{a.value: bool(raw.get(a.value, False)) for a in Action})


NO_PERMISSIONS = PermissionMatrix()


@dataclass(frozen=True)
class VisibilityRule:
    kind: RuleKind
    condition: Mapping[str, Any]
    priority: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "condition": dict(self.condition), "priority": self.priority}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> VisibilityRule:
        return cls(kind=RuleKind(raw["kind"]), condition=raw.get("condition") or {}, priority=int(raw.get("priority", 0)))


@dataclass(frozen=True)
class UIRule:
    element_pattern: str
    element_type: str
    visible: bool
    enabled: bool
    conditions: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "element_pattern": self.element_pattern,
            "element_type": self.element_type,
            "visible": self.visible,
            "enabled": self.enabled,
            "conditions": dict(self.conditions) if self.conditions is not None else None,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> UIRule:
        return cls(
            element_pattern=str(raw["element_pattern"]),
            element_type=str(raw["element_type"]),
            visible=bool(raw["visible"]),
            enabled=bool(raw["enabled"]),
            conditions=raw.get("conditions"),
        )


@dataclass(frozen=True)
class Subordinate:
    id: str
    display_name: str
    level: int = 1


@dataclass(frozen=True)
class Hierarchy:
    """Manager and direct reports of a ministry user."""

    manager_id: str | None
    subordinates: tuple[Subordinate, ...] = ()

    @property
    def subordinate_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.subordinates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "manager_id": self.manager_id,
            "subordinates": [
                {"id": s.id, "display_name": s.display_name, "level": s.level} for s in self.subordinates
            ],
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Hierarchy:
        return cls(
            manager_id=raw.get("manager_id"),
            subordinates=tuple(
                Subordinate(id=s["id"], display_name=s.get("display_name", ""), level=int(s.get("level", 1)))
                for s in raw.get("subordinates") or []
            ),
        )


@dataclass(frozen=True)
class SecurityContext:
    """
    One user's aggregated permissions, row filters, UI rules and hierarchy.

    Instances are never patched in place. Recompilation builds a new one and
    the cache replaces the old entry wholesale.
    """

    user_id: str
    scope: Scope
    user_type: str
    tenant_id: str | None
    permissions: Mapping[str, PermissionMatrix] = field(default_factory=dict)
    data_filters: Mapping[str, tuple[VisibilityRule, ...]] = field(default_factory=dict)
    ui_rules: tuple[UIRule, ...] = ()
    hierarchy: Hierarchy | None = None
    last_updated: float = 0.0

    def __post_init__(self) -> None:
        if self.scope is Scope.SCHOOL and self.hierarchy is not None:
            raise ValueError("SCHOOL security contexts cannot carry a hierarchy")

    def permission_for(self, business_object: str) -> PermissionMatrix:
        return self.permissions.get(business_object, NO_PERMISSIONS)

    def rules_for(self, business_object: str) -> tuple[VisibilityRule, ...]:
        return self.data_filters.get(business_object, ())

    @property
    def subordinate_ids(self) -> tuple[str, ...]:
        return self.hierarchy.subordinate_ids if self.hierarchy else ()

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable dict."""
        return {
            "user_id": self.user_id,
            "scope": self.scope.value,
            "user_type": self.user_type,
            "tenant_id": self.tenant_id,
            "permissions": {name: m.to_dict() for name, m in self.permissions.items()},
            "data_filters": {name: [r.to_dict() for r in rules] for name, rules in self.data_filters.items()},
            "ui_rules": [r.to_dict() for r in self.ui_rules],
            "hierarchy": self.hierarchy.to_dict() if self.hierarchy else None,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> SecurityContext:
        if not isinstance(raw, Mapping):
            raise TypeError("security context payload must be a mapping")
        permissions = raw.get("permissions", {})
        data_filters = raw.get("data_filters", {})
        ui_rules = raw.get("ui_rules", [])
        hierarchy = raw.get("hierarchy")
        if not isinstance(permissions, Mapping) or not isinstance(data_filters, Mapping):
            raise TypeError("permissions and data_filters must be mappings")
        if not isinstance(ui_rules, list) or not (hierarchy is None or isinstance(hierarchy, Mapping)):
            raise TypeError("ui_rules must be a list and hierarchy a mapping")
        return cls(
            user_id=str(raw["user_id"]),
            scope=Scope(raw["scope"]),
            user_type=str(raw["user_type"]),
            tenant_id=raw.get("tenant_id"),
            permissions={name: PermissionMatrix.from_dict(m) for name, m in permissions.items()},
            data_filters={
                name: tuple(VisibilityRule.from_dict(r) for r in rules) for name, rules in data_filters.items()
            },
            ui_rules=tuple(UIRule.from_dict(r) for r in ui_rules),
            hierarchy=Hierarchy.from_dict(hierarchy) if hierarchy is not None else None,
            last_updated=float(raw.get("last_updated", 0.0)),
        )
