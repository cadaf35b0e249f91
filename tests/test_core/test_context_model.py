"""Tests for the SecurityContext data model."""

import pytest

from scopeguard.context import (
    NO_PERMISSIONS,
    Action,
    Hierarchy,
    PermissionMatrix,
    RuleKind,
    Scope,
    SecurityContext,
    Subordinate,
    UIRule,
    VisibilityRule,
)


def test_matrix_merge_is_or_per_bit():
    a = PermissionMatrix(read=True)
    b = PermissionMatrix(write=True, approve=True)
    merged = a.merged(b)
    assert merged == PermissionMatrix(read=True, write=True, approve=True)
    assert merged.allows(Action.WRITE)
    assert merged.allows("approve")
    assert not merged.allows(Action.DELETE)


def test_missing_permission_is_all_false():
    ctx = SecurityContext(user_id="u1", scope=Scope.SCHOOL, user_type="TEACHER", tenant_id="school-1")
    assert ctx.permission_for("anything") is NO_PERMISSIONS
    assert not NO_PERMISSIONS.any()


def test_school_context_rejects_hierarchy():
    with pytest.raises(ValueError, match="SCHOOL"):
        SecurityContext(
            user_id="u1",
            scope=Scope.SCHOOL,
            user_type="TEACHER",
            tenant_id="school-1",
            hierarchy=Hierarchy(manager_id=None),
        )


def test_context_dict_form_survives_json_types():
    ctx = SecurityContext(
        user_id="u1",
        scope=Scope.MINISTRY,
        user_type="DIRECTOR",
        tenant_id="struct-1",
        permissions={"doc": PermissionMatrix(read=True, delete=True)},
        data_filters={
            "doc": (
                VisibilityRule(RuleKind.OWNERSHIP, {"include_created": True}, priority=5),
                VisibilityRule(RuleKind.TENANT, {}, priority=1),
            )
        },
        ui_rules=(UIRule("btn-*", "BUTTON", True, False, {"user_types": ["DIRECTOR"]}),),
        hierarchy=Hierarchy(manager_id="boss", subordinates=(Subordinate("u2", "U2"),)),
        last_updated=1700000000.5,
    )

    restored = SecurityContext.from_dict(ctx.to_dict())

    assert restored.permissions["doc"] == PermissionMatrix(read=True, delete=True)
    assert [r.kind for r in restored.rules_for("doc")] == [RuleKind.OWNERSHIP, RuleKind.TENANT]
    assert restored.ui_rules[0].conditions == {"user_types": ["DIRECTOR"]}
    assert restored.subordinate_ids == ("u2",)
    assert restored.hierarchy.manager_id == "boss"
    assert restored.last_updated == 1700000000.5


def test_subordinate_ids_empty_without_hierarchy():
    ctx = SecurityContext(user_id="u1", scope=Scope.MINISTRY, user_type="AGENT", tenant_id=None)
    assert ctx.subordinate_ids == ()
