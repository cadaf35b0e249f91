"""
End-to-end tests of the AuthorizationEngine over the SQLite rule store.

Uses the seed fixture: in-memory SQLite, rolled back after each test.
"""
from __future__ import annotations

import pytest

from scopeguard.context import Action, Scope
from scopeguard.errors import HierarchyValidationError, IdentityNotFound
from scopeguard.security.filters import RestrictionLevel
from scopeguard.security.permissions import PermissionCheck


def test_grants_from_two_groups_are_merged(seed, authz):
    seed.user("u1", Scope.MINISTRY, "AGENT", structure_id="struct-1")
    readers = seed.group("readers")
    writers = seed.group("writers")
    seed.member("u1", readers)
    seed.member("u1", writers)
    seed.grant(readers, "X", read=True)
    seed.grant(writers, "X", write=True)

    results = authz.check_permissions("u1", [PermissionCheck("X", Action.READ), PermissionCheck("X", Action.WRITE)])

    assert results["X.read"].allowed
    assert results["X.write"].allowed
    assert not authz.check_permission("u1", "X", Action.DELETE).allowed


def test_user_without_groups_is_denied_everything(seed, authz):
    seed.user("u1", Scope.SCHOOL, "TEACHER", establishment_id="school-1")
    for action in Action:
        assert not authz.check_permission("u1", "X", action).allowed


def test_object_without_rules_is_unrestricted(seed, authz):
    seed.user("u1", Scope.SCHOOL, "TEACHER", establishment_id="school-1")
    group = seed.group("teachers", Scope.SCHOOL)
    seed.member("u1", group)
    seed.grant(group, "doc", read=True)

    result = authz.compile_filter("u1", "doc", Action.READ)

    assert result.restriction_level is RestrictionLevel.NONE


def test_unknown_user_fails_closed(authz, tables):
    result = authz.compile_filter("nonexistent", "doc", "read")
    assert result.restriction_level is RestrictionLevel.FULL
    with pytest.raises(IdentityNotFound):
        authz.get_security_context("nonexistent")


def test_school_user_cannot_see_inspections_whatever_the_rules(seed, authz):
    seed.user("s1", Scope.SCHOOL, "DIRECTOR", establishment_id="school-1")
    group = seed.group("school-directors", Scope.SCHOOL)
    seed.member("s1", group)
    seed.grant(group, "inspection.management", read=True)
    seed.rule(group, "inspection.management", "OWNERSHIP", {"include_created": True})

    result = authz.compile_filter("s1", "inspection.management", "read")

    assert result.restriction_level is RestrictionLevel.FULL


def test_tenant_confinement_end_to_end(seed, authz):
    seed.user("s1", Scope.SCHOOL, "TEACHER", establishment_id="school-1")
    group = seed.group("teachers", Scope.SCHOOL)
    seed.member("s1", group)
    seed.grant(group, "doc", read=True)

    assert not authz.check_permission("s1", "doc", Action.READ, {"tenant_id": "school-2"}).allowed
    assert authz.check_permission("s1", "doc", Action.READ, {"tenant_id": "school-1"}).allowed


def test_context_reflects_manager_change_after_invalidation(seed, db_session, authz):
    seed.user("boss-1")
    seed.user("boss-2")
    employee = seed.user("u1", manager_id="boss-1")

    assert authz.get_security_context("u1").hierarchy.manager_id == "boss-1"

    authz.validate_manager_assignment("u1", "boss-2")
    employee.manager_id = "boss-2"
    db_session.flush()

    # Still cached until invalidated.
    assert authz.get_security_context("u1").hierarchy.manager_id == "boss-1"

    authz.invalidate_security_context("u1")
    assert authz.get_security_context("u1").hierarchy.manager_id == "boss-2"


def test_manager_assignment_cycle_is_rejected(seed, authz):
    seed.user("C")
    seed.user("B", manager_id="C")
    seed.user("A", manager_id="B")

    with pytest.raises(HierarchyValidationError) as exc_info:
        authz.validate_manager_assignment("C", "A")
    assert list(exc_info.value.path) == ["A", "B", "C"]


def test_ui_config_from_stored_rules(seed, authz):
    seed.user("d1", Scope.MINISTRY, "DIRECTOR", structure_id="struct-1")
    group = seed.group("directors")
    seed.member("d1", group)
    seed.grant(group, "doc", read=True, approve=True)
    seed.ui_rule(group, "btn-approve", "BUTTON", conditions={"pages": ["review"]})
    seed.ui_rule(group, "field-budget", "FIELD")

    config = authz.generate_ui_config("d1", "review")

    assert config["btn-approve"].visible
    assert config["field-budget"].visible
    assert authz.evaluate_ui_element("d1", "btn-approve").visible
    assert authz.evaluate_ui_elements("d1", ["field-password"])["field-password"].visible


def test_invalidate_all(seed, authz, cache_store):
    seed.user("u1")
    seed.user("u2")
    authz.get_security_context("u1")
    authz.get_security_context("u2")
    assert authz.invalidate_all_security_contexts() == 2
