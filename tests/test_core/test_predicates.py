"""Tests for the predicate tree and its local evaluator."""

import pytest

from scopeguard.security.predicates import (
    MATCH_ALL,
    MATCH_NONE,
    And,
    FieldEquals,
    FieldIn,
    Or,
    and_,
    evaluate,
    field_in,
    or_,
    predicate_from_dict,
    to_dict,
)


def test_or_simplification():
    eq = FieldEquals("a", 1)
    assert or_() is MATCH_NONE
    assert or_(MATCH_NONE, eq) == eq
    assert or_(eq, MATCH_ALL) is MATCH_ALL


def test_and_simplification():
    eq = FieldEquals("a", 1)
    assert and_() is MATCH_ALL
    assert and_(MATCH_ALL, eq) == eq
    assert and_(eq, MATCH_NONE) is MATCH_NONE
    assert and_(eq, FieldEquals("b", 2)) == And((eq, FieldEquals("b", 2)))


def test_field_in_collapses():
    assert field_in("x", []) is MATCH_NONE
    assert field_in("x", ["a", "a"]) == FieldEquals("x", "a")
    assert field_in("x", ["a", "b", "a"]) == FieldIn("x", ("a", "b"))


def test_evaluate_nested():
    predicate = Or((FieldEquals("owner", "u1"), And((FieldIn("school", ("s1", "s2")), FieldEquals("status", "open")))))
    assert evaluate(predicate, {"owner": "u1"})
    assert evaluate(predicate, {"owner": "u2", "school": "s2", "status": "open"})
    assert not evaluate(predicate, {"owner": "u2", "school": "s2", "status": "closed"})
    assert not evaluate(predicate, {})


def test_missing_field_never_matches():
    assert not evaluate(FieldEquals("owner", None), {})


def test_document_form_round_trip():
    predicate = Or((FieldEquals("a", 1), FieldIn("b", ("x", "y"))))
    assert predicate_from_dict(to_dict(predicate)) == predicate
    assert predicate_from_dict({"match": "none"}) is MATCH_NONE


@pytest.mark.parametrize("raw", [{"match": "some"}, {"field": "a"}, {"or": {"field": "a"}}, {"unknown": 1}])
def test_predicate_from_dict_rejects_garbage(raw):
    with pytest.raises(ValueError):
        predicate_from_dict(raw)
