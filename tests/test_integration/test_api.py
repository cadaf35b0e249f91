"""
Tests for the FastAPI integration: decorators, global dependency and row filter hook.

The app is built around the seeded SQLite connection, so requests see the
rows each test inserts.
"""
from __future__ import annotations

import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from scopeguard.context import Action, Scope
from scopeguard.db.session import get_db
from scopeguard.integration.app import create_app
from scopeguard.integration.decorators import apply_row_filter, require_permission


def _documents_router(Document) -> APIRouter:
    router = APIRouter(prefix="/documents")

    @router.get("")
    @require_permission("doc", Action.READ)
    @apply_row_filter("doc")
    def list_documents(db: Session = Depends(get_db)) -> list[str]:
        return [d.title for d in db.scalars(select(Document).order_by(Document.id)).all()]

    @router.delete("/{doc_id}")
    @require_permission("doc", Action.DELETE)
    def delete_document(doc_id: int) -> dict:
        return {"deleted": doc_id}

    @router.get("/public")
    def public_documents(db: Session = Depends(get_db)) -> int:
        return len(db.scalars(select(Document)).all())

    return router


@pytest.fixture
def client(settings, session_factory, authz, document_model):
    app = create_app(settings=settings, engine=authz, session_factory=session_factory)
    app.include_router(_documents_router(document_model))
    return TestClient(app)


@pytest.fixture
def documents(seed, db_session, document_model):
    seed.user("s1", Scope.SCHOOL, "TEACHER", establishment_id="school-1")
    seed.user("s2", Scope.SCHOOL, "TEACHER", establishment_id="school-1")
    group = seed.group("teachers", Scope.SCHOOL)
    seed.member("s1", group)
    seed.grant(group, "doc", read=True)
    seed.rule(group, "doc", "OWNERSHIP", {"include_created": True})
    db_session.add_all(
        [
            document_model(title="mine", created_by_id="s1", establishment_id="school-1"),
            document_model(title="theirs", created_by_id="s2", establishment_id="school-1"),
        ]
    )
    db_session.flush()


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def test_missing_user_header_is_401(client, documents):
    assert client.get("/documents").status_code == 401


def test_unknown_user_is_401(client, documents):
    assert client.get("/documents", headers=_as("ghost")).status_code == 401


def test_missing_permission_is_403_with_reason(client, documents):
    response = client.delete("/documents/1", headers=_as("s1"))
    assert response.status_code == 403
    assert "delete" in response.json()["detail"]


def test_user_without_grants_is_403(client, documents):
    assert client.get("/documents", headers=_as("s2")).status_code == 403


def test_row_filter_scopes_orm_queries(client, documents):
    response = client.get("/documents", headers=_as("s1"))
    assert response.status_code == 200
    assert response.json() == ["mine"]


def test_routes_without_metadata_are_untouched(client, documents):
    response = client.get("/documents/public")
    assert response.status_code == 200
    assert response.json() == 2


def test_security_routes(client, documents):
    assert client.get("/security/objects", headers=_as("s1")).json() == ["doc"]
    assert client.get("/security/objects/doc", headers=_as("s1")).json()["read"] is True

    checks = client.post(
        "/security/permissions/check",
        headers=_as("s1"),
        json=[
            {"business_object": "doc", "action": "read", "context": {"tenant_id": "school-1"}},
            {"business_object": "doc", "action": "write"},
        ],
    ).json()
    assert checks["doc.read"]["allowed"] is True
    assert checks["doc.write"]["allowed"] is False

    elements = client.get("/security/ui/elements", headers=_as("s1"), params={"names": ["btn-save"]})
    assert elements.json()["btn-save"]["visible"] is True
    assert client.get("/security/ui/pages/home", headers=_as("s1")).json() == {}


def test_security_routes_require_user(client):
    assert client.get("/security/objects").status_code == 401
