from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.models.account import Account
from app.models.audit_log import AuditLog
from app.services.audit_log import CATEGORY_USER_ADMIN
from conftest import USER_PASSWORD


NEW_USER = {"email": "ops@example.com", "name": "Ops Person", "password": USER_PASSWORD, "role": "ADMIN_USER"}


def test_users_require_authentication(client: TestClient) -> None:
    response = client.get("/users")

    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHORIZED"


def test_users_require_elevated_role(client: TestClient, user_headers: dict[str, str]) -> None:
    for method, path in (("get", "/users"), ("get", "/users/pending"), ("delete", "/users/abc")):
        response = client.request(method.upper(), path, headers=user_headers)
        assert response.status_code == 403, path
        assert response.json()["error"] == "Insufficient permissions"


def test_create_and_list_users(client: TestClient, admin_headers: dict[str, str], admin: Account, db: Session) -> None:
    created = client.post("/users", json=NEW_USER, headers=admin_headers)

    assert created.status_code == 201, created.text
    data = created.json()["data"]
    assert data["email"] == "ops@example.com"
    assert data["role"] == "ADMIN_USER"
    assert "hashed_password" not in data
    row = db.query(Account).filter(Account.email == "ops@example.com").one()
    assert row.created_by == admin.id
    assert db.query(AuditLog).filter(AuditLog.category == CATEGORY_USER_ADMIN).count() == 1

    listed = client.get("/users", headers=admin_headers).json()["data"]["users"]
    assert sorted(u["email"] for u in listed) == ["ops@example.com", admin.email]

    fetched = client.get(f"/users/{data['id']}", headers=admin_headers)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["name"] == "Ops Person"

    login = client.post("/login", json={"email": "ops@example.com", "password": USER_PASSWORD})
    assert login.status_code == 200


def test_create_duplicate_user(client: TestClient, admin_headers: dict[str, str], admin: Account) -> None:
    response = client.post("/users", json={**NEW_USER, "email": admin.email}, headers=admin_headers)

    assert response.status_code == 409
    assert response.json()["code"] == "USER_EXISTS"


def test_create_user_with_unknown_role(client: TestClient, admin_headers: dict[str, str]) -> None:
    response = client.post("/users", json={**NEW_USER, "role": "OWNER"}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_delete_is_soft(client: TestClient, admin_headers: dict[str, str], regular_user: Account, db: Session) -> None:
    response = client.delete(f"/users/{regular_user.id}", headers=admin_headers)

    assert response.status_code == 200, response.text
    db.expire_all()
    row = db.query(Account).filter(Account.id == regular_user.id).one()
    assert row.is_active is False
    listed = client.get("/users", headers=admin_headers).json()["data"]["users"]
    assert regular_user.email not in [u["email"] for u in listed]
    assert client.get(f"/users/{regular_user.id}", headers=admin_headers).status_code == 404
    # Deactivated accounts can no longer sign in
    assert client.post("/login", json={"email": regular_user.email, "password": USER_PASSWORD}).status_code == 401


def test_deactivated_token_stops_working(
    client: TestClient, admin_headers: dict[str, str], regular_user: Account, user_headers: dict[str, str]
) -> None:
    assert client.get("/me", headers=user_headers).status_code == 200

    client.delete(f"/users/{regular_user.id}", headers=admin_headers)

    assert client.get("/me", headers=user_headers).status_code == 401


def test_cannot_delete_self(client: TestClient, admin_headers: dict[str, str], admin: Account) -> None:
    response = client.delete(f"/users/{admin.id}", headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["code"] == "CANNOT_DELETE_SELF"


def test_delete_unknown_user(client: TestClient, admin_headers: dict[str, str]) -> None:
    response = client.delete("/users/does-not-exist", headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["code"] == "USER_NOT_FOUND"
