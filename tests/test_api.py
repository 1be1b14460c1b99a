"""
HTTP tests for the FastAPI adapter.

The session factory and password verifier dependencies are overridden so
the app runs against the per-test in-memory database.
"""

import pytest
from fastapi.testclient import TestClient

from settings_service import database, main
from settings_service.app.models import Role


@pytest.fixture
def client(session_factory, verifier):
    """Provide FastAPI test client"""
    main.app.dependency_overrides[database.get_session_factory] = lambda: session_factory
    main.app.dependency_overrides[main.get_verifier] = lambda: verifier

    with TestClient(main.app) as test_client:
        yield test_client

    main.app.dependency_overrides.clear()


@pytest.fixture
def svc_a(client):
    response = client.post("/services", json={"name": "svcA", "password": "pw-a"})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def admin(register):
    return register("admin", "admin-pw", Role.FULL)


A = ("svcA", "pw-a")
ADMIN = ("admin", "admin-pw")


@pytest.mark.unit
class TestServiceEndpoints:
    def test_register_read_service(self, client) -> None:
        response = client.post("/services", json={"name": "svcA", "password": "pw-a"})

        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "svcA"
        assert body["role"] == "READ"
        assert "password_hash" not in body
        assert "password" not in body

    def test_missing_password_rejected_before_core(self, client) -> None:
        response = client.post("/services", json={"name": "svcA"})
        assert response.status_code == 422

    def test_blank_name_rejected(self, client) -> None:
        response = client.post("/services", json={"name": "", "password": "pw"})
        assert response.status_code == 422

    def test_duplicate_name_conflict(self, client, svc_a) -> None:
        response = client.post("/services", json={"name": "SVCA", "password": "other"})
        assert response.status_code == 409
        assert response.json()["kind"] == "duplicate_name"

    def test_full_service_needs_credentials(self, client) -> None:
        response = client.post("/services", json={"name": "root", "password": "pw", "role": "FULL"})
        assert response.status_code == 401

    def test_read_service_cannot_create_full_service(self, client, svc_a) -> None:
        response = client.post("/services", json={"name": "root", "password": "pw", "role": "FULL"}, auth=A)
        assert response.status_code == 403

    def test_full_service_creates_full_service(self, client, admin) -> None:
        response = client.post("/services", json={"name": "root", "password": "pw", "role": "FULL"}, auth=ADMIN)
        assert response.status_code == 201
        assert response.json()["role"] == "FULL"

    def test_list_services(self, client, svc_a, admin) -> None:
        response = client.get("/services", params={"size": 1}, auth=A)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [s["name"] for s in body["items"]] == ["svcA"]
        assert all("password_hash" not in s for s in body["items"])

    def test_list_past_end_is_not_found(self, client, svc_a) -> None:
        response = client.get("/services", params={"page": 3}, auth=A)
        assert response.status_code == 404
        assert response.json()["kind"] == "no_results"

    def test_get_service(self, client, svc_a) -> None:
        response = client.get("/services/svca", auth=A)
        assert response.status_code == 200
        assert response.json() == svc_a

    def test_wrong_credentials(self, client, svc_a) -> None:
        wrong = client.get("/services/svcA", auth=("svcA", "nope"))
        unknown = client.get("/services/svcA", auth=("ghost", "nope"))

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.headers["WWW-Authenticate"].startswith("Basic")

    def test_self_password_change(self, client, svc_a) -> None:
        response = client.put("/services/svcA", json={"password": "new-pw", "old_password": "pw-a"}, auth=A)

        assert response.status_code == 200
        assert client.get("/services/svcA", auth=("svcA", "new-pw")).status_code == 200
        assert client.get("/services/svcA", auth=A).status_code == 401

    def test_self_password_change_with_wrong_old_password(self, client, svc_a) -> None:
        response = client.put("/services/svcA", json={"password": "new-pw", "old_password": "bad"}, auth=A)
        assert response.status_code == 403

    def test_read_service_cannot_update_another(self, client, svc_a, admin) -> None:
        response = client.put("/services/admin", json={"name": "hijacked"}, auth=A)
        assert response.status_code == 403

    def test_full_service_updates_another(self, client, svc_a, admin) -> None:
        response = client.put("/services/svcA", json={"role": "FULL"}, auth=ADMIN)
        assert response.status_code == 200
        assert response.json()["role"] == "FULL"

    def test_root_redirects_to_docs(self, client) -> None:
        response = client.get("/", follow_redirects=False)
        assert response.status_code in (302, 307)
        assert response.headers["location"] == "/docs"


@pytest.mark.unit
class TestSettingEndpoints:
    def test_empty_listing_is_ok(self, client, svc_a) -> None:
        response = client.get("/settings", auth=A)

        assert response.status_code == 200
        assert response.json()["items"] == []
        assert response.json()["total"] == 0

    def test_put_get_list_delete(self, client, svc_a) -> None:
        first = client.put("/settings/k", json={"value": "v1"}, auth=A).json()
        second = client.put("/settings/k", json={"value": "v2"}, auth=A).json()
        assert second["id"] == first["id"]

        fetched = client.get("/settings/k", auth=A)
        assert fetched.status_code == 200
        assert fetched.json()["value"] == "v2"
        assert fetched.json()["last_used_at"] is not None

        listing = client.get("/settings", auth=A).json()
        assert [s["name"] for s in listing["items"]] == ["k"]

        assert client.delete("/settings/k", auth=A).status_code == 204
        assert client.delete("/settings/k", auth=A).status_code == 404
        assert client.get("/settings/k", auth=A).status_code == 404

    def test_settings_require_credentials(self, client) -> None:
        assert client.get("/settings").status_code == 401

    def test_full_service_writes_on_behalf(self, client, svc_a, admin) -> None:
        response = client.put("/services/svcA/settings/k", json={"value": "from-admin"}, auth=ADMIN)

        assert response.status_code == 200
        assert response.json()["owner_id"] == svc_a["id"]
        assert client.get("/settings/k", auth=A).json()["value"] == "from-admin"
        assert client.delete("/services/svcA/settings/k", auth=ADMIN).status_code == 204

    def test_read_service_cannot_write_on_behalf(self, client, svc_a, admin) -> None:
        response = client.put("/services/admin/settings/k", json={"value": "x"}, auth=A)
        assert response.status_code == 403
        assert response.json()["kind"] == "access_denied"

    def test_missing_value_rejected(self, client, svc_a) -> None:
        assert client.put("/settings/k", json={}, auth=A).status_code == 422

    def test_unknown_sort_column(self, client, svc_a) -> None:
        response = client.get("/settings", params={"sort": "value"}, auth=A)
        assert response.status_code == 400
