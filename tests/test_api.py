import time
from datetime import datetime, timedelta, timezone

from bson import ObjectId

from .conftest import register


def test_root(client):
    assert client.get("/").json() == {"message": "TaskFlow API running"}


def test_unknown_route(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "message": "Route /api/nope not found"}


class TestAuthRoutes:
    def test_register_and_me(self, client):
        resp = client.post(
            "/api/auth/register",
            json={"name": "Alice", "email": "Alice@Example.com", "password": "secret1"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["email"] == "alice@example.com"
        assert "password_hash" not in body["data"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.json()["data"]["id"] == body["data"]["id"]

    def test_register_duplicate_email(self, client):
        register(client)
        resp = client.post(
            "/api/auth/register",
            json={"name": "Again", "email": "ALICE@example.com", "password": "secret1"},
        )
        assert resp.status_code == 409
        assert resp.json() == {"success": False, "message": "An account with this email already exists"}

    def test_register_validation_envelope(self, client):
        resp = client.post("/api/auth/register", json={"name": "A", "email": "a@example.com", "password": "secret1"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["errors"][0]["field"] == "name"

    def test_register_long_local_part_returns_promptly(self, client):
        started = time.monotonic()
        resp = client.post(
            "/api/auth/register",
            json={"name": "Alice", "email": "a" * 60 + "#@example.com", "password": "secret1"},
        )
        assert resp.status_code in (201, 400)
        assert time.monotonic() - started < 2

    def test_missing_body_fields(self, client):
        resp = client.post("/api/auth/login", json={"email": "alice@example.com"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_login_messages_do_not_leak_accounts(self, client):
        register(client)
        wrong = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
        unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "secret1"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"success": False, "message": "Invalid email or password"}

    def test_login(self, client):
        register(client)
        resp = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret1"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Login successful"
        assert resp.json()["token"]

    def test_profile_update(self, client):
        headers = register(client)
        register(client, name="Bob", email="bob@example.com")
        resp = client.put("/api/auth/profile", json={"bio": "Hello"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["bio"] == "Hello"

        conflict = client.put("/api/auth/profile", json={"email": "bob@example.com"}, headers=headers)
        assert conflict.status_code == 409

    def test_password_change(self, client):
        headers = register(client)
        resp = client.put(
            "/api/auth/password",
            json={"currentPassword": "secret1", "newPassword": "secret9"},
            headers=headers,
        )
        assert resp.status_code == 200
        new_headers = {"Authorization": f"Bearer {resp.json()['token']}"}
        assert client.get("/api/auth/me", headers=new_headers).status_code == 200
        # The old token is not revoked
        assert client.get("/api/auth/me", headers=headers).status_code == 200

        wrong = client.put(
            "/api/auth/password",
            json={"currentPassword": "secret1", "newPassword": "secret10"},
            headers=new_headers,
        )
        assert wrong.status_code == 401


class TestGuard:
    def test_no_token(self, client):
        resp = client.get("/api/tasks")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Not authorized, no token provided"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_token(self, client):
        resp = client.get("/api/tasks", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Not authorized, token failed verification"

    def test_expired_token(self, client, tokens):
        headers = register(client)
        user_id = client.get("/api/auth/me", headers=headers).json()["data"]["id"]
        expired = tokens.issue(user_id, now=datetime.now(timezone.utc) - timedelta(days=30))
        resp = client.get("/api/tasks", headers={"Authorization": f"Bearer {expired}"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Token has expired, please login again"

    def test_user_deleted_after_issue(self, client, db):
        headers = register(client)
        db["user"].delete_many({})
        resp = client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["message"] == "User belonging to this token no longer exists"


class TestTaskRoutes:
    def test_crud_and_ownership(self, client):
        alice = register(client)
        bob = register(client, name="Bob", email="bob@example.com")

        created = client.post(
            "/api/tasks",
            json={"title": "Buy milk", "priority": "high", "dueDate": "2024-05-10", "tags": ["home"]},
            headers=alice,
        )
        assert created.status_code == 201
        task = created.json()["data"]
        assert task["priority"] == "high"
        assert task["tags"] == ["home"]
        assert task["dueDate"].startswith("2024-05-10T00:00:00")

        url = f"/api/tasks/{task['id']}"
        assert client.get(url, headers=bob).status_code == 403
        assert client.put(url, json={"title": "mine"}, headers=bob).status_code == 403
        assert client.delete(url, headers=bob).status_code == 403

        updated = client.put(url, json={"status": "completed"}, headers=alice)
        assert updated.status_code == 200
        assert updated.json()["data"]["status"] == "completed"
        assert updated.json()["data"]["title"] == "Buy milk"

        assert client.delete(url, headers=alice).json() == {"success": True, "message": "Task deleted successfully"}
        assert client.get(url, headers=alice).status_code == 404

    def test_not_found_vs_malformed_id(self, client):
        alice = register(client)
        assert client.get(f"/api/tasks/{ObjectId()}", headers=alice).status_code == 404
        assert client.get("/api/tasks/not-an-id", headers=alice).status_code == 404

    def test_invalid_enum_rejected(self, client):
        alice = register(client)
        resp = client.post("/api/tasks", json={"title": "x", "status": "done"}, headers=alice)
        assert resp.status_code == 400

    def test_list_with_pagination(self, client):
        alice = register(client)
        for i in range(12):
            client.post("/api/tasks", json={"title": f"Task {i}"}, headers=alice)
        resp = client.get("/api/tasks", params={"page": 2, "limit": 5}, headers=alice)
        body = resp.json()
        assert resp.status_code == 200
        assert len(body["data"]) == 5
        assert body["pagination"] == {"current": 2, "pages": 3, "total": 12, "limit": 5}

    def test_list_rejects_bad_page(self, client):
        alice = register(client)
        resp = client.get("/api/tasks", params={"page": 0}, headers=alice)
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "page"

    def test_stats(self, client):
        alice = register(client)
        today = datetime.now(timezone.utc).replace(hour=12, minute=0, second=0, microsecond=0)
        yesterday = today - timedelta(days=1)
        for payload in (
            {"title": "late", "dueDate": yesterday.isoformat()},
            {"title": "done late", "status": "completed", "dueDate": yesterday.isoformat()},
            {"title": "today", "status": "in-progress", "dueDate": today.isoformat()},
        ):
            assert client.post("/api/tasks", json=payload, headers=alice).status_code == 201

        stats = client.get("/api/tasks/stats", headers=alice).json()["data"]
        assert stats["total"] == 3
        assert stats["overdue"] == 1
        assert stats["dueToday"] == 1
        assert stats["inProgress"] == 1
