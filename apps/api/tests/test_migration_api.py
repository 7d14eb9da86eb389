"""
API tests for the migration endpoints (panel side and game-server side).
"""
from unittest.mock import patch

import pytest

from core.config import settings
from services.migration_service import get_current_migration
from tasks import celery_app


def _headers(tenant):
    return {"X-Server-Name": tenant.slug}


def _upload(client, tenant, content=b'{"players": []}'):
    return client.post(
        "/v1/minecraft/migration/upload",
        headers=_headers(tenant),
        files={"migrationFile": ("export.json", content, "application/json")},
    )


@pytest.fixture
def uploads_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOADS_DIR", str(tmp_path))
    return tmp_path / "migrations"


class TestTenantHeader:
    def test_missing_header(self, client):
        response = client.get("/v1/migration/status")
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing X-Server-Name header"

    def test_unknown_tenant(self, client):
        response = client.get("/v1/migration/status", headers={"X-Server-Name": "nowhere"})
        assert response.status_code == 404

    def test_header_is_case_insensitive(self, client, tenant):
        response = client.get("/v1/migration/status", headers={"X-Server-Name": tenant.slug.upper()})
        assert response.status_code == 200


class TestStartAndStatus:
    def test_status_without_migrations(self, client, tenant):
        response = client.get("/v1/migration/status", headers=_headers(tenant))
        assert response.status_code == 200
        assert response.json() == {
            "currentMigration": None,
            "lastMigrationTimestamp": None,
            "history": [],
            "cooldown": {"onCooldown": False, "remainingTime": None},
        }

    def test_start_then_status(self, client, tenant):
        response = client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        assert response.status_code == 200
        task_id = response.json()["taskId"]

        current = client.get("/v1/migration/status", headers=_headers(tenant)).json()["currentMigration"]
        assert current["id"] == task_id
        assert current["status"] == "idle"

    def test_unknown_type(self, client, tenant):
        response = client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "essentials"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_MIGRATION_STATE"

    def test_start_while_running_conflicts(self, client, tenant):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        response = client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        assert response.status_code == 409

    def test_start_during_cooldown(self, client, tenant):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        client.post(
            "/v1/minecraft/migration/progress",
            headers=_headers(tenant),
            json={"status": "completed", "message": "Migration completed successfully"},
        )

        response = client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) > 0
        status = client.get("/v1/migration/status", headers=_headers(tenant)).json()
        assert status["cooldown"]["onCooldown"] is True
        assert status["cooldown"]["remainingTime"] > 0

    def test_tenants_do_not_see_each_other(self, client, tenant, other_tenant):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        status = client.get("/v1/migration/status", headers=_headers(other_tenant)).json()
        assert status["currentMigration"] is None


class TestProgress:
    def test_progress_is_monotonic(self, client, tenant):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        first = client.post(
            "/v1/minecraft/migration/progress",
            headers=_headers(tenant),
            json={"status": "uploading_json", "message": "Uploading"},
        )
        late = client.post(
            "/v1/minecraft/migration/progress",
            headers=_headers(tenant),
            json={"status": "building_json", "message": "Building"},
        )

        assert first.json() == {"success": True, "message": None}
        assert late.status_code == 200
        current = client.get("/v1/migration/status", headers=_headers(tenant)).json()["currentMigration"]
        assert current["status"] == "uploading_json"
        assert current["progress"]["message"] == "Uploading"

    def test_progress_without_task_is_ignored(self, client, tenant):
        response = client.post(
            "/v1/minecraft/migration/progress",
            headers=_headers(tenant),
            json={"status": "building_json", "message": "Building"},
        )
        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "No active migration"}

    def test_unknown_status_is_rejected(self, client, tenant):
        response = client.post(
            "/v1/minecraft/migration/progress",
            headers=_headers(tenant),
            json={"status": "paused", "message": "x"},
        )
        assert response.status_code == 422


class TestDismissAndCancel:
    def test_dismiss_finished_task(self, client, tenant):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        client.post(
            "/v1/minecraft/migration/progress",
            headers=_headers(tenant),
            json={"status": "failed", "message": "Migration failed", "error": "boom"},
        )

        response = client.post("/v1/migration/dismiss", headers=_headers(tenant))
        assert response.json() == {"success": True, "message": None}
        status = client.get("/v1/migration/status", headers=_headers(tenant)).json()
        assert status["currentMigration"] is None
        assert status["history"][0]["error"] == "boom"

    def test_dismiss_running_task_is_rejected(self, client, tenant):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        response = client.post("/v1/migration/dismiss", headers=_headers(tenant))
        assert response.status_code == 400

    def test_cancel(self, client, tenant, db_session):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        response = client.post("/v1/migration/cancel", headers=_headers(tenant))

        assert response.json() == {"success": True, "message": "Cancellation requested"}
        current = get_current_migration(db_session, tenant.id)
        assert current["cancelRequested"] is True
        assert current["status"] == "failed"
        assert current["error"] == "Migration cancelled"

        status = client.get("/v1/migration/status", headers=_headers(tenant)).json()
        assert status["cooldown"]["onCooldown"] is False
        assert status["history"][0]["status"] == "failed"

        restart = client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        assert restart.status_code == 200

    def test_cancel_without_task(self, client, tenant):
        response = client.post("/v1/migration/cancel", headers=_headers(tenant))
        assert response.json() == {"success": False, "message": "No migration in progress"}


class TestUpload:
    def test_upload_is_stored_and_enqueued(self, client, tenant, uploads_dir):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        content = b'{"players": [{"minecraftUuid": "U1"}]}'

        with patch.object(celery_app, "send_task") as send_task:
            response = _upload(client, tenant, content)

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Migration file uploaded successfully",
            "fileSize": len(content),
        }
        name, = send_task.call_args[0]
        assert name == "migrations.process_migration_file"
        tenant_id, stored_path = send_task.call_args[1]["args"]
        assert tenant_id == str(tenant.id)
        with open(stored_path, "rb") as f:
            assert f.read() == content

        current = client.get("/v1/migration/status", headers=_headers(tenant)).json()["currentMigration"]
        assert current["status"] == "uploading_json"

    def test_upload_without_running_task(self, client, tenant, uploads_dir):
        with patch.object(celery_app, "send_task") as send_task:
            response = _upload(client, tenant)
        assert response.status_code == 409
        send_task.assert_not_called()

    def test_upload_after_cancel_is_rejected(self, client, tenant, uploads_dir):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        client.post("/v1/migration/cancel", headers=_headers(tenant))

        with patch.object(celery_app, "send_task") as send_task:
            response = _upload(client, tenant)

        assert response.status_code == 409
        send_task.assert_not_called()

    def test_upload_while_cancel_is_pending_is_rejected(self, client, tenant, uploads_dir):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})
        client.post(
            "/v1/minecraft/migration/progress",
            headers=_headers(tenant),
            json={"status": "processing_data", "message": "Processing player records..."},
        )
        client.post("/v1/migration/cancel", headers=_headers(tenant))

        with patch.object(celery_app, "send_task") as send_task:
            response = _upload(client, tenant)

        assert response.status_code == 409
        assert response.json()["detail"] == "Migration was cancelled"
        send_task.assert_not_called()
        assert not uploads_dir.exists() or list(uploads_dir.iterdir()) == []

    def test_oversized_upload_fails_the_task(self, client, tenant, db_session, uploads_dir):
        tenant.migration_file_size_limit = 8
        db_session.commit()
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})

        with patch.object(celery_app, "send_task") as send_task:
            response = _upload(client, tenant, b'{"players": []}')

        assert response.status_code == 413
        send_task.assert_not_called()
        assert list(uploads_dir.iterdir()) == []
        current = get_current_migration(db_session, tenant.id)
        assert current["status"] == "failed"
        assert "exceeds" in current["error"]

    def test_upload_rate_limited(self, client, tenant, uploads_dir):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})

        with patch("routers.migration.check_migration_upload_rate_limit", return_value=(False, 0, 0)):
            response = _upload(client, tenant)

        assert response.status_code == 429
        assert "Retry-After" in response.headers

    def test_enqueue_failure(self, client, tenant, db_session, uploads_dir):
        client.post("/v1/migration/start", headers=_headers(tenant), json={"migrationType": "litebans"})

        with patch.object(celery_app, "send_task", side_effect=ConnectionError("broker down")):
            response = _upload(client, tenant)

        assert response.status_code == 503
        assert list(uploads_dir.iterdir()) == []
        assert get_current_migration(db_session, tenant.id)["status"] == "failed"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
