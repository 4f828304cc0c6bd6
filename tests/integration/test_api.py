"""
Integration tests for the HTTP API.
Exercises routing, caller headers and the mapping of engine errors to
HTTP statuses.
"""
import pytest

from cloudnest.middleware.metrics import normalize_path
from tests.conftest import AWS_CREDENTIALS, EMBEDDED_CREDENTIALS

API = "/api/v1"


def _register(client, admin_headers, name="primary", kind="aws", credentials=None, **extra):
    payload = {
        "name": name,
        "kind": kind,
        "credentials": credentials or (AWS_CREDENTIALS if kind == "aws" else EMBEDDED_CREDENTIALS),
        "is_default": True,
        **extra,
    }
    response = client.post(f"{API}/storage-backends", json=payload, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


def _file_payload(**overrides):
    payload = {
        "name": "report.pdf",
        "mime_type": "application/pdf",
        "size": 500_000,
        "content_hash": "report-hash-0001",
        "storage_key": "user-1/report.pdf",
        "bytes_transferred": 500_000,
    }
    payload.update(overrides)
    return payload


@pytest.mark.integration
class TestCallerHeaders:
    """Test caller identity handling."""

    def test_missing_user_id(self, client):
        response = client.get(f"{API}/quota")

        assert response.status_code == 401
        assert response.json()["error"] == "http_error"

    def test_bad_storage_limit(self, client):
        response = client.get(f"{API}/quota", headers={"X-User-Id": "user-1", "X-Storage-Limit": "lots"})
        assert response.status_code == 400

    def test_backend_admin_requires_admin_role(self, client, user_headers):
        response = client.get(f"{API}/storage-backends", headers=user_headers)
        assert response.status_code == 403


@pytest.mark.integration
class TestStorageBackendEndpoints:
    """Test backend administration."""

    def test_register_probes_and_redacts(self, client, admin_headers):
        data = _register(client, admin_headers)

        assert data["health_state"] == "healthy"
        assert data["is_default"] is True
        assert data["credentials"]["secret_access_key"] == "********"
        assert data["credentials"]["access_key_id"].startswith("AKIA")
        assert data["credentials"]["access_key_id"] != AWS_CREDENTIALS["access_key_id"]

    def test_register_unreachable_backend(self, client, admin_headers, checker):
        checker.failing.add("broken")
        data = _register(client, admin_headers, name="broken")

        assert data["health_state"] == "unhealthy"
        assert data["last_error"]

    def test_register_invalid_credentials(self, client, admin_headers):
        response = client.post(
            f"{API}/storage-backends",
            json={"name": "r2", "kind": "cloudflare", "credentials": {"bucket": "abc"}},
            headers=admin_headers,
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]["field"] == "credentials"

    def test_switch_default_and_stats(self, client, admin_headers):
        first = _register(client, admin_headers, name="first")
        second = _register(client, admin_headers, name="second", kind="embedded")

        response = client.post(f"{API}/storage-backends/{first['id']}/default", headers=admin_headers)
        assert response.status_code == 200

        listing = client.get(f"{API}/storage-backends", headers=admin_headers).json()
        defaults = [b["id"] for b in listing if b["is_default"]]
        assert defaults == [first["id"]]

        stats = client.get(f"{API}/storage-backends/stats", headers=admin_headers).json()
        assert stats["total_backends"] == 2
        assert stats["healthy_backends"] == 2
        assert stats["default_backend_id"] == first["id"]
        assert second["id"] != first["id"]

    def test_deactivate_then_default_is_rejected(self, client, admin_headers):
        backend = _register(client, admin_headers)

        response = client.delete(f"{API}/storage-backends/{backend['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        response = client.post(f"{API}/storage-backends/{backend['id']}/default", headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_operation"

    def test_health_check_now(self, client, admin_headers, checker):
        backend = _register(client, admin_headers)
        checker.failing.add("primary")

        response = client.post(f"{API}/storage-backends/health-check", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["healthy"] == 0

        response = client.post(f"{API}/storage-backends/{backend['id']}/health-check", headers=admin_headers)
        assert response.json()["ok"] is False

        # two failures stay below the unhealthy threshold
        detail = client.get(f"{API}/storage-backends/{backend['id']}", headers=admin_headers).json()
        assert detail["health_state"] == "healthy"
        assert detail["consecutive_failures"] == 2

    def test_unknown_backend(self, client, admin_headers):
        response = client.get(f"{API}/storage-backends/missing", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["details"]["entity"] == "StorageBackend"

    def test_update_backend(self, client, admin_headers):
        backend = _register(client, admin_headers)

        response = client.patch(
            f"{API}/storage-backends/{backend['id']}",
            json={"max_file_size": 1024, "enable_deduplication": True},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["max_file_size"] == 1024
        assert response.json()["enable_deduplication"] is True


@pytest.mark.integration
class TestUploadFlow:
    """Test admission and commit over HTTP."""

    def test_admit_without_backend_returns_negative_decision(self, client, user_headers):
        payload = _file_payload()
        response = client.post(
            f"{API}/files/admit",
            json={k: payload[k] for k in ("name", "mime_type", "size", "content_hash")},
            headers=user_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "no_backend_available"

    def test_commit_without_backend_is_503(self, client, user_headers):
        response = client.post(f"{API}/files", json=_file_payload(), headers=user_headers)

        assert response.status_code == 503
        assert response.json()["error"] == "no_backend_available"

    def test_upload_and_quota(self, client, admin_headers, user_headers):
        backend = _register(client, admin_headers)

        response = client.post(f"{API}/files", json=_file_payload(), headers=user_headers)
        assert response.status_code == 201, response.text
        created = response.json()
        assert created["backend_id"] == backend["id"]
        assert created["current_version"] == 1
        assert created["category"] == "pdf"

        quota = client.get(f"{API}/quota", headers=user_headers).json()
        assert quota["used_bytes"] == 500_000
        assert quota["limit_bytes"] == 1_000_000

        admit = client.post(
            f"{API}/files/admit",
            json={"name": "big.bin", "size": 600_000, "content_hash": "big-hash-0001"},
            headers=user_headers,
        ).json()
        assert admit["status"] == "quota_exceeded"
        assert admit["shortfall_bytes"] == 100_000

        response = client.post(
            f"{API}/files",
            json=_file_payload(name="big.bin", size=600_000, bytes_transferred=600_000, storage_key="k2"),
            headers=user_headers,
        )
        assert response.status_code == 507
        assert response.json()["details"]["shortfall_bytes"] == 100_000

        check = client.post(f"{API}/quota/check", json={"sizes": [100_000, 200_000]}, headers=user_headers)
        assert check.json()["allowed"] is True
        assert check.json()["file_count"] == 2

    def test_invalid_file_name(self, client, admin_headers, user_headers):
        _register(client, admin_headers)

        response = client.post(f"{API}/files", json=_file_payload(name="bad|name.pdf"), headers=user_headers)

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_versions_download_and_delete(self, client, admin_headers, user_headers):
        _register(client, admin_headers)
        created = client.post(
            f"{API}/files", json=_file_payload(size=100_000, bytes_transferred=100_000), headers=user_headers
        ).json()
        file_id = created["id"]

        response = client.post(
            f"{API}/files/{file_id}/versions",
            json={"size": 200_000, "storage_key": "v2", "bytes_transferred": 200_000},
            headers=user_headers,
        )
        assert response.status_code == 201
        assert [v["version"] for v in response.json()["versions"]] == [1, 2]

        downloaded = client.post(f"{API}/files/{file_id}/download", headers=user_headers).json()
        assert downloaded["downloads"] == 1

        detail = client.get(f"{API}/files/{file_id}", headers=user_headers).json()
        assert detail["views"] == 1
        assert detail["size"] == 200_000

        assert client.delete(f"{API}/files/{file_id}", headers=user_headers).status_code == 200
        assert client.delete(f"{API}/files/{file_id}", headers=user_headers).status_code == 200
        assert client.get(f"{API}/files/{file_id}", headers=user_headers).status_code == 404
        trash = client.get(f"{API}/files/trash", headers=user_headers).json()
        assert [f["id"] for f in trash["files"]] == [file_id]

        restored = client.post(f"{API}/files/{file_id}/restore", headers=user_headers).json()
        assert restored["is_deleted"] is False

    def test_other_users_file_is_hidden(self, client, admin_headers, user_headers):
        _register(client, admin_headers)
        created = client.post(f"{API}/files", json=_file_payload(), headers=user_headers).json()

        response = client.get(f"{API}/files/{created['id']}", headers={"X-User-Id": "user-2"})

        assert response.status_code == 404


@pytest.mark.integration
class TestFolderEndpoints:
    """Test folder operations over HTTP."""

    def test_folder_lifecycle(self, client, admin_headers, user_headers):
        _register(client, admin_headers)
        docs = client.post(f"{API}/folders", json={"name": "Docs"}, headers=user_headers).json()
        year = client.post(
            f"{API}/folders", json={"name": "2024", "parent_id": docs["id"]}, headers=user_headers
        ).json()
        assert year["path"] == "/Docs/2024"
        assert year["depth"] == 2

        client.post(
            f"{API}/files", json=_file_payload(folder_id=year["id"]), headers=user_headers
        )

        renamed = client.post(
            f"{API}/folders/{docs['id']}/rename", json={"name": "Archive"}, headers=user_headers
        )
        assert renamed.json()["path"] == "/Archive"
        by_path = client.get(f"{API}/folders/by-path", params={"path": "/Archive/2024"}, headers=user_headers)
        assert by_path.json()["id"] == year["id"]

        cascade = client.delete(f"{API}/folders/{docs['id']}", headers=user_headers).json()
        assert cascade["folders_deleted"] == 2
        assert cascade["files_deleted"] == 1

        quota = client.get(f"{API}/quota", headers=user_headers).json()
        assert quota["used_bytes"] == 500_000

    def test_duplicate_folder_is_409(self, client, user_headers):
        client.post(f"{API}/folders", json={"name": "Docs"}, headers=user_headers)

        response = client.post(f"{API}/folders", json={"name": "Docs"}, headers=user_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_cyclic_move_is_400(self, client, user_headers):
        docs = client.post(f"{API}/folders", json={"name": "Docs"}, headers=user_headers).json()
        child = client.post(
            f"{API}/folders", json={"name": "Child", "parent_id": docs["id"]}, headers=user_headers
        ).json()

        response = client.post(
            f"{API}/folders/{docs['id']}/move", json={"parent_id": child["id"]}, headers=user_headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_operation"

    def test_children_listing(self, client, user_headers):
        docs = client.post(f"{API}/folders", json={"name": "Docs"}, headers=user_headers).json()
        a = client.post(f"{API}/folders", json={"name": "a", "parent_id": docs["id"]}, headers=user_headers).json()
        client.post(f"{API}/folders", json={"name": "b", "parent_id": a["id"]}, headers=user_headers)

        direct = client.get(f"{API}/folders/{docs['id']}/children", headers=user_headers).json()
        recursive = client.get(
            f"{API}/folders/{docs['id']}/children", params={"recursive": True}, headers=user_headers
        ).json()

        assert direct["total"] == 1
        assert recursive["total"] == 2

    def test_request_validation_error_shape(self, client, user_headers):
        response = client.post(f"{API}/folders", json={"name": ""}, headers=user_headers)

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
        assert response.json()["details"]["errors"]


@pytest.mark.integration
class TestServiceEndpoints:
    """Test root, health and metrics."""

    def test_health(self, client, admin_headers):
        _register(client, admin_headers)

        body = client.get("/health").json()

        assert body["database"] == "healthy"
        assert body["storage_backends"]["healthy"] == 1

    def test_metrics(self, client, user_headers):
        client.get(f"{API}/quota", headers=user_headers)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "api_requests_total" in response.text

    def test_root(self, client):
        assert client.get("/").json()["docs"] == "/docs"


@pytest.mark.unit
class TestNormalizePath:
    def test_ids_are_replaced(self):
        assert normalize_path("/api/v1/files/abc123") == "/api/v1/files/{file_id}"
        assert normalize_path("/api/v1/folders/abc/rename") == "/api/v1/folders/{folder_id}/rename"
        assert normalize_path("/api/v1/storage-backends/x/default") == "/api/v1/storage-backends/{backend_id}/default"

    def test_fixed_routes_are_kept(self):
        assert normalize_path("/api/v1/files/search") == "/api/v1/files/search"
        assert normalize_path("/api/v1/storage-backends/stats") == "/api/v1/storage-backends/stats"
