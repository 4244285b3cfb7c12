"""Integration tests for iconforge.api.main - FastAPI REST API endpoints.

All tests use the FastAPI TestClient with the generation service wired to a
fake Replicate API and a temporary SQLite database.  Tests cover every
endpoint:

- ``GET /health`` and ``GET /api/health`` - health checks.
- ``GET /api/styles`` - presets and options.
- ``POST /api/generate-image`` - single generation.
- ``POST /api/icons/generate`` - icon sets.
- ``GET /api/generations`` - pagination and filters.
- ``GET /api/generations/{id}`` - single record.
- ``GET /api/generations/{id}/download`` - PNG download.
- ``DELETE /api/generations/{id}`` - deletion.
- ``GET /api/stats`` - statistics.
- Rate limiting and request logging middleware.
"""

from __future__ import annotations

import logging

from fastapi.testclient import TestClient


def _generate(test_client, prompt: str = "a red fox icon", headers: dict | None = None, **fields):
    return test_client.post(
        "/api/generate-image",
        json={"prompt": prompt, **fields},
        headers=headers or {},
    )


# ---------------------------------------------------------------------------
# Health and configuration endpoints.
# ---------------------------------------------------------------------------


class TestHealth:
    """Test the health endpoints."""

    def test_root_health(self, test_client):
        resp = test_client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert "timestamp" in resp.json()

    def test_api_health(self, test_client):
        resp = test_client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "API is running"

    def test_request_id_header(self, test_client):
        resp = test_client.get("/api/health")
        assert len(resp.headers["X-Request-ID"]) == 36

    def test_unknown_route_uses_error_envelope(self, test_client):
        resp = test_client.get("/api/nope")
        assert resp.status_code == 404
        assert resp.json()["success"] is False
        assert resp.json()["error"]["status_code"] == 404


class TestStyles:
    """Test GET /api/styles."""

    def test_lists_presets_and_options(self, test_client):
        resp = test_client.get("/api/styles")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [s["name"] for s in data["preset_styles"]] == [
            "Sticker",
            "Pastels",
            "Business",
            "Cartoon",
            "3D Model",
            "Gradient",
        ]
        assert data["sizes"] == ["1024x1024", "1792x1024", "1024x1792"]
        assert data["qualities"] == ["standard", "hd"]
        assert data["max_colors"] == 4


# ---------------------------------------------------------------------------
# Generation endpoint tests.
# ---------------------------------------------------------------------------


class TestGenerateImage:
    """Test POST /api/generate-image."""

    def test_generate_success(self, test_client):
        resp = _generate(test_client, quality="hd")
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["image_url"] == "https://replicate.delivery/fake/pred-1.png"
        assert data["revised_prompt"] == "a red fox icon"
        assert data["quality"] == "hd"
        assert data["size"] == "1024x1024"
        assert "generation_time_ms" in data
        assert "created_at" in data

    def test_prompt_is_trimmed(self, test_client, fake_replicate):
        _generate(test_client, prompt="   a red fox icon   ")
        assert fake_replicate.created_predictions[0]["input"]["prompt"] == "a red fox icon"

    def test_user_header_is_recorded(self, test_client, repository):
        resp = _generate(test_client, headers={"X-User-Id": "alice"})
        assert repository.find_by_id(resp.json()["data"]["id"]).user_id == "alice"

    def test_missing_prompt(self, test_client):
        resp = test_client.post("/api/generate-image", json={})
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert "prompt" in body["error"]["message"]

    def test_invalid_size(self, test_client):
        resp = _generate(test_client, size="invalid-size")
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_prompt_too_long(self, test_client):
        resp = _generate(test_client, prompt="x" * 4001)
        assert resp.status_code == 400

    def test_rate_limited(self, test_client, fake_replicate):
        fake_replicate.create_status_code = 429
        resp = _generate(test_client)
        assert resp.status_code == 429
        assert "rate limit" in resp.json()["error"]["message"]

    def test_provider_failure_is_recorded(self, test_client, fake_replicate, repository):
        fake_replicate.final_status = "failed"
        resp = _generate(test_client)

        assert resp.status_code == 502
        assert resp.json()["error"]["status_code"] == 502
        assert [r.status for r in repository.find_all()] == ["failed"]


class TestGenerateIconSet:
    """Test POST /api/icons/generate."""

    def test_generates_four_icons(self, test_client):
        resp = test_client.post(
            "/api/icons/generate",
            json={"prompt": "coffee cup", "style": "Cartoon", "colors": ["#6366F1"]},
        )
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["style"] == "Cartoon"
        assert len(data["icons"]) == 4
        icon = data["icons"][0]
        assert set(icon) == {"id", "url", "prompt"}
        assert "ONE single coffee cup icon only" in icon["prompt"]
        assert "#6366F1" in icon["prompt"]

    def test_response_lists_only_usable_colors(self, test_client):
        resp = test_client.post(
            "/api/icons/generate",
            json={"prompt": "coffee cup", "colors": ["#6366F1", "red", "#12"]},
        )
        assert resp.json()["data"]["colors"] == ["#6366F1"]

    def test_default_style(self, test_client):
        resp = test_client.post("/api/icons/generate", json={"prompt": "coffee cup"})
        assert resp.status_code == 201
        assert resp.json()["data"]["style"] == "Sticker"

    def test_unknown_style(self, test_client):
        resp = test_client.post(
            "/api/icons/generate", json={"prompt": "coffee cup", "style": "Watercolour"}
        )
        assert resp.status_code == 400

    def test_blank_prompt(self, test_client):
        resp = test_client.post("/api/icons/generate", json={"prompt": "   "})
        assert resp.status_code == 400

    def test_rate_limit_message(self, test_client, fake_replicate):
        fake_replicate.create_status_code = 429
        resp = test_client.post("/api/icons/generate", json={"prompt": "coffee cup"})
        assert resp.status_code == 429
        assert "6 requests per minute" in resp.json()["error"]["message"]


# ---------------------------------------------------------------------------
# Generation record endpoints.
# ---------------------------------------------------------------------------


class TestListGenerations:
    """Test GET /api/generations."""

    def test_empty_list(self, test_client):
        resp = test_client.get("/api/generations")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"] == []
        assert body["pagination"] == {"page": 1, "page_size": 20, "total": 0, "total_pages": 0}

    def test_pagination(self, test_client):
        for i in range(3):
            _generate(test_client, prompt=f"icon {i}")

        resp = test_client.get("/api/generations", params={"page": 2, "page_size": 2})
        body = resp.json()
        assert body["pagination"] == {"page": 2, "page_size": 2, "total": 3, "total_pages": 2}
        assert len(body["data"]) == 1

    def test_filter_by_status(self, test_client, fake_replicate):
        _generate(test_client)
        fake_replicate.final_status = "failed"
        _generate(test_client)

        resp = test_client.get("/api/generations", params={"status": "failed"})
        body = resp.json()
        assert body["pagination"]["total"] == 1
        assert body["data"][0]["status"] == "failed"

    def test_filter_by_user(self, test_client):
        _generate(test_client, headers={"X-User-Id": "alice"})
        _generate(test_client, headers={"X-User-Id": "bob"})

        resp = test_client.get("/api/generations", params={"user_id": "bob"})
        assert [r["user_id"] for r in resp.json()["data"]] == ["bob"]

    def test_invalid_page(self, test_client):
        assert test_client.get("/api/generations", params={"page": 0}).status_code == 400

    def test_invalid_page_size(self, test_client):
        assert test_client.get("/api/generations", params={"page_size": 101}).status_code == 400

    def test_invalid_status(self, test_client):
        assert test_client.get("/api/generations", params={"status": "done"}).status_code == 400


class TestGetGeneration:
    """Test GET /api/generations/{id}."""

    def test_get_existing(self, test_client):
        generation_id = _generate(test_client).json()["data"]["id"]
        resp = test_client.get(f"/api/generations/{generation_id}")
        assert resp.status_code == 200
        assert resp.json()["data"]["id"] == generation_id
        assert resp.json()["data"]["status"] == "success"

    def test_created_at_is_utc(self, test_client):
        generation_id = _generate(test_client).json()["data"]["id"]
        data = test_client.get(f"/api/generations/{generation_id}").json()["data"]
        assert data["created_at"].endswith("+00:00")

    def test_get_missing(self, test_client):
        resp = test_client.get("/api/generations/non-existent-id")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["message"] == "Image generation with ID non-existent-id not found"


class TestDownloadGeneration:
    """Test GET /api/generations/{id}/download."""

    def test_download_png(self, test_client):
        generation_id = _generate(test_client).json()["data"]["id"]
        resp = test_client.get(f"/api/generations/{generation_id}/download")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert f"icon-{generation_id}.png" in resp.headers["content-disposition"]
        assert resp.content.startswith(b"\x89PNG")

    def test_download_failed_generation(self, test_client, fake_replicate, repository):
        fake_replicate.final_status = "failed"
        _generate(test_client)
        failed_id = repository.find_all()[0].id

        resp = test_client.get(f"/api/generations/{failed_id}/download")
        assert resp.status_code == 400

    def test_download_missing(self, test_client):
        assert test_client.get("/api/generations/nope/download").status_code == 404


class TestDeleteGeneration:
    """Test DELETE /api/generations/{id}."""

    def test_delete_existing(self, test_client):
        generation_id = _generate(test_client).json()["data"]["id"]
        resp = test_client.delete(f"/api/generations/{generation_id}")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Generation deleted successfully"}
        assert test_client.get(f"/api/generations/{generation_id}").status_code == 404

    def test_delete_missing(self, test_client):
        resp = test_client.delete("/api/generations/nope")
        assert resp.status_code == 404
        assert resp.json()["success"] is False


class TestStats:
    """Test GET /api/stats."""

    def test_stats(self, test_client, fake_replicate):
        _generate(test_client)
        _generate(test_client, prompt="another icon")
        fake_replicate.final_status = "failed"
        _generate(test_client, prompt="third icon")

        data = test_client.get("/api/stats").json()["data"]
        assert data["total_generations"] == 3
        assert data["status_counts"] == {"success": 2, "failed": 1, "pending": 0}


# ---------------------------------------------------------------------------
# Middleware.
# ---------------------------------------------------------------------------


class ExplodingService:
    """Generation service whose statistics query fails unexpectedly."""

    def stats(self):
        raise RuntimeError("stats table missing")


class TestRateLimit:
    """Test the per-client limit on /api routes."""

    def test_requests_over_limit_are_rejected(self, test_client, monkeypatch):
        from iconforge.api.main import rate_limiter

        monkeypatch.setattr(rate_limiter, "max_requests", 3)
        statuses = [test_client.get("/api/health").status_code for _ in range(5)]
        assert statuses == [200, 200, 200, 429, 429]

    def test_rejection_uses_error_envelope(self, test_client, monkeypatch):
        from iconforge.api.main import rate_limiter

        monkeypatch.setattr(rate_limiter, "max_requests", 1)
        test_client.get("/api/health")
        resp = test_client.get("/api/health")

        assert resp.status_code == 429
        assert resp.json() == {
            "success": False,
            "error": {
                "message": "Too many requests, please try again later",
                "status_code": 429,
            },
        }
        assert resp.headers["RateLimit-Remaining"] == "0"
        assert "Retry-After" in resp.headers

    def test_headers_report_remaining(self, test_client, monkeypatch):
        from iconforge.api.main import rate_limiter

        monkeypatch.setattr(rate_limiter, "max_requests", 5)
        resp = test_client.get("/api/health")
        assert resp.headers["RateLimit-Limit"] == "5"
        assert resp.headers["RateLimit-Remaining"] == "4"

    def test_root_health_is_not_limited(self, test_client, monkeypatch):
        from iconforge.api.main import rate_limiter

        monkeypatch.setattr(rate_limiter, "max_requests", 1)
        statuses = [test_client.get("/health").status_code for _ in range(3)]
        assert statuses == [200, 200, 200]
        assert "RateLimit-Limit" not in test_client.get("/health").headers


class TestRequestLogging:
    """Test the request logging middleware on unhandled errors."""

    def test_unhandled_error_keeps_request_id_and_log(self, test_client, caplog):
        from iconforge.api.main import app, get_generation_service

        app.dependency_overrides[get_generation_service] = lambda: ExplodingService()
        client = TestClient(app, raise_server_exceptions=False)

        with caplog.at_level(logging.INFO, logger="iconforge.api.main"):
            resp = client.get("/api/stats")

        assert resp.status_code == 500
        assert resp.json()["error"]["message"] == "Internal server error"
        assert len(resp.headers["X-Request-ID"]) == 36
        assert any(
            "Request completed" in r.getMessage() and "-> 500" in r.getMessage()
            for r in caplog.records
        )
