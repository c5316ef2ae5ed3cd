# ─────────────────────────────────────────────────────────────────────────────
# Generate Endpoint Tests — POST /api/generate
# ─────────────────────────────────────────────────────────────────────────────
# The provider and quota are doubles (see conftest.py); these tests cover
# status mapping, headers, and body shape at the HTTP boundary.
# ─────────────────────────────────────────────────────────────────────────────

import time

import pytest
from dirty_equals import IsStr

from ps2cam.config import Settings
from ps2cam.exceptions import (
    AuthenticationError,
    GenerationTimeoutError,
    NoSubjectDetectedError,
    RetriesExhaustedError,
    SubmissionError,
)
from ps2cam.services.generation import GenerationOrchestrator
from ps2cam.services.quota import RateLimitDecision

PHOTO_URL = "https://uploads.example.com/selfie.jpg"
RESULT_URL = "https://replicate.delivery/pbxt/abc123/out-0.png"
BODY = {"imageUrl": PHOTO_URL}


class TestSuccess:
    def test_returns_result_object(self, client):
        response = client.post("/api/generate", json=BODY)

        assert response.status_code == 200
        assert response.json() == {"result": RESULT_URL}

    def test_list_shape_for_legacy_clients(self, client):
        response = client.post("/api/generate", json=BODY, headers={"X-Result-Shape": "list"})

        assert response.json() == {"result": [RESULT_URL]}

    def test_bare_shape(self, client):
        response = client.post("/api/generate", json=BODY, headers={"X-Result-Shape": "bare"})

        assert response.json() == RESULT_URL

    def test_unknown_shape_falls_back_to_object(self, client):
        response = client.post("/api/generate", json=BODY, headers={"X-Result-Shape": "xml"})

        assert response.json() == {"result": RESULT_URL}

    def test_optional_fields_reach_the_model(self, client, mock_backend):
        client.post(
            "/api/generate",
            json={**BODY, "prompt": "a wizard", "style": "Clay", "prompt_strength": 7, "negative_prompt": "hat"},
        )

        _, model_input = mock_backend.submit.await_args.args
        assert model_input["style"] == "Clay"
        assert model_input["prompt_strength"] == 7
        assert model_input["prompt"].startswith("a wizard PS2 era")
        assert model_input["negative_prompt"].startswith("hat high resolution")

    def test_no_quota_headers_when_quota_disabled(self, client):
        response = client.post("/api/generate", json=BODY)

        assert "X-RateLimit-Limit" not in response.headers

    def test_quota_headers_when_enforced(self, client, mock_quota):
        mock_quota.check_and_consume.return_value = RateLimitDecision(allowed=True, limit=3, remaining=2)

        response = client.post("/api/generate", json=BODY)

        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "2"

    def test_request_id_is_echoed(self, client):
        response = client.post("/api/generate", json=BODY, headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"
        assert response.headers["X-Response-Time-Ms"] == IsStr(regex=r"\d+(\.\d+)?")

    def test_forwarded_client_is_the_quota_identity(self, client, mock_quota):
        client.post("/api/generate", json=BODY, headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        mock_quota.check_and_consume.assert_awaited_once_with("203.0.113.7")


class TestRateLimited:
    def test_429_with_retry_after(self, client, mock_quota, mock_backend):
        mock_quota.check_and_consume.return_value = RateLimitDecision(
            allowed=False, limit=3, remaining=0, reset_at=time.time() + 3600
        )

        response = client.post("/api/generate", json=BODY)

        assert response.status_code == 429
        assert response.json() == {"error": "Too many uploads in 1 day. Please try again after 24 hours."}
        assert 3500 <= int(response.headers["Retry-After"]) <= 3601
        assert response.headers["X-RateLimit-Remaining"] == "0"
        mock_backend.submit.assert_not_awaited()


class TestErrorMapping:
    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (NoSubjectDetectedError("No face detected in image"), 400),
            (AuthenticationError(), 401),
            (SubmissionError(422, "invalid input", "face-to-many", "a07f"), 422),
            (SubmissionError(None, "connection refused"), 502),
            (RetriesExhaustedError(3, TimeoutError()), 503),
            (GenerationTimeoutError(60, 5.0), 504),
        ],
    )
    def test_status_codes(self, client, mock_backend, error, status):
        mock_backend.await_terminal.side_effect = error

        response = client.post("/api/generate", json=BODY)

        assert response.status_code == status
        assert response.json()["error"] == error.message

    def test_no_face_message(self, client, mock_backend):
        mock_backend.await_terminal.side_effect = NoSubjectDetectedError("No face detected")

        data = client.post("/api/generate", json=BODY).json()

        assert data == {
            "error": "No face detected in the uploaded image. Please try a different image with a clear face."
        }

    def test_missing_token_is_a_configuration_error(self, client, registry, mock_quota, mock_backend):
        client.app.state.orchestrator = GenerationOrchestrator(
            registry, mock_quota, mock_backend, Settings(replicate_api_token="")
        )

        response = client.post("/api/generate", json=BODY)

        assert response.status_code == 500
        assert response.json()["error"] == "Server configuration error: API key is missing"
        mock_backend.submit.assert_not_awaited()


class TestValidation:
    def test_missing_image_url(self, client):
        response = client.post("/api/generate", json={"prompt": "a knight"})

        assert response.status_code == 422
        assert response.json() == {"error": "Invalid request body", "details": IsStr(regex=r".*imageUrl.*")}

    @pytest.mark.parametrize("image_url", ["ftp://example.com/a.jpg", "not a url", "/relative/path.png"])
    def test_non_http_image_url(self, client, image_url):
        response = client.post("/api/generate", json={"imageUrl": image_url})

        assert response.status_code == 422

    def test_strength_out_of_range(self, client):
        response = client.post("/api/generate", json={**BODY, "denoising_strength": 1.5})

        assert response.status_code == 422
