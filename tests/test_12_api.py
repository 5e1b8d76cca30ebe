"""
Tests for the HTTP API.

The process-wide RouterContext is replaced through
app.dependency_overrides, so each test drives its own scripted context.

Tests cover:
- /health payload
- Summaries, speech, transcription happy paths
- Error code to HTTP status mapping (400/401/402/502/500)
- Request validation (422)
- Provider, key, usage and segment endpoints
- /metrics endpoint
"""
import pytest
from fastapi.testclient import TestClient

from provider_router import __version__
from provider_router.api.dependencies import get_context
from provider_router.main import create_app

URL = "https://example.com/article"
SEGMENTS = [{"id": "s1", "text": "one two three four five"}]


@pytest.fixture
def api(make_context):
    """Build (client, context) for a scripted context."""

    def build(raw=None, env=None):
        context = make_context(raw, env=env)
        app = create_app()
        app.dependency_overrides[get_context] = lambda: context
        return TestClient(app), context

    return build


class TestHealth:
    def test_health(self, api):
        client, _ = api()
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == __version__
        assert data["provider"] == "openai_paid"
        assert data["dry_run"] is False
        assert data["remaining_tokens"] == 1_200_000
        assert data["cache"]["size"] == 0

    def test_metrics(self, api):
        client, _ = api()
        response = client.get("/metrics")
        assert response.status_code == 200


class TestSummaries:
    def test_summarise(self, api, book):
        book.succeed("ollama", "api summary")
        client, _ = api()

        response = client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["summaries"] == [{"id": "s1", "summary": "api summary"}]
        assert data["usage"]["cumulativeTotalTokens"] == 15

    def test_second_call_cached(self, api, book):
        book.succeed("ollama")
        client, _ = api()

        client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})
        client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})

        assert book.calls == ["ollama"]

    def test_empty_segments_rejected(self, api):
        client, _ = api()
        response = client.post("/v1/summaries", json={"url": URL, "segments": []})
        assert response.status_code == 422

    def test_all_providers_failed(self, api):
        client, _ = api({"routing": {"provider_order": ["ollama"], "retry_limit": 0}})

        response = client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})

        assert response.status_code == 502
        data = response.json()
        assert data["ok"] is False
        assert data["error"] == "ALL_PROVIDERS_FAILED"
        assert data["details"]["attempts"][0]["provider"] == "ollama"

    def test_no_free_providers(self, api):
        client, _ = api({"routing": {"provider_order": ["openai_paid"], "disable_paid": True}})
        response = client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})
        assert response.status_code == 502
        assert response.json()["error"] == "NO_FREE_PROVIDERS"

    def test_missing_text(self, api):
        client, _ = api()
        response = client.post("/v1/summaries", json={"url": URL, "segments": [{"id": "s1"}]})
        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_INPUT"

    def test_unexpected_error_hidden(self, api, monkeypatch):
        client, context = api()

        async def explode(*args, **kwargs):
            raise RuntimeError("secret detail")

        monkeypatch.setattr(context, "summarise", explode)
        response = client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "INTERNAL_ERROR"
        assert "secret detail" not in response.text
        assert data["request_id"]


class TestSpeech:
    def test_synthesise(self, api):
        client, _ = api()

        response = client.post("/v1/speech", json={"text": "Hello there."})

        assert response.status_code == 200
        assert response.headers["X-Chunks"] == "1"
        assert response.headers["X-Request-Id"]
        data = response.json()
        assert data["audio"] == {"base64": "PDA+", "mimeType": "audio/mpeg"}
        assert data["provider"] == "openai_paid"
        assert data["plan"]["deliveredTokenCount"] == 3

    def test_missing_key_is_401(self, api):
        client, _ = api(env={})
        response = client.post("/v1/speech", json={"text": "Hello there."})
        assert response.status_code == 401
        assert response.json()["details"] == {"provider": "openai_paid"}

    def test_budget_is_402(self, api):
        client, _ = api({"routing": {"max_monthly_tokens": 1}})
        response = client.post("/v1/speech", json={"text": "Hello there."})
        assert response.status_code == 402
        assert response.json()["error"] == "BUDGET_EXCEEDED"

    def test_blank_text_is_400(self, api):
        client, _ = api()
        response = client.post("/v1/speech", json={"text": "   "})
        assert response.status_code == 400

    def test_transcribe(self, api):
        client, _ = api()
        response = client.post("/v1/transcriptions", json={"audio_b64": "aGVsbG8="})
        assert response.status_code == 200
        assert response.json()["text"] == "transcribed text"


class TestManagement:
    def test_providers(self, api):
        client, _ = api({"routing": {"provider_order": ["ollama", "gemini_free"]}})
        data = client.get("/v1/providers").json()

        assert data["active"] == "openai_paid"
        assert data["order"] == ["ollama", "gemini_free"]
        assert {"id": "ollama", "label": "Ollama (Local)", "requiresApiKey": False} in data["providers"]
        assert data["states"] == {}

    def test_provider_states_after_summary(self, api, book):
        client, _ = api({"routing": {"provider_order": ["ollama"]}})
        book.succeed("ollama", prompt=4, completion=2)

        client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})
        data = client.get("/v1/providers").json()

        assert data["states"]["ollama"]["calls"] == 1
        assert data["states"]["ollama"]["totalTokens"] == 6
        assert data["states"]["ollama"]["circuitOpen"] is False

    def test_switch_provider(self, api):
        client, context = api()
        data = client.put("/v1/provider", json={"provider": "ollama"}).json()
        assert data == {"ok": True, "provider": "ollama", "requiresApiKey": False}
        assert context.active_provider == "ollama"

    def test_keys(self, api):
        client, _ = api()

        stored = client.put("/v1/keys", json={"api_key": "sk-abcdef123456", "provider": "gemini_free"}).json()
        fetched = client.get("/v1/keys", params={"provider": "gemini_free"}).json()

        assert stored["maskedKey"] == "sk-a…3456"
        assert fetched["hasKey"] is True
        assert "sk-abcdef123456" not in str(fetched)

    def test_usage_and_reset(self, api, book):
        book.succeed("ollama")
        client, _ = api()
        client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})

        assert client.get("/v1/usage").json()["usage"]["cumulativeTotalTokens"] == 15
        reset = client.post("/v1/usage/reset").json()
        assert reset["usage"]["cumulativeTotalTokens"] == 0

    def test_segments(self, api, book):
        book.succeed("ollama")
        client, _ = api()
        client.post("/v1/summaries", json={"url": URL, "segments": SEGMENTS})

        data = client.post("/v1/segments", json={"url": URL, "segments": []}).json()

        assert data == {"ok": True, "removed": 1}
