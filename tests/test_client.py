"""
Tests for the Ollama client, driven through httpx.MockTransport

Tests cover:
- Health check caching and single-flight initialization
- Generation payload, retry with exponential backoff, timeout
- Unavailable backend and missing model errors
- Per-model metrics and cleanup
- Model pull and delete
"""
import asyncio
import json

import httpx
import pytest

from code_audit.core.config import OllamaSettings
from code_audit.core.errors import (
    GenerationFailedError,
    ModelNotFoundError,
    OllamaUnavailableError,
)
from code_audit.llm.client import OllamaClient

MODEL = "codellama:7b"


def tags_response(*names: str) -> httpx.Response:
    return httpx.Response(200, json={"models": [{"name": n} for n in names]})


def generate_response(text: str = "ok") -> httpx.Response:
    return httpx.Response(200, json={
        "model": MODEL,
        "response": text,
        "done": True,
        "prompt_eval_count": 10,
        "eval_count": 5,
    })


class Backend:
    """Routes requests and records what the client sent."""

    def __init__(self, models=(MODEL,)):
        self.models = list(models)
        self.calls = {"tags": 0, "generate": 0, "delete": 0}
        self.payloads = []
        self.generate_responses = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            self.calls["tags"] += 1
            return tags_response(*self.models)
        if request.url.path == "/api/generate":
            self.calls["generate"] += 1
            self.payloads.append(json.loads(request.content))
            if self.generate_responses:
                return self.generate_responses.pop(0)
            return generate_response()
        if request.url.path == "/api/delete":
            self.calls["delete"] += 1
            return httpx.Response(200)
        return httpx.Response(404)


def make_client(handler, **settings):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    client = OllamaClient(
        OllamaSettings(**settings), transport=httpx.MockTransport(handler), sleep=fake_sleep
    )
    return client, sleeps


# =============================================================================
# HEALTH
# =============================================================================


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_check_is_cached_within_interval(self):
        backend = Backend()
        client, _ = make_client(backend)

        assert await client.health_check() is True
        assert await client.health_check() is True
        assert backend.calls["tags"] == 1

        await client.health_check(force=True)
        assert backend.calls["tags"] == 2
        assert client.get_available_models() == [MODEL]
        assert client.last_health_check is not None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unreachable_backend_is_unhealthy(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(refuse)

        assert await client.health_check() is False
        assert client.is_healthy is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_initialize_shares_one_check(self):
        backend = Backend()
        client, _ = make_client(backend)

        await asyncio.gather(client.initialize(), client.initialize(), client.initialize())

        assert backend.calls["tags"] == 1
        assert client.is_healthy
        await client.aclose()

    @pytest.mark.asyncio
    async def test_initialize_raises_when_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(refuse)

        with pytest.raises(OllamaUnavailableError) as exc:
            await client.initialize()
        assert exc.value.recoverable is False
        await client.aclose()


# =============================================================================
# GENERATION
# =============================================================================


class TestGenerate:
    @pytest.mark.asyncio
    async def test_payload_and_result(self):
        backend = Backend()
        client, _ = make_client(backend)

        result = await client.generate(
            MODEL, "find bugs", system="you are an auditor", temperature=0.05, max_tokens=512
        )

        assert result.text == "ok"
        assert result.tokens_used == 15
        assert result.response_time_ms >= 0
        assert backend.payloads == [{
            "model": MODEL,
            "prompt": "find bugs",
            "stream": False,
            "system": "you are an auditor",
            "options": {"temperature": 0.05, "num_predict": 512},
        }]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(self):
        """
        Given a backend that fails twice then succeeds
        When generate is called with 3 attempts and a 1s base delay
        Then it sleeps 1s then 2s and records 2 failures out of 3 requests
        """
        backend = Backend()
        backend.generate_responses = [httpx.Response(500), httpx.Response(503)]
        client, sleeps = make_client(backend, retry_attempts=3, retry_delay=1.0)

        result = await client.generate(MODEL, "prompt")

        assert result.text == "ok"
        assert sleeps == [1.0, 2.0]
        assert backend.calls["generate"] == 3
        metrics = client.get_model_metrics(MODEL)
        assert metrics.requests == 3
        assert metrics.failures == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_generation_failed(self):
        backend = Backend()
        backend.generate_responses = [httpx.Response(500) for _ in range(3)]
        client, sleeps = make_client(backend, retry_attempts=3, retry_delay=0.5)

        with pytest.raises(GenerationFailedError) as exc:
            await client.generate(MODEL, "prompt")

        assert "after 3 attempts" in exc.value.message
        assert isinstance(exc.value.__cause__, httpx.HTTPStatusError)
        assert sleeps == [0.5, 1.0]
        assert client.get_model_metrics(MODEL).failures == 3
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_field_in_body_counts_as_failure(self):
        backend = Backend()
        backend.generate_responses = [httpx.Response(200, json={"error": "model crashed"})]
        client, _ = make_client(backend, retry_attempts=1)

        with pytest.raises(GenerationFailedError) as exc:
            await client.generate(MODEL, "prompt")
        assert "model crashed" in exc.value.message
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_attempt(self):
        async def slow(request):
            if request.url.path == "/api/tags":
                return tags_response(MODEL)
            await asyncio.sleep(1)
            return generate_response()

        client, _ = make_client(slow, timeout=0.05, retry_attempts=1)

        with pytest.raises(GenerationFailedError) as exc:
            await client.generate(MODEL, "prompt")
        assert "timed out" in exc.value.message
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unavailable_backend_consumes_no_retry(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, sleeps = make_client(refuse)

        with pytest.raises(OllamaUnavailableError):
            await client.generate(MODEL, "prompt")
        assert sleeps == []
        assert client.get_model_metrics(MODEL).requests == 0
        await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_model(self):
        backend = Backend()
        client, _ = make_client(backend)

        with pytest.raises(ModelNotFoundError) as exc:
            await client.generate("mystery:70b", "prompt")
        assert exc.value.details["available"] == [MODEL]
        assert backend.calls["generate"] == 0
        await client.aclose()


# =============================================================================
# METRICS
# =============================================================================


class TestMetrics:
    def test_latency_moving_average(self):
        client = OllamaClient()
        client._update_metrics(MODEL, 100.0, failed=False)
        client._update_metrics(MODEL, 200.0, failed=True)

        metrics = client.get_model_metrics(MODEL)
        assert metrics.avg_response_time == pytest.approx(120.0)
        assert metrics.total_duration == pytest.approx(300.0)
        assert metrics.success_rate == pytest.approx(0.5)

    def test_unknown_model_has_zero_metrics(self):
        metrics = OllamaClient().get_model_metrics("nothing")
        assert metrics.requests == 0
        assert metrics.last_used is None

    @pytest.mark.asyncio
    async def test_model_health_status(self):
        backend = Backend(models=[MODEL, "granite-code:8b"])
        client, _ = make_client(backend)
        await client.health_check()

        client._update_metrics(MODEL, 10.0, failed=True)
        client._update_metrics(MODEL, 10.0, failed=True)
        client._update_metrics(MODEL, 10.0, failed=False)

        assert client.get_model_health_status() == {MODEL: False, "granite-code:8b": True}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_select_best_model_prefers_reliable(self):
        backend = Backend(models=[MODEL, "granite-code:8b"])
        client, _ = make_client(backend)
        await client.health_check()
        client._update_metrics(MODEL, 100.0, failed=True)

        assert client.select_best_model([MODEL, "granite-code:8b"]) == "granite-code:8b"
        assert client.select_best_model([MODEL, "granite-code:8b"], consider_performance=False) == MODEL
        assert client.select_best_model(["absent:1b"]) is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_cleanup_resets_state(self):
        backend = Backend()
        client, _ = make_client(backend)
        await client.generate(MODEL, "prompt")

        client.cleanup()

        assert client.get_all_metrics() == {}
        assert client.get_available_models() == []
        assert client.is_healthy is False

        # Next call re-initializes
        await client.generate(MODEL, "prompt")
        assert backend.calls["tags"] == 2
        await client.aclose()


# =============================================================================
# MODEL MANAGEMENT
# =============================================================================


class TestModelManagement:
    @pytest.mark.asyncio
    async def test_ensure_model_pulls_then_refreshes(self):
        installed = []

        def handler(request):
            if request.url.path == "/api/pull":
                installed.append(json.loads(request.content)["model"])
                lines = [{"status": "pulling manifest"}, {"status": "success"}]
                return httpx.Response(200, content="\n".join(json.dumps(line) for line in lines).encode())
            if request.url.path == "/api/tags":
                return tags_response(*installed)
            return httpx.Response(404)

        client, _ = make_client(handler)

        assert await client.ensure_model(MODEL) is True
        assert installed == [MODEL]
        assert client.is_model_available(MODEL)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_ensure_model_reports_pull_error(self):
        def handler(request):
            if request.url.path == "/api/pull":
                return httpx.Response(200, content=b'{"error": "manifest unknown"}\n')
            return tags_response()

        client, _ = make_client(handler)

        assert await client.ensure_model("bogus:1b") is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_delete_model(self):
        backend = Backend()
        client, _ = make_client(backend)
        await client.health_check()

        assert await client.delete_model(MODEL) is True
        assert backend.calls["delete"] == 1
        assert not client.is_model_available(MODEL)
        await client.aclose()
