"""
Ollama HTTP client.

Features:
- Cached health checks against /api/tags
- Generation with a hard per-call timeout and tenacity exponential-backoff retry
- Per-model request/failure counters and EMA latency
- Model pull (streamed progress) and delete
"""
import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt, wait_exponential

from ..core.config import OllamaSettings
from ..core.errors import GenerationFailedError, ModelNotFoundError, OllamaUnavailableError
from ..core.types import GenerationResult, ModelMetrics, utc_now
from .selector import metrics_score

logger = logging.getLogger(__name__)

# Smoothing factor for the latency moving average
EMA_ALPHA = 0.2
UNHEALTHY_FAILURE_RATIO = 0.5


class OllamaClient:
    """Async wrapper around the Ollama REST API."""

    def __init__(
        self,
        settings: Optional[OllamaSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.settings = settings or OllamaSettings()
        self._http = httpx.AsyncClient(
            base_url=self.settings.host,
            timeout=httpx.Timeout(self.settings.timeout),
            transport=transport,
        )
        self._available_models: List[str] = []
        self._metrics: Dict[str, ModelMetrics] = {}
        self._is_healthy = False
        self._initialized = False
        self._init_task: Optional[asyncio.Task] = None
        self._last_check_monotonic: Optional[float] = None
        self.last_health_check: Optional[str] = None

        self._retry_sleep = sleep or asyncio.sleep

    @property
    def host(self) -> str:
        return self.settings.host

    @property
    def is_healthy(self) -> bool:
        return self._is_healthy

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Run the first health check. Concurrent callers share one attempt."""
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._do_initialize())
        try:
            await asyncio.shield(self._init_task)
        finally:
            if self._init_task is not None and self._init_task.done():
                self._init_task = None

    async def _do_initialize(self) -> None:
        if not await self.health_check(force=True):
            raise OllamaUnavailableError(
                f"Failed to initialize Ollama client at {self.host}",
                details={"host": self.host},
            )
        self._initialized = True
        logger.info(f"Ollama client initialized with {len(self._available_models)} models")

    def cleanup(self) -> None:
        """Forget metrics and availability; the next call re-initializes."""
        self._metrics.clear()
        self._available_models = []
        self._is_healthy = False
        self._initialized = False
        self._last_check_monotonic = None
        self.last_health_check = None

    async def aclose(self) -> None:
        self.cleanup()
        await self._http.aclose()

    # =========================================================================
    # HEALTH & AVAILABILITY
    # =========================================================================

    async def health_check(self, force: bool = False) -> bool:
        """Probe the backend, reusing the last answer within the check interval."""
        now = time.monotonic()
        if (
            not force
            and self._last_check_monotonic is not None
            and now - self._last_check_monotonic < self.settings.health_check_interval
        ):
            return self._is_healthy

        self._last_check_monotonic = now
        self.last_health_check = utc_now()
        try:
            await self.refresh_available_models()
            self._is_healthy = True
        except OllamaUnavailableError as e:
            self._is_healthy = False
            logger.warning(f"Ollama health check failed: {e.message}")
        return self._is_healthy

    async def refresh_available_models(self) -> List[str]:
        try:
            response = await self._http.get("/api/tags", timeout=self.settings.list_timeout)
            response.raise_for_status()
            models = response.json().get("models", [])
        except (httpx.HTTPError, ValueError) as e:
            raise OllamaUnavailableError(
                f"Failed to refresh model list: {str(e) or type(e).__name__}",
                details={"host": self.host},
            ) from e

        self._available_models = [m["name"] for m in models if m.get("name")]
        logger.debug(f"Found {len(self._available_models)} available models: {self._available_models}")
        return list(self._available_models)

    def is_model_available(self, model_name: str) -> bool:
        return model_name in self._available_models

    def get_available_models(self) -> List[str]:
        return list(self._available_models)

    # =========================================================================
    # GENERATION
    # =========================================================================

    async def generate(
        self,
        model: str,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> GenerationResult:
        """Generate a completion, retrying failed attempts with backoff.

        Raises:
            OllamaUnavailableError: backend unreachable (no retry consumed)
            ModelNotFoundError: model missing from the last-known model list
            GenerationFailedError: every attempt failed
        """
        if not self._initialized:
            await self.initialize()
        elif not self._is_healthy:
            if not await self.health_check(force=True):
                raise OllamaUnavailableError(
                    "Ollama service is not available", details={"host": self.host}
                )

        if not self.is_model_available(model):
            raise ModelNotFoundError(
                f"Model '{model}' is not available",
                details={"model": model, "available": self.get_available_models()},
            )

        attempts = self.settings.retry_attempts
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.settings.retry_delay),
            before_sleep=self._log_retry,
            sleep=self._retry_sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._timed_generate(
                        model, prompt, system, temperature, top_p, max_tokens
                    )
        except RetryError as e:
            last = e.last_attempt.exception()
            raise GenerationFailedError(
                f"Failed to generate response after {attempts} attempts: "
                f"{str(last) or type(last).__name__}",
                details={"model": model, "attempts": attempts},
            ) from last
        return result

    async def _timed_generate(
        self,
        model: str,
        prompt: str,
        system: Optional[str],
        temperature: Optional[float],
        top_p: Optional[float],
        max_tokens: Optional[int],
    ) -> GenerationResult:
        """One attempt under the hard timeout; every outcome lands in the metrics."""
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self._execute_generate(model, prompt, system, temperature, top_p, max_tokens),
                timeout=self.settings.timeout,
            )
        except asyncio.TimeoutError as e:
            self._update_metrics(model, (time.perf_counter() - started) * 1000, failed=True)
            raise TimeoutError(f"request timed out after {self.settings.timeout}s") from e
        except Exception:
            self._update_metrics(model, (time.perf_counter() - started) * 1000, failed=True)
            raise

        result.response_time_ms = (time.perf_counter() - started) * 1000
        self._update_metrics(model, result.response_time_ms, failed=False)
        return result

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"Ollama request failed (attempt {retry_state.attempt_number}/"
            f"{self.settings.retry_attempts}), retrying in {retry_state.next_action.sleep}s: "
            f"{str(error) or type(error).__name__}"
        )

    async def _execute_generate(
        self,
        model: str,
        prompt: str,
        system: Optional[str],
        temperature: Optional[float],
        top_p: Optional[float],
        max_tokens: Optional[int],
    ) -> GenerationResult:
        options = {
            k: v
            for k, v in (("temperature", temperature), ("top_p", top_p), ("num_predict", max_tokens))
            if v is not None
        }
        payload: Dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
        if system:
            payload["system"] = system
        if options:
            payload["options"] = options

        response = await self._http.post("/api/generate", json=payload)
        response.raise_for_status()
        data = response.json()
        if data.get("error"):
            raise RuntimeError(data["error"])

        return GenerationResult(
            text=data.get("response", ""),
            model=model,
            created_at=data.get("created_at"),
            done=data.get("done", True),
            total_duration=data.get("total_duration"),
            load_duration=data.get("load_duration"),
            prompt_eval_count=data.get("prompt_eval_count"),
            eval_count=data.get("eval_count"),
            eval_duration=data.get("eval_duration"),
        )

    # =========================================================================
    # METRICS
    # =========================================================================

    def _update_metrics(self, model: str, duration_ms: float, failed: bool) -> None:
        metrics = self._metrics.setdefault(model, ModelMetrics())
        metrics.requests += 1
        if failed:
            metrics.failures += 1
        metrics.total_duration += duration_ms
        if metrics.requests == 1:
            metrics.avg_response_time = duration_ms
        else:
            metrics.avg_response_time = (
                metrics.avg_response_time * (1 - EMA_ALPHA) + duration_ms * EMA_ALPHA
            )
        metrics.last_used = utc_now()

    def get_model_metrics(self, model_name: str) -> ModelMetrics:
        return self._metrics.get(model_name) or ModelMetrics()

    def get_all_metrics(self) -> Dict[str, Dict[str, Any]]:
        return {name: m.to_dict() for name, m in self._metrics.items()}

    def select_best_model(
        self, candidates: List[str], consider_performance: bool = True
    ) -> Optional[str]:
        """Pick the available candidate with the best track record."""
        available = [m for m in candidates if self.is_model_available(m)]
        if not available:
            return None
        if not consider_performance or len(available) == 1:
            return available[0]

        best_model, best_score = available[0], -1.0
        for model in available:
            score = metrics_score(self._metrics.get(model))
            if score > best_score:
                best_model, best_score = model, score
        return best_model

    def get_model_health_status(self) -> Dict[str, bool]:
        status = {}
        for model in self._available_models:
            m = self.get_model_metrics(model)
            status[model] = m.requests == 0 or m.failures / m.requests < UNHEALTHY_FAILURE_RATIO
        return status

    # =========================================================================
    # MODEL MANAGEMENT
    # =========================================================================

    async def ensure_model(self, model_name: str) -> bool:
        """Pull a model unless it is already installed."""
        if self.is_model_available(model_name):
            return True

        logger.info(f"Pulling model: {model_name}")
        try:
            async with self._http.stream(
                "POST",
                "/api/pull",
                json={"model": model_name, "stream": True},
                timeout=self.settings.pull_timeout,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    progress = json.loads(line)
                    if progress.get("error"):
                        raise RuntimeError(progress["error"])
                    logger.debug(f"Pull {model_name}: {progress.get('status')}")
            await self.refresh_available_models()
        except (httpx.HTTPError, ValueError, RuntimeError, OllamaUnavailableError) as e:
            logger.error(f"Failed to pull model {model_name}: {e}")
            return False

        return self.is_model_available(model_name)

    async def delete_model(self, model_name: str) -> bool:
        try:
            response = await self._http.request(
                "DELETE", "/api/delete", json={"model": model_name}
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to delete model {model_name}: {e}")
            return False

        if model_name in self._available_models:
            self._available_models.remove(model_name)
        return True
