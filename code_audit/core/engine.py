"""
Audit orchestrator.

Validates requests, collapses concurrent identical requests onto one
in-flight audit, fans out to the category auditors and merges their
results into a single report.
"""
import asyncio
import hashlib
import logging
import platform
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..auditors import Auditor, create_all_auditors, create_auditor
from ..llm.client import OllamaClient
from ..llm.selector import ModelManager, create_strategy
from .config import AuditorSettings, ServerConfig
from .errors import (
    AuditError,
    AuditorUnavailableError,
    AuditTimeoutError,
    OllamaUnavailableError,
    RequestValidationError,
)
from .types import (
    AUDIT_CATEGORIES,
    FAST_MODE_CATEGORIES,
    MAX_CODE_SIZE,
    AuditRequest,
    AuditResult,
    AuditType,
    HealthCheckResult,
    Priority,
    sort_issues,
)

logger = logging.getLogger(__name__)


@dataclass
class ActiveAudit:
    """In-flight audit shared by every caller with the same fingerprint."""
    key: str
    task: asyncio.Task
    started_at: float
    timer: Optional[asyncio.TimerHandle] = None


class AuditOrchestrator:
    """Request-handling core behind every transport."""

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        client: Optional[OllamaClient] = None,
        model_manager: Optional[ModelManager] = None,
        auditors: Optional[Dict[AuditType, Auditor]] = None,
    ):
        self.config = config or ServerConfig()
        self.client = client or OllamaClient(self.config.ollama)
        self.model_manager = model_manager or ModelManager(
            create_strategy(self.config.models.selection_strategy, self.client.get_model_metrics)
        )
        for model_name, updates in self.config.models.overrides.items():
            self.model_manager.update_model_config(model_name, updates)

        self.auditors = (
            auditors if auditors is not None
            else create_all_auditors(self.config, self.client, self.model_manager)
        )
        self.active_audits: Dict[str, ActiveAudit] = {}
        self._started = time.monotonic()

    @property
    def request_timeout(self) -> float:
        return self.config.performance.request_timeout

    @property
    def max_concurrent_audits(self) -> int:
        return self.config.performance.max_concurrent_audits

    async def initialize(self) -> None:
        """Connect to the backend. An unreachable backend is logged, not fatal."""
        try:
            await self.client.initialize()
        except OllamaUnavailableError as e:
            logger.warning(f"{e.message}; audits will fail until Ollama is reachable")
        enabled = [t.value for t, a in self.auditors.items() if a.enabled]
        logger.info(f"Audit orchestrator ready with auditors: {', '.join(enabled)}")

    async def shutdown(self) -> None:
        for entry in list(self.active_audits.values()):
            if entry.timer:
                entry.timer.cancel()
            entry.task.cancel()
        self.active_audits.clear()
        await self.client.aclose()

    # =========================================================================
    # AUDIT
    # =========================================================================

    def validate_request(self, request: AuditRequest) -> None:
        if not request.code or not request.code.strip():
            raise RequestValidationError("Code is required and cannot be empty")
        if not request.language or not request.language.strip():
            raise RequestValidationError("Language is required and cannot be empty")

        size = len(request.code.encode("utf-8"))
        if size > MAX_CODE_SIZE:
            raise RequestValidationError(
                f"Code exceeds maximum size limit ({MAX_CODE_SIZE} bytes)",
                details={"size": size, "limit": MAX_CODE_SIZE},
            )

        valid_types = [t.value for t in AuditType]
        if request.audit_type not in valid_types:
            raise RequestValidationError(
                f"Unknown audit type: {request.audit_type}",
                details={"allowed": valid_types},
            )
        if request.priority not in [p.value for p in Priority]:
            raise RequestValidationError(f"Unknown priority: {request.priority}")
        if request.max_issues is not None and request.max_issues < 1:
            raise RequestValidationError("maxIssues must be a positive integer")

    @staticmethod
    def fingerprint(request: AuditRequest) -> str:
        digest = hashlib.sha256(request.code.encode("utf-8")).hexdigest()
        return f"{request.language}_{request.audit_type}_{request.priority}_{digest}"

    async def audit_code(self, request: AuditRequest) -> AuditResult:
        """Run (or join) the audit for this request, bounded by the request timeout.

        On timeout the in-flight entry is evicted and waiters get
        AuditTimeoutError; backend calls already in progress are left to
        finish on their own.
        """
        self.validate_request(request)
        key = self.fingerprint(request)
        loop = asyncio.get_running_loop()

        entry = self.active_audits.get(key)
        if entry is None:
            entry = self._start_audit(key, request)
        else:
            logger.info(f"Joining in-flight {request.audit_type} audit for {request.language} code")

        remaining = max(0.0, self.request_timeout - (loop.time() - entry.started_at))
        try:
            return await asyncio.wait_for(asyncio.shield(entry.task), timeout=remaining)
        except asyncio.TimeoutError:
            self._evict(key, entry)
            raise AuditTimeoutError(
                f"Audit timed out after {self.request_timeout}s",
                details={"auditType": request.audit_type, "language": request.language},
            )

    def _start_audit(self, key: str, request: AuditRequest) -> ActiveAudit:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run_audit(request))
        entry = ActiveAudit(key=key, task=task, started_at=loop.time())
        entry.timer = loop.call_later(self.request_timeout, self._expire, key, entry)
        self.active_audits[key] = entry
        task.add_done_callback(lambda t: self._on_audit_done(key, entry, t))
        return entry

    def _evict(self, key: str, entry: ActiveAudit) -> None:
        if self.active_audits.get(key) is entry:
            del self.active_audits[key]
        if entry.timer:
            entry.timer.cancel()

    def _expire(self, key: str, entry: ActiveAudit) -> None:
        if self.active_audits.get(key) is entry:
            logger.warning(f"Evicting audit still running after {self.request_timeout}s")
        self._evict(key, entry)

    def _on_audit_done(self, key: str, entry: ActiveAudit, task: asyncio.Task) -> None:
        self._evict(key, entry)
        if task.cancelled():
            return
        # Retrieve the exception so orphaned tasks do not warn on garbage collection
        error = task.exception()
        if error is not None:
            logger.debug(f"Audit task finished with error: {error}")

    async def _run_audit(self, request: AuditRequest) -> AuditResult:
        started = time.perf_counter()
        audit_type = AuditType(request.audit_type)

        if audit_type == AuditType.ALL:
            results = await self._run_all(request)
        elif Priority(request.priority) == Priority.FAST:
            results = await self._run_fan_out(FAST_MODE_CATEGORIES, request)
        else:
            results = [await self._run_single(audit_type, request)]

        result = self.merge_results(results, request.max_issues)
        if self.config.logging.enable_metrics:
            logger.info(
                f"Audit completed: type={request.audit_type} language={request.language} "
                f"issues={len(result.issues)} model={result.model} "
                f"duration={(time.perf_counter() - started) * 1000:.0f}ms"
            )
        return result

    async def _run_all(self, request: AuditRequest) -> List[AuditResult]:
        return await self._run_fan_out(AUDIT_CATEGORIES, request)

    async def _run_fan_out(self, categories: List[AuditType], request: AuditRequest) -> List[AuditResult]:
        """Run the enabled auditors in declared order, max_concurrent_audits at a time."""
        auditors = []
        for category in categories:
            auditor = self.auditors.get(category)
            if auditor is None or not auditor.enabled:
                logger.debug(f"Skipping disabled auditor: {category.value}")
                continue
            auditors.append(auditor)
        if not auditors:
            raise AuditorUnavailableError(
                "No enabled auditors for this request",
                details={"categories": [c.value for c in categories]},
            )

        results: List[AuditResult] = []
        chunk_size = self.max_concurrent_audits
        for start in range(0, len(auditors), chunk_size):
            chunk = auditors[start:start + chunk_size]
            if self.config.logging.enable_tracing:
                logger.debug(f"Dispatching auditors: {[a.category.value for a in chunk]}")
            results.extend(await asyncio.gather(
                *(a.audit(request.for_category(a.category)) for a in chunk)
            ))
        return results

    async def _run_single(self, audit_type: AuditType, request: AuditRequest) -> AuditResult:
        auditor = self.auditors.get(audit_type)
        if auditor is None or not auditor.enabled:
            raise AuditorUnavailableError(
                f"Auditor for {audit_type.value} is not available",
                details={"auditType": audit_type.value},
            )
        return await auditor.audit(request.for_category(audit_type))

    @staticmethod
    def merge_results(results: List[AuditResult], max_issues: Optional[int] = None) -> AuditResult:
        """Combine per-auditor results.

        Summary counts cover every finding; after truncation the issue list
        and suggestion buckets only hold the retained issues.
        """
        if not results:
            raise AuditError("No audit results to merge")
        if len(results) == 1:
            return results[0]

        merged = AuditResult(request_id=results[0].request_id)
        for result in results:
            merged.issues.extend(result.issues)
            merged.summary.add(result.summary)
            merged.coverage.take_max(result.coverage)
            merged.suggestions.extend(result.suggestions)
            merged.metrics.add(result.metrics)

        merged.issues = sort_issues(merged.issues)
        if max_issues and len(merged.issues) > max_issues:
            merged.issues = merged.issues[:max_issues]
            merged.suggestions.restrict_to(merged.issues)

        merged.model = ", ".join(dict.fromkeys(r.model for r in results))
        return merged

    # =========================================================================
    # HEALTH / MODELS / CONFIG
    # =========================================================================

    async def health_check(self) -> HealthCheckResult:
        backend_ok = await self.client.health_check()
        models = self.client.get_available_models()

        auditor_checks = {
            t.value: t in self.auditors and self.auditors[t].enabled for t in AUDIT_CATEGORIES
        }
        missing = [
            name for name, settings in self.config.auditors.items()
            if settings.enabled and AuditType(name) not in self.auditors
        ]

        if not backend_ok:
            status = "unhealthy"
        elif not models or missing:
            status = "degraded"
        else:
            status = "healthy"

        return HealthCheckResult(
            status=status,
            checks={
                "backend": {
                    "status": backend_ok,
                    "host": self.client.host,
                    "models": models,
                    "modelHealth": self.client.get_model_health_status(),
                    "lastCheck": self.client.last_health_check,
                },
                "auditors": auditor_checks,
                "system": {
                    "pythonVersion": platform.python_version(),
                    "platform": sys.platform,
                    "activeAudits": len(self.active_audits),
                    "diskFreeBytes": self._disk_free(),
                },
            },
            uptime=time.monotonic() - self._started,
            version=self.config.version,
        )

    @staticmethod
    def _disk_free() -> Optional[int]:
        try:
            return shutil.disk_usage(Path.home()).free
        except OSError:
            return None

    def list_models(self) -> Dict[str, Any]:
        models = []
        for config in self.model_manager.get_all_models():
            entry = config.to_dict()
            entry["available"] = self.client.is_model_available(config.name)
            entry["metrics"] = self.client.get_model_metrics(config.name).to_dict()
            models.append(entry)
        return {
            "models": models,
            "installed": self.client.get_available_models(),
            "recommended": self.model_manager.get_recommended_models(),
            "selectionStrategy": self.model_manager.strategy.name,
        }

    def update_config(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Apply auditor, model and strategy changes live; backend changes need a restart."""
        applied: Dict[str, Any] = {}
        unknown: List[str] = []
        messages: List[str] = []

        for name, changes in (updates.get("auditors") or {}).items():
            if name not in [t.value for t in AUDIT_CATEGORIES]:
                unknown.append(name)
                continue
            self._update_auditor(AuditType(name), changes or {})
            applied.setdefault("auditors", []).append(name)

        for model_name, changes in (updates.get("models") or {}).items():
            self.model_manager.update_model_config(model_name, changes or {})
            applied.setdefault("models", []).append(model_name)

        strategy_name = updates.get("selectionStrategy", updates.get("selection_strategy"))
        if strategy_name:
            try:
                strategy = create_strategy(strategy_name, self.client.get_model_metrics)
            except ValueError as e:
                raise RequestValidationError(str(e)) from e
            self.model_manager.set_strategy(strategy)
            self.config.models.selection_strategy = strategy.name
            applied["selectionStrategy"] = strategy.name

        backend = updates.get("backend", updates.get("ollama"))
        if backend:
            messages.append("Backend configuration changes require restart")

        if applied:
            logger.info(f"Configuration updated: {applied}")
        return {
            "success": True,
            "applied": applied,
            "unknownAuditors": unknown,
            "requiresRestart": bool(backend),
            "message": "; ".join(messages) or "Configuration updated",
        }

    def _update_auditor(self, audit_type: AuditType, changes: Dict[str, Any]) -> None:
        auditor = self.auditors.get(audit_type)
        try:
            if auditor is None:
                settings = AuditorSettings().merged(changes)
                auditor = create_auditor(audit_type, settings, self.client, self.model_manager)
                self.auditors[audit_type] = auditor
            else:
                auditor.update_settings(changes)
        except ValidationError as e:
            raise RequestValidationError(
                f"Invalid settings for {audit_type.value} auditor",
                details=[err["msg"] for err in e.errors()],
            ) from e
        self.config.auditors[audit_type.value] = auditor.settings
