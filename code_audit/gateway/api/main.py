"""
REST API Gateway for Code Audit
Exposes the same operations as the MCP tools over HTTP
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Literal, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ...core.engine import AuditOrchestrator
from ...core.errors import (
    AuditError,
    AuditTimeoutError,
    OllamaUnavailableError,
    RequestValidationError,
)
from ...core.types import AuditRequest

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (RequestValidationError, 422),
    (AuditTimeoutError, 504),
    (OllamaUnavailableError, 503),
]


# Request models
class AuditContextBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    framework: Optional[str] = None
    environment: Optional[Literal["production", "development", "testing"]] = None
    performance_critical: bool = Field(False, alias="performanceCritical")
    team_size: Optional[int] = Field(None, alias="teamSize")
    project_type: Optional[str] = Field(None, alias="projectType")
    language_version: Optional[str] = Field(None, alias="languageVersion")


class AuditCodeBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    language: str
    audit_type: str = Field("all", alias="auditType")
    file: Optional[str] = None
    context: Optional[AuditContextBody] = None
    priority: str = "thorough"
    max_issues: Optional[int] = Field(None, alias="maxIssues", ge=1)
    include_fix_suggestions: bool = Field(True, alias="includeFixSuggestions")


class ConfigUpdateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auditors: Optional[Dict[str, Dict[str, Any]]] = None
    models: Optional[Dict[str, Dict[str, Any]]] = None
    selection_strategy: Optional[str] = Field(None, alias="selectionStrategy")
    backend: Optional[Dict[str, Any]] = None


def _status_for(error: AuditError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def create_app(orchestrator: AuditOrchestrator) -> FastAPI:
    """Build the HTTP app around an already-constructed orchestrator."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.initialize()
        yield
        await orchestrator.shutdown()

    app = FastAPI(
        title="Code Audit API",
        description="Local code audits through Ollama models",
        version=orchestrator.config.version,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuditError)
    async def audit_error_handler(request: Request, exc: AuditError):
        status = _status_for(exc)
        if status >= 500:
            logger.error(f"{request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    # Endpoints
    @app.get("/health")
    async def health():
        result = await orchestrator.health_check()
        return JSONResponse(
            status_code=200 if result.status != "unhealthy" else 503,
            content=result.to_dict(),
        )

    @app.post("/api/audit")
    async def audit_code(body: AuditCodeBody):
        """Run an audit and return the merged result"""
        request = AuditRequest.from_dict(body.model_dump(by_alias=True))
        result = await orchestrator.audit_code(request)
        return result.to_dict(include_suggestions=request.include_fix_suggestions)

    @app.get("/api/models")
    async def list_models():
        return orchestrator.list_models()

    @app.post("/api/config")
    async def update_config(body: ConfigUpdateBody):
        updates = body.model_dump(by_alias=True, exclude_none=True)
        if not updates:
            raise HTTPException(status_code=400, detail="No configuration changes supplied")
        return orchestrator.update_config(updates)

    return app
