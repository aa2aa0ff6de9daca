"""
Shared fixtures: an in-memory stand-in for the Ollama client and an
orchestrator wired to it.
"""
import json
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from code_audit.core.config import ServerConfig, build_config
from code_audit.core.engine import AuditOrchestrator
from code_audit.core.types import GenerationResult, ModelMetrics

INSTALLED_MODELS = ["codellama:7b", "deepseek-coder:6.7b", "granite-code:8b"]

SAMPLE_PYTHON = '''def add(a, b):
    return a + b


def greet(name):
    return "hello " + name
'''


def issues_response(*issues: Dict) -> str:
    """Model answer wrapping the given issue dicts the way the prompt asks for."""
    return "```json\n" + json.dumps({"issues": list(issues)}) + "\n```"


def make_raw_issue(line: int = 1, severity: str = "medium", **overrides) -> Dict:
    issue = {
        "line": line,
        "severity": severity,
        "type": "logic_error",
        "title": "Suspicious logic",
        "description": "The branch never runs",
        "suggestion": "Remove the dead branch",
        "confidence": 0.8,
        "fixable": False,
        "effort": "low",
    }
    issue.update(overrides)
    return issue


def generation(text: str, model: str = "codellama:7b") -> GenerationResult:
    return GenerationResult(text=text, model=model, prompt_eval_count=100, eval_count=50)


class StubOllamaClient:
    """Duck-typed OllamaClient; generate is an AsyncMock tests can reprogram."""

    def __init__(self, models: Optional[List[str]] = None, healthy: bool = True):
        self.host = "http://localhost:11434"
        self.last_health_check = None
        self.available_models = list(INSTALLED_MODELS if models is None else models)
        self.is_healthy = healthy
        self.metrics: Dict[str, ModelMetrics] = {}

        self.initialize = AsyncMock()
        self.aclose = AsyncMock()
        self.health_check = AsyncMock(return_value=healthy)
        self.ensure_model = AsyncMock(return_value=True)
        self.generate = AsyncMock(return_value=generation(issues_response()))

    def get_available_models(self) -> List[str]:
        return list(self.available_models)

    def is_model_available(self, model_name: str) -> bool:
        return model_name in self.available_models

    def get_model_metrics(self, model_name: str) -> ModelMetrics:
        return self.metrics.get(model_name) or ModelMetrics()

    def get_model_health_status(self) -> Dict[str, bool]:
        return {m: True for m in self.available_models}


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig()


@pytest.fixture
def stub_client() -> StubOllamaClient:
    return StubOllamaClient()


@pytest.fixture
def orchestrator(config, stub_client) -> AuditOrchestrator:
    return AuditOrchestrator(config=config, client=stub_client)


@pytest.fixture
def make_orchestrator(stub_client):
    """Factory for orchestrators with config overrides."""

    def _make(overrides: Optional[Dict] = None, client=None) -> AuditOrchestrator:
        return AuditOrchestrator(config=build_config(overrides or {}), client=client or stub_client)

    return _make
