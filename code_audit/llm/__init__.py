"""
Ollama Integration Module

Provides:
- HTTP client with retry and health tracking
- Built-in model catalog
- Pluggable model selection strategies
"""
from .client import OllamaClient
from .selector import (
    DefaultModelSelectionStrategy,
    MetricsAwareSelectionStrategy,
    ModelManager,
    ModelSelectionStrategy,
    PerformanceModelSelectionStrategy,
    QualityModelSelectionStrategy,
    create_strategy,
)

__all__ = [
    "OllamaClient",
    "ModelManager",
    "ModelSelectionStrategy",
    "DefaultModelSelectionStrategy",
    "PerformanceModelSelectionStrategy",
    "QualityModelSelectionStrategy",
    "MetricsAwareSelectionStrategy",
    "create_strategy",
]
