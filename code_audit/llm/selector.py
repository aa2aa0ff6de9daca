"""
Model selection.

Strategies are interchangeable objects with a single ``select_model`` method;
the ModelManager holds the active one and the per-model configuration table.
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Union

from ..core.types import AuditType, ModelConfig, ModelMetrics, Priority
from .registry import (
    DEFAULT_MODELS,
    FAST_MODE_MODELS,
    LANGUAGE_MODEL_PREFERENCES,
    MODEL_PRIORITY,
    RECOMMENDED_MODELS,
    THOROUGH_MODE_MODELS,
)

logger = logging.getLogger(__name__)

AUDIT_TYPE_WEIGHT = 3
LANGUAGE_WEIGHT = 2
PRIORITY_WEIGHT = 1

# Latency at which the response-time component of the metrics score hits zero
RESPONSE_TIME_BASELINE_MS = 30_000
UNTESTED_MODEL_SCORE = 0.5

AuditTypeLike = Union[AuditType, str]
PriorityLike = Union[Priority, str]


def _audit_type_ranking(audit_type: AuditTypeLike) -> List[str]:
    try:
        return MODEL_PRIORITY.get(AuditType(audit_type), MODEL_PRIORITY[AuditType.ALL])
    except ValueError:
        return MODEL_PRIORITY[AuditType.ALL]


def _priority_ranking(priority: PriorityLike) -> List[str]:
    return FAST_MODE_MODELS if Priority(priority) == Priority.FAST else THOROUGH_MODE_MODELS


def score_models(
    audit_type: AuditTypeLike,
    language: str,
    priority: PriorityLike,
    available_models: List[str],
) -> Dict[str, int]:
    """Weighted preference score for each available model that appears in any list.

    Insertion order of the returned dict is the first-registered order used
    to break ties.
    """
    available = set(available_models)
    rankings = (
        (AUDIT_TYPE_WEIGHT, _audit_type_ranking(audit_type)),
        (LANGUAGE_WEIGHT, LANGUAGE_MODEL_PREFERENCES.get((language or "").lower(), [])),
        (PRIORITY_WEIGHT, _priority_ranking(priority)),
    )

    scores: Dict[str, int] = {}
    for weight, ranking in rankings:
        size = len(ranking)
        for index, model in enumerate(ranking):
            if model in available:
                scores[model] = scores.get(model, 0) + weight * (size - index)
    return scores


def rank_models(scores: Dict[str, int]) -> List[str]:
    # sorted() is stable, so equal scores keep first-registered order
    return sorted(scores, key=lambda m: scores[m], reverse=True)


class ModelSelectionStrategy(ABC):
    """Picks one model name out of the currently available ones."""

    name: str = "base"

    @abstractmethod
    def select_model(
        self,
        audit_type: AuditTypeLike,
        language: str,
        priority: PriorityLike,
        available_models: List[str],
    ) -> Optional[str]:
        pass


class DefaultModelSelectionStrategy(ModelSelectionStrategy):
    """Weighted scoring over audit-type, language and priority rankings."""

    name = "default"

    def select_model(self, audit_type, language, priority, available_models):
        if not available_models:
            return None

        scores = score_models(audit_type, language, priority, available_models)
        best_model: Optional[str] = None
        best_score = 0
        for model, score in scores.items():
            if score > best_score:
                best_model, best_score = model, score

        if best_model is None:
            # Nothing we know about is installed; any model beats no model
            best_model = available_models[0]
        return best_model


class _PreferredListStrategy(ModelSelectionStrategy):
    """Restrict to a preferred model list, ordered by the audit-type ranking."""

    preferred: List[str] = []

    def select_model(self, audit_type, language, priority, available_models):
        candidates = [m for m in self.preferred if m in available_models]
        if candidates:
            for model in _audit_type_ranking(audit_type):
                if model in candidates:
                    return model
            return candidates[0]

        return DefaultModelSelectionStrategy().select_model(
            audit_type, language, priority, available_models
        )


class PerformanceModelSelectionStrategy(_PreferredListStrategy):
    """Always prefer the fastest models."""

    name = "performance"
    preferred = FAST_MODE_MODELS


class QualityModelSelectionStrategy(_PreferredListStrategy):
    """Always prefer the most accurate models regardless of speed."""

    name = "quality"
    preferred = THOROUGH_MODE_MODELS


def metrics_score(metrics: Optional[ModelMetrics]) -> float:
    if metrics is None or metrics.requests == 0:
        return UNTESTED_MODEL_SCORE
    response_score = max(0.0, 1 - metrics.avg_response_time / RESPONSE_TIME_BASELINE_MS)
    return metrics.success_rate * 0.7 + response_score * 0.3


class MetricsAwareSelectionStrategy(ModelSelectionStrategy):
    """Re-rank the default candidates by recorded success rate and latency.

    Models without history score a neutral 0.5, so they win over models with
    a poor track record but lose to reliable, fast ones.
    """

    name = "metrics"

    def __init__(self, metrics_provider: Callable[[str], Optional[ModelMetrics]]):
        self.metrics_provider = metrics_provider

    def select_model(self, audit_type, language, priority, available_models):
        if not available_models:
            return None

        candidates = rank_models(score_models(audit_type, language, priority, available_models))
        if not candidates:
            return available_models[0]

        best_model = candidates[0]
        best_score = -1.0
        for model in candidates:
            score = metrics_score(self.metrics_provider(model))
            if score > best_score:
                best_model, best_score = model, score
        return best_model


def create_strategy(
    name: str,
    metrics_provider: Optional[Callable[[str], Optional[ModelMetrics]]] = None,
) -> ModelSelectionStrategy:
    if name == "default":
        return DefaultModelSelectionStrategy()
    if name == "performance":
        return PerformanceModelSelectionStrategy()
    if name == "quality":
        return QualityModelSelectionStrategy()
    if name == "metrics":
        if metrics_provider is None:
            raise ValueError("metrics strategy requires a metrics provider")
        return MetricsAwareSelectionStrategy(metrics_provider)
    raise ValueError(f"Unknown selection strategy: {name}")


class ModelManager:
    """Model configuration table plus the active selection strategy."""

    def __init__(
        self,
        strategy: Optional[ModelSelectionStrategy] = None,
        models: Optional[List[ModelConfig]] = None,
    ):
        self.strategy = strategy or DefaultModelSelectionStrategy()
        self._configs: Dict[str, ModelConfig] = {
            m.name: m for m in (models if models is not None else DEFAULT_MODELS)
        }

    def select_model(
        self,
        audit_type: AuditTypeLike,
        language: str,
        priority: PriorityLike,
        available_models: List[str],
    ) -> Optional[str]:
        model = self.strategy.select_model(audit_type, language, priority, available_models)
        logger.debug(
            f"Selected model {model} for {audit_type}/{language}/{priority} "
            f"via {self.strategy.name} strategy"
        )
        return model

    def set_strategy(self, strategy: ModelSelectionStrategy) -> None:
        logger.info(f"Model selection strategy: {self.strategy.name} -> {strategy.name}")
        self.strategy = strategy

    def get_model_config(self, model_name: str) -> Optional[ModelConfig]:
        return self._configs.get(model_name)

    def update_model_config(self, model_name: str, updates: Dict) -> ModelConfig:
        """Merge partial fields into a model's config, creating it if unknown."""
        existing = self._configs.get(model_name) or ModelConfig(
            name=model_name, display_name=model_name
        )
        updated = existing.merged(updates)
        self._configs[model_name] = updated
        return updated

    def get_all_models(self) -> List[ModelConfig]:
        return list(self._configs.values())

    def get_models_for_audit_type(self, audit_type: AuditTypeLike) -> List[ModelConfig]:
        wanted = AuditType(audit_type)
        return [m for m in self._configs.values() if wanted in m.specialization]

    def get_recommended_models(self) -> List[str]:
        return list(RECOMMENDED_MODELS)

    def get_fallback_models(self, model_name: str) -> List[str]:
        config = self._configs.get(model_name)
        return list(config.fallback_models) if config else []
