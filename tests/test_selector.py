"""
Tests for model selection strategies and the model manager
"""
import pytest

from code_audit.core.types import AuditType, ModelMetrics
from code_audit.llm.selector import (
    DefaultModelSelectionStrategy,
    MetricsAwareSelectionStrategy,
    ModelManager,
    PerformanceModelSelectionStrategy,
    QualityModelSelectionStrategy,
    create_strategy,
    metrics_score,
    rank_models,
    score_models,
)


class TestScoring:
    def test_weighted_scores(self):
        scores = score_models(
            AuditType.SECURITY, "python", "thorough", ["codellama:7b", "deepseek-coder:6.7b"]
        )
        # security list: codellama:7b is 3rd of 5 -> 3*3; deepseek 4th of 5 -> 3*2
        # thorough list: deepseek 4th of 4 -> 1*1; python list names neither
        assert scores == {"codellama:7b": 9, "deepseek-coder:6.7b": 7}

    def test_unlisted_models_get_no_score(self):
        assert score_models("security", "python", "fast", ["mystery:1b"]) == {}

    def test_rank_keeps_registration_order_on_ties(self):
        assert rank_models({"a": 3, "b": 5, "c": 3}) == ["b", "a", "c"]

    def test_metrics_score(self):
        assert metrics_score(None) == 0.5
        assert metrics_score(ModelMetrics()) == 0.5
        assert metrics_score(ModelMetrics(requests=4, failures=0, avg_response_time=0)) == pytest.approx(1.0)
        # Slower than the baseline contributes nothing from latency
        slow = ModelMetrics(requests=2, failures=1, avg_response_time=60_000)
        assert metrics_score(slow) == pytest.approx(0.35)


class TestStrategies:
    def test_default_picks_highest_score(self):
        strategy = DefaultModelSelectionStrategy()
        model = strategy.select_model(
            "security", "python", "thorough", ["codellama:7b", "deepseek-coder:6.7b"]
        )
        assert model == "codellama:7b"

    def test_default_combines_type_language_and_priority(self):
        strategy = DefaultModelSelectionStrategy()
        available = ["deepseek-coder:33b", "granite-code:8b"]
        assert strategy.select_model("performance", "python", "thorough", available) == "deepseek-coder:33b"

    def test_default_ignores_order_of_available_models(self):
        strategy = DefaultModelSelectionStrategy()
        available = ["starcoder2:7b", "granite-code:8b", "codellama:13b", "deepseek-coder:6.7b"]
        picks = {
            strategy.select_model("testing", "java", "fast", ordering)
            for ordering in (available, list(reversed(available)), available[1:] + available[:1])
        }
        assert len(picks) == 1

    def test_default_falls_back_to_first_available(self):
        strategy = DefaultModelSelectionStrategy()
        assert strategy.select_model("security", "python", "fast", ["mystery:1b", "other:2b"]) == "mystery:1b"

    def test_no_models_means_no_selection(self):
        for strategy in (
            DefaultModelSelectionStrategy(),
            PerformanceModelSelectionStrategy(),
            QualityModelSelectionStrategy(),
            MetricsAwareSelectionStrategy(lambda name: None),
        ):
            assert strategy.select_model("security", "python", "fast", []) is None

    def test_performance_prefers_fast_models(self):
        available = ["deepseek-coder:33b", "codellama:7b"]
        assert PerformanceModelSelectionStrategy().select_model(
            "quality", "python", "thorough", available
        ) == "codellama:7b"

    def test_quality_prefers_large_models(self):
        available = ["deepseek-coder:33b", "codellama:7b"]
        assert QualityModelSelectionStrategy().select_model(
            "security", "python", "fast", available
        ) == "deepseek-coder:33b"

    def test_preferred_list_falls_back_to_default(self):
        assert QualityModelSelectionStrategy().select_model(
            "security", "python", "fast", ["granite-code:8b"]
        ) == "granite-code:8b"

    def test_metrics_strategy_avoids_failing_model(self):
        history = {
            "codellama:7b": ModelMetrics(requests=10, failures=8, avg_response_time=1_000),
        }
        strategy = MetricsAwareSelectionStrategy(history.get)

        model = strategy.select_model(
            "security", "python", "thorough", ["codellama:7b", "deepseek-coder:6.7b"]
        )
        assert model == "deepseek-coder:6.7b"

    def test_create_strategy(self):
        assert create_strategy("default").name == "default"
        assert create_strategy("performance").name == "performance"
        assert create_strategy("quality").name == "quality"
        assert create_strategy("metrics", lambda name: None).name == "metrics"
        with pytest.raises(ValueError):
            create_strategy("metrics")
        with pytest.raises(ValueError):
            create_strategy("random")


class TestModelManager:
    def test_default_catalog(self):
        manager = ModelManager()
        names = [m.name for m in manager.get_all_models()]

        assert "codellama:7b" in names
        assert len(names) == 9
        assert "codellama:7b" in [m.name for m in manager.get_models_for_audit_type(AuditType.SECURITY)]
        assert manager.get_fallback_models("codellama:7b") == ["codellama:13b", "deepseek-coder:6.7b"]
        assert manager.get_fallback_models("unknown") == []

    def test_update_existing_model(self):
        manager = ModelManager()
        updated = manager.update_model_config(
            "codellama:7b", {"maxTokens": 1024, "performance": {"speed": "slow"}}
        )

        assert updated.max_tokens == 1024
        assert updated.performance.speed == "slow"
        assert updated.performance.accuracy == "medium"
        assert manager.get_model_config("codellama:7b").max_tokens == 1024

    def test_update_creates_unknown_model(self):
        manager = ModelManager()
        created = manager.update_model_config("custom:3b", {"specialization": ["security"]})

        assert created.display_name == "custom:3b"
        assert created.specialization == [AuditType.SECURITY]
        assert manager.get_model_config("custom:3b") is created

    def test_strategy_swap(self):
        manager = ModelManager()
        manager.set_strategy(QualityModelSelectionStrategy())
        assert manager.select_model("security", "go", "fast", ["codellama:7b", "codellama:13b"]) == "codellama:13b"
