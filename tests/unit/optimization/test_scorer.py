"""
Tests for the Provider Scorer
"""

import pytest

from autopay_agent.errors import ErrorCode, NoProviderAvailableError, ValidationError
from autopay_agent.metrics import MetricsStore
from autopay_agent.optimization import ProviderScorer, ScoringWeights
from autopay_agent.providers import RequestPriority, ServiceRequest


class TestScoring:
    """Test score() and its components."""

    def test_cheaper_provider_wins_with_equal_metrics(self, scorer: ProviderScorer, provider_factory, weather_request):
        cheap = provider_factory("cheap", 0.001)
        pricey = provider_factory("pricey", 0.009)

        best = scorer.select_optimal([pricey, cheap], weather_request)

        assert best.provider.id == "cheap"
        assert best.score > scorer.score(pricey, weather_request)

    def test_better_metrics_outweigh_small_price_gap(
        self, scorer: ProviderScorer, metrics_store: MetricsStore, provider_factory, weather_request
    ):
        good = provider_factory("good", 0.002)
        flaky = provider_factory("flaky", 0.0015)
        for _ in range(5):
            metrics_store.record_feedback("good", 98, 300, 0.002)
            metrics_store.record_feedback("flaky", 40, 9000, 0.0015)

        assert scorer.select_optimal([flaky, good], weather_request).provider.id == "good"

    def test_cost_score_bounds(self, provider_factory):
        request = ServiceRequest(service_type="weather", max_cost=0.01)

        assert ProviderScorer.cost_score(provider_factory("free", 0.0), request) == 1.0
        assert ProviderScorer.cost_score(provider_factory("edge", 0.01), request) == 0.0
        assert ProviderScorer.cost_score(provider_factory("over", 0.05), request) == 0.0

    def test_cost_score_uses_priority_pricing(self, provider_factory):
        provider = provider_factory("p", 0.004)
        normal = ServiceRequest(service_type="weather", max_cost=0.01)
        urgent = ServiceRequest(service_type="weather", max_cost=0.01, priority=RequestPriority.HIGH)

        assert ProviderScorer.cost_score(provider, urgent) < ProviderScorer.cost_score(provider, normal)

    @pytest.mark.parametrize(
        "response_time,expected",
        [(0.0, 1.0), (5000.0, 0.5), (10000.0, 0.0), (15000.0, 0.0)],
    )
    def test_speed_score(self, response_time: float, expected: float):
        assert ProviderScorer.speed_score(response_time) == pytest.approx(expected)

    def test_score_with_default_priors(self, scorer: ProviderScorer, provider_factory, weather_request):
        """Unobserved provider: quality 85, 2000ms, uptime 95."""
        provider = provider_factory("fresh", 0.005)

        expected = 0.4 * 0.5 + 0.3 * 0.85 + 0.2 * 0.8 + 0.1 * 0.95
        assert scorer.score(provider, weather_request) == pytest.approx(expected)


class TestSelection:
    """Test select_optimal() and rank()."""

    def test_empty_candidate_list(self, scorer: ProviderScorer, weather_request):
        with pytest.raises(NoProviderAvailableError) as exc_info:
            scorer.select_optimal([], weather_request)

        assert exc_info.value.code == ErrorCode.NO_PROVIDERS_AVAILABLE

    def test_ties_keep_input_order(self, scorer: ProviderScorer, provider_factory, weather_request):
        first = provider_factory("first", 0.003)
        second = provider_factory("second", 0.003)

        assert scorer.select_optimal([first, second], weather_request).provider.id == "first"
        assert scorer.select_optimal([second, first], weather_request).provider.id == "second"

    def test_rank_sorted_best_first(self, scorer: ProviderScorer, provider_factory, weather_request):
        providers = [provider_factory(f"p{i}", cost) for i, cost in enumerate([0.008, 0.002, 0.005])]

        ranked = scorer.rank(providers, weather_request)

        assert [s.provider.id for s in ranked] == ["p1", "p2", "p0"]

    def test_reasoning_mentions_low_cost(self, scorer: ProviderScorer, provider_factory, weather_request):
        best = scorer.select_optimal([provider_factory("cheap", 0.001)], weather_request)

        assert "low cost" in best.reasoning


class TestFeedback:
    """Test add_feedback() weight adaptation."""

    def test_weights_sum_to_one_after_feedback(self, scorer: ProviderScorer):
        for i in range(100):
            scorer.add_feedback("p", quality=95 if i % 2 else 50, response_time=500 if i % 3 else 3000, cost=0.001)

        assert scorer.weights.total == pytest.approx(1.0, abs=1e-9)

    def test_high_quality_fast_feedback_shifts_weights(self, scorer: ProviderScorer):
        before = ScoringWeights()

        scorer.add_feedback("p", quality=95, response_time=500, cost=0.001)

        assert scorer.weights.quality > before.quality
        assert scorer.weights.speed > before.speed
        assert scorer.weights.cost < before.cost

    def test_mediocre_feedback_leaves_weights(self, scorer: ProviderScorer):
        scorer.add_feedback("p", quality=70, response_time=3000, cost=0.001)

        assert scorer.weights.as_dict() == pytest.approx(ScoringWeights().as_dict())

    def test_feedback_updates_metrics(self, scorer: ProviderScorer, metrics_store: MetricsStore):
        scorer.add_feedback("p", quality=60, response_time=1200, cost=0.002)

        metrics = metrics_store.get("p")
        assert metrics.average_quality == 60
        assert metrics.average_response_time == 1200

    @pytest.mark.parametrize("quality", [-1, 101])
    def test_quality_out_of_range_rejected(self, scorer: ProviderScorer, quality: float):
        with pytest.raises(ValidationError):
            scorer.add_feedback("p", quality=quality, response_time=100, cost=0.001)


class TestMarketAdjustment:
    """Test adjust_for_market()."""

    def test_low_gas_price_is_ignored(self, scorer: ProviderScorer):
        assert scorer.adjust_for_market(20) is False
        assert scorer.weights == ScoringWeights()

    def test_high_gas_price_favours_cost(self, scorer: ProviderScorer):
        assert scorer.adjust_for_market(45) is True

        assert scorer.weights.cost > 0.4
        assert scorer.weights.total == pytest.approx(1.0)

    def test_normalize_recovers_from_all_zero(self):
        weights = ScoringWeights(cost=0, quality=0, speed=0, reliability=0)

        weights.normalize()

        assert weights == ScoringWeights()


class TestModelPersistence:
    """Test export_model() / import_model()."""

    def test_import_restores_weights_and_metrics(self, scorer: ProviderScorer):
        scorer.add_feedback("p", quality=95, response_time=400, cost=0.001)
        exported = scorer.export_model()

        restored = ProviderScorer(MetricsStore())
        restored.import_model(exported)

        assert restored.weights.as_dict() == pytest.approx(scorer.weights.as_dict())
        assert restored.metrics.get("p").average_quality == 95
        assert restored.metrics.get("p").quality_history[-1] == 95

    def test_statistics(self, scorer: ProviderScorer):
        scorer.add_feedback("a", quality=80, response_time=1000, cost=0.001)
        scorer.add_feedback("b", quality=60, response_time=3000, cost=0.001)

        stats = scorer.statistics()

        assert stats["total_providers"] == 2
        assert stats["average_quality"] == pytest.approx(70)
        assert stats["average_response_time"] == pytest.approx(2000)
