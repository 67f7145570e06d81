"""Tests del Quality Scorer.

Ejecutar:
    pytest tests/test_quality_scorer.py -v
"""

import logging

import pytest

from quality_monitor.config import QualityThresholds, ScoringWeights
from quality_monitor.domain.events import DriftDecision, DriftEvent, Severity
from quality_monitor.domain.reading import parse_reading
from quality_monitor.domain.results import RejectionReason, ValidationResult
from quality_monitor.drift.statistics import DISTANCE_METRICS
from quality_monitor.errors import ConfigurationError, WeightConfigInvalid
from quality_monitor.scoring.quality_scorer import QualityScorer, ScoringCycle


@pytest.fixture
def accepted(make_payload):
    """Factory de resultados Accepted con una temperatura dada."""

    def _make(temperature: float = 23.5) -> ValidationResult:
        return ValidationResult.accept(parse_reading(make_payload(temperature=temperature)))

    return _make


@pytest.fixture
def rejected(make_payload):
    def _make(reason: RejectionReason = RejectionReason.RANGE_VIOLATION) -> ValidationResult:
        return ValidationResult.reject(reason, "test", reading=parse_reading(make_payload()))

    return _make


def _drift_event(score: float, insufficient: bool = False) -> DriftEvent:
    return DriftEvent(
        stream_id="reader-01",
        field="temperature",
        test_results={},
        decision=DriftDecision.DRIFT if score > 0 else DriftDecision.NO_DRIFT,
        severity=Severity.LOW if score > 0 else Severity.NONE,
        drift_score=score,
        insufficient_data=insufficient,
    )


# =============================================================================
# COMPLETENESS Y VALIDITY
# =============================================================================

class TestCompletenessAndValidity:

    def test_cycle_with_missing_and_rejected_readings(self, accepted, rejected):
        """1000 esperadas, 950 aceptadas, 30 rechazadas por rango, 20 ausentes."""
        cycle = ScoringCycle("reader-01", started_at=0.0, expected_count=1000)
        cycle.extend([accepted() for _ in range(950)])
        cycle.extend([rejected() for _ in range(30)])

        score = QualityScorer().score(cycle.close(60.0))

        assert score.completeness == pytest.approx(0.95)
        assert score.validity == pytest.approx(950 / 980)
        assert score.composite == pytest.approx(0.25 * (0.95 + 950 / 980 + 1.0 + 1.0))
        assert "completeness" in score.breaches
        assert score.needs_alert
        assert score.counts["accepted"] == 950
        assert score.counts["rejected"] == 30
        assert score.counts["expected"] == 1000
        assert score.counts[RejectionReason.RANGE_VIOLATION.value] == 30

    def test_empty_cycle_scores_zero_without_error(self):
        cycle = ScoringCycle("reader-01", started_at=0.0)

        score = QualityScorer().score(cycle.close(60.0))

        assert score.completeness == 0.0
        assert score.validity == 0.0
        assert set(score.breaches) >= {"completeness", "validity"}

    def test_zero_expected_window(self, accepted):
        empty = ScoringCycle("reader-01", started_at=0.0, expected_count=0)
        busy = ScoringCycle("reader-01", started_at=0.0, expected_count=0)
        busy.add(accepted())

        assert QualityScorer().score(empty).completeness == 0.0
        assert QualityScorer().score(busy).completeness == 1.0

    def test_expected_count_from_nominal_rate(self, accepted):
        cycle = ScoringCycle("reader-01", started_at=0.0)
        cycle.extend([accepted() for _ in range(50)])

        score = QualityScorer(nominal_rate_hz=1.0).score(cycle.close(100.0))

        assert score.completeness == pytest.approx(0.5)
        assert score.validity == pytest.approx(1.0)

    def test_completeness_is_capped(self, accepted):
        cycle = ScoringCycle("reader-01", started_at=0.0, expected_count=10)
        cycle.extend([accepted() for _ in range(20)])

        assert QualityScorer().score(cycle).completeness == 1.0

    def test_healthy_cycle_has_no_breaches(self, accepted):
        cycle = ScoringCycle("reader-01", started_at=0.0, expected_count=100)
        cycle.extend([accepted() for _ in range(100)])

        score = QualityScorer().score(cycle)

        assert score.breaches == ()
        assert score.composite == pytest.approx(1.0)

    def test_breach_is_logged(self, caplog):
        cycle = ScoringCycle("reader-01", started_at=0.0, expected_count=10)

        with caplog.at_level(logging.WARNING):
            QualityScorer().score(cycle)

        assert "[QUALITY]" in caplog.text


# =============================================================================
# ACCURACY Y CONSISTENCY
# =============================================================================

class TestAccuracyAndConsistency:

    def test_accuracy_defaults_to_one_without_reference(self, accepted):
        cycle = ScoringCycle("reader-01", expected_count=1)
        cycle.add(accepted(99.0))

        assert QualityScorer().score(cycle).accuracy == 1.0

    def test_accuracy_matches_reference(self, accepted):
        scorer = QualityScorer(gold_standard={"temperature": [23.0, 23.5, 24.0]})
        cycle = ScoringCycle("reader-01", expected_count=3)
        cycle.extend([accepted(23.0), accepted(23.5), accepted(24.0)])

        assert scorer.score(cycle).accuracy == pytest.approx(1.0)

    def test_accuracy_far_from_reference(self, accepted):
        scorer = QualityScorer(gold_standard={"temperature": [23.0, 23.5, 24.0]})
        cycle = ScoringCycle("reader-01", expected_count=3)
        cycle.extend([accepted(60.0) for _ in range(3)])

        assert scorer.score(cycle).accuracy == 0.0

    def test_accuracy_with_custom_distance(self, accepted):
        calls = []

        def mean_gap(reference, values):
            calls.append((tuple(reference), tuple(values)))
            return abs(sum(values) / len(values) - sum(reference) / len(reference)) / 10.0

        scorer = QualityScorer(gold_standard={"temperature": [20.0, 22.0]}, distance=mean_gap)
        cycle = ScoringCycle("reader-01", expected_count=2)
        cycle.extend([accepted(23.0), accepted(25.0)])

        assert scorer.score(cycle).accuracy == pytest.approx(0.7)
        assert calls == [((20.0, 22.0), (23.0, 25.0))]

    def test_accuracy_with_ks_metric(self, accepted):
        scorer = QualityScorer(gold_standard={"temperature": [23.0, 23.5, 24.0]}, distance=DISTANCE_METRICS["ks"])
        same = ScoringCycle("reader-01", expected_count=3)
        same.extend([accepted(23.0), accepted(23.5), accepted(24.0)])
        disjoint = ScoringCycle("reader-01", expected_count=3)
        disjoint.extend([accepted(60.0) for _ in range(3)])

        assert scorer.score(same).accuracy == pytest.approx(1.0)
        assert scorer.score(disjoint).accuracy == pytest.approx(0.0)

    def test_non_finite_distance_counts_as_worst(self, accepted):
        scorer = QualityScorer(gold_standard={"temperature": [23.0]}, distance=lambda ref, vals: float("inf"))
        cycle = ScoringCycle("reader-01", expected_count=1)
        cycle.add(accepted())

        assert scorer.score(cycle).accuracy == 0.0

    def test_accuracy_without_accepted_values(self, rejected):
        scorer = QualityScorer(gold_standard={"temperature": [23.0, 24.0]})
        cycle = ScoringCycle("reader-01", expected_count=1)
        cycle.add(rejected())

        assert scorer.score(cycle).accuracy == 0.0

    def test_consistency_from_latest_drift(self, accepted):
        scorer = QualityScorer(drift_lookup=lambda stream_id: [_drift_event(0.4), _drift_event(0.0)])
        cycle = ScoringCycle("reader-01", expected_count=1)
        cycle.add(accepted())

        assert scorer.score(cycle).consistency == pytest.approx(0.8)

    def test_insufficient_data_events_are_ignored(self, accepted):
        scorer = QualityScorer(drift_lookup=lambda stream_id: [_drift_event(0.0, insufficient=True)])
        cycle = ScoringCycle("reader-01", expected_count=1)
        cycle.add(accepted())

        assert scorer.score(cycle).consistency == 1.0


# =============================================================================
# PESOS
# =============================================================================

class TestWeights:

    def test_default_weights_sum_to_one(self):
        assert sum(ScoringWeights().as_dict().values()) == pytest.approx(1.0)

    @pytest.mark.parametrize(
        "weights",
        [
            dict(completeness=0.5, validity=0.5, accuracy=0.5, consistency=0.5),
            dict(completeness=1.2, validity=-0.2, accuracy=0.0, consistency=0.0),
            dict(completeness=0.1, validity=0.1, accuracy=0.1, consistency=0.1),
        ],
    )
    def test_invalid_weights_are_rejected(self, weights):
        with pytest.raises(WeightConfigInvalid) as exc_info:
            ScoringWeights(**weights)

        assert isinstance(exc_info.value, ConfigurationError)
        assert exc_info.value.option == "scoring_weights"

    def test_per_call_weights(self, accepted):
        cycle = ScoringCycle("reader-01", started_at=0.0, expected_count=100)
        cycle.extend([accepted() for _ in range(40)])

        score = QualityScorer().score(cycle, weights=ScoringWeights(1.0, 0.0, 0.0, 0.0))
        assert score.completeness == pytest.approx(0.4)
        assert score.composite == pytest.approx(score.completeness)

    def test_invalid_thresholds(self):
        with pytest.raises(ConfigurationError):
            QualityThresholds(min_completeness=1.5)
