"""Tests del Drift Detector, tests estadísticos y consistencia entre grupos.

Ejecutar:
    pytest tests/test_drift_detector.py -v
"""

import json
import math

import numpy as np
import pytest

from quality_monitor.config import DriftConfig, WindowConfig
from quality_monitor.domain.events import (
    CROSS_GROUP_EVENT_TYPE,
    KS_TEST,
    MEAN_SHIFT_TEST,
    WASSERSTEIN_TEST,
    DriftDecision,
    Severity,
)
from quality_monitor.drift.cross_group import detect_cross_group
from quality_monitor.drift.drift_detector import DriftDetector
from quality_monitor.drift.statistics import (
    baseline_scale,
    ks_test,
    mean_shift_test,
    one_way_anova,
    transport_distance,
    wasserstein_test,
)
from quality_monitor.windows.baseline_store import BaselineStore


@pytest.fixture
def store() -> BaselineStore:
    return BaselineStore(WindowConfig(current_max_size=5000), min_samples=30)


@pytest.fixture
def detector(store) -> DriftDetector:
    return DriftDetector(store, DriftConfig())


def _load(store, stream_id, baseline, current, field_name="temperature"):
    store.seed_baseline(stream_id, field_name, [(float(i), float(v)) for i, v in enumerate(baseline)])
    for i, v in enumerate(current):
        store.append(stream_id, field_name, 1000.0 + i, float(v))


# =============================================================================
# TESTS ESTADÍSTICOS
# =============================================================================

class TestStatistics:

    def test_baseline_scale_uses_sample_std(self):
        assert baseline_scale([1.0, 2.0, 3.0]) == pytest.approx(1.0)
        assert baseline_scale([5.0]) == 0.0

    def test_mean_shift_records_delta_and_standardized(self):
        result = mean_shift_test([1.0, 2.0, 3.0], [4.0, 5.0, 6.0], k=2.0)

        assert result.statistic == pytest.approx(3.0)
        assert result.p_value_or_distance == pytest.approx(3.0)
        assert result.flagged is True

    def test_mean_shift_with_constant_baseline(self):
        unchanged = mean_shift_test([2.0] * 5, [2.0] * 5, k=2.0)
        shifted = mean_shift_test([2.0] * 5, [2.1] * 5, k=2.0)

        assert unchanged.flagged is False
        assert unchanged.p_value_or_distance == 0.0
        assert shifted.flagged is True
        assert math.isinf(shifted.p_value_or_distance)

    def test_ks_identical_samples(self):
        values = list(np.linspace(0, 1, 50))
        result = ks_test(values, values, alpha=0.05)

        assert result.statistic == pytest.approx(0.0)
        assert result.p_value_or_distance == pytest.approx(1.0)
        assert result.flagged is False

    def test_transport_distance_is_normalized(self):
        raw, normalized = transport_distance([0.0, 2.0], [1.0, 3.0])

        assert raw == pytest.approx(1.0)
        assert normalized == pytest.approx(1.0 / baseline_scale([0.0, 2.0]))

    def test_transport_distance_zero_scale_falls_back_to_raw(self):
        raw, normalized = transport_distance([1.0, 1.0], [3.0, 3.0])
        assert raw == normalized == pytest.approx(2.0)

    def test_wasserstein_threshold(self):
        assert wasserstein_test([0.0, 2.0], [0.0, 2.0], threshold=0.1).flagged is False
        assert wasserstein_test([0.0, 2.0], [1.0, 3.0], threshold=0.1).flagged is True

    def test_anova_constant_groups(self):
        assert one_way_anova([[1.0, 1.0], [1.0, 1.0], [1.0, 1.0]]) == (0.0, 1.0)


# =============================================================================
# DRIFT DETECTOR
# =============================================================================

class TestDriftDetector:

    def test_shifted_mean_is_drift(self, store, detector, rng):
        """Baseline con media 23.5 y ventana actual con media 26.2."""
        _load(store, "reader-01", rng.normal(23.5, 0.5, 500), rng.normal(26.2, 0.5, 200))

        event = detector.detect("reader-01", "temperature")

        assert event.decision == DriftDecision.DRIFT
        assert set(event.flagged_tests) == {MEAN_SHIFT_TEST, KS_TEST, WASSERSTEIN_TEST}
        assert event.severity == Severity.HIGH
        assert event.drift_score == pytest.approx(1.0)
        assert event.sample_sizes == (500, 200)
        assert not event.insufficient_data

    def test_mean_shift_beyond_k_std_flags(self, store, detector, rng):
        """std(B)=1.0: |26.2 − 23.5| = 2.7 > 2·1.0."""
        _load(store, "reader-01", rng.normal(23.5, 1.0, 500), rng.normal(26.2, 1.0, 200))

        event = detector.detect("reader-01", "temperature")

        assert event.is_drift
        assert MEAN_SHIFT_TEST in event.flagged_tests

    def test_identical_windows_are_not_drift(self, store, detector, rng):
        values = rng.normal(23.5, 0.5, 300)
        _load(store, "reader-01", values, values)

        event = detector.detect("reader-01", "temperature")

        assert event.decision == DriftDecision.NO_DRIFT
        assert event.severity == Severity.NONE
        assert event.flagged_tests == ()
        assert event.drift_score == pytest.approx(0.0)

    def test_one_flag_is_enough(self, store, detector, rng):
        """Combinación OR: la distancia marca aunque la media no salga de k·std."""
        baseline = rng.normal(0.0, 1.0, 1000)
        _load(store, "reader-01", baseline, rng.normal(0.4, 1.0, 300))

        event = detector.detect("reader-01", "temperature")

        assert event.is_drift
        assert MEAN_SHIFT_TEST not in event.flagged_tests
        assert WASSERSTEIN_TEST in event.flagged_tests
        assert event.severity in (Severity.MEDIUM, Severity.HIGH)

    def test_insufficient_data_is_never_drift(self, store, detector, rng):
        _load(store, "reader-01", rng.normal(23.5, 0.5, 10), rng.normal(40.0, 0.5, 200))

        event = detector.detect("reader-01", "temperature")

        assert event.decision == DriftDecision.NO_DRIFT
        assert event.insufficient_data is True
        assert event.test_results == {}
        assert event.sample_sizes == (10, 200)

    def test_unknown_key_is_insufficient_data(self, detector):
        event = detector.detect("ghost", "temperature")
        assert event.insufficient_data
        assert event.sample_sizes == (0, 0)

    def test_detection_is_idempotent(self, store, detector, rng):
        _load(store, "reader-01", rng.normal(23.5, 0.5, 500), rng.normal(26.2, 0.5, 200))

        first = detector.detect("reader-01", "temperature")
        second = detector.detect("reader-01", "temperature")

        assert first == second

    def test_results_as_tuples(self, store, detector, rng):
        _load(store, "reader-01", rng.normal(23.5, 0.5, 500), rng.normal(26.2, 0.5, 200))

        tuples = detector.detect("reader-01", "temperature").results_as_tuples()
        delta, standardized = tuples[MEAN_SHIFT_TEST]

        assert set(tuples) == {MEAN_SHIFT_TEST, KS_TEST, WASSERSTEIN_TEST}
        assert delta == pytest.approx(2.7, abs=0.2)
        assert standardized == pytest.approx(delta / baseline_scale(store.snapshot("reader-01", "temperature")))
        assert 0.0 <= tuples[KS_TEST][1] <= 1.0

    def test_constant_baseline_event_is_strict_json(self, store, detector):
        """Baseline constante desplazado: Δ estandarizado infinito → null en JSON."""
        _load(store, "reader-01", [2.0] * 40, [2.1] * 40)

        event = detector.detect("reader-01", "temperature")
        encoded = json.dumps(event.to_dict(), allow_nan=False)

        assert event.is_drift
        assert math.isinf(event.test_results[MEAN_SHIFT_TEST].p_value_or_distance)
        assert json.loads(encoded)["test_results"][MEAN_SHIFT_TEST]["p_value_or_distance"] is None

    def test_test_results_are_read_only(self, store, detector, rng):
        _load(store, "reader-01", rng.normal(23.5, 0.5, 100), rng.normal(23.5, 0.5, 100))
        event = detector.detect("reader-01", "temperature")

        with pytest.raises(TypeError):
            event.test_results[KS_TEST] = None
        assert set(event.test_results) == {MEAN_SHIFT_TEST, KS_TEST, WASSERSTEIN_TEST}

    @pytest.mark.parametrize(
        "flagged,distance,expected",
        [
            (0, 0.9, Severity.NONE),
            (1, 0.1, Severity.LOW),
            (2, 0.1, Severity.MEDIUM),
            (1, 0.3, Severity.MEDIUM),
            (1, 0.6, Severity.HIGH),
            (3, 0.0, Severity.HIGH),
        ],
    )
    def test_severity_tiers(self, detector, flagged, distance, expected):
        assert detector.severity(flagged, distance) == expected

    def test_detect_all_and_latest(self, store, detector, rng):
        _load(store, "reader-01", rng.normal(23.5, 0.5, 100), rng.normal(23.5, 0.5, 100))
        _load(store, "reader-01", rng.normal(70, 1, 100), rng.normal(70, 1, 100), field_name="signal_strength")
        _load(store, "reader-02", rng.normal(23.5, 0.5, 100), rng.normal(30.0, 0.5, 100))

        events = detector.detect_all(fields=["temperature"])

        assert [(e.stream_id, e.field) for e in events] == [
            ("reader-01", "temperature"),
            ("reader-02", "temperature"),
        ]
        assert detector.latest("reader-02", "temperature").is_drift
        assert detector.latest("reader-01", "signal_strength") is None
        assert len(detector.latest_for_stream("reader-01")) == 1


# =============================================================================
# CONSISTENCIA ENTRE GRUPOS
# =============================================================================

class TestCrossGroup:

    def _current(self, store, stream_id, values):
        for i, v in enumerate(values):
            store.append(stream_id, "temperature", float(i), float(v))

    def test_inconsistent_groups_raise_event(self, store, rng):
        for stream_id, mean in (("s1", 20.0), ("s2", 25.0), ("s3", 30.0)):
            self._current(store, stream_id, rng.normal(mean, 0.5, 50))

        event = detect_cross_group(store, "temperature", ["s1", "s2", "s3"])

        assert event is not None
        assert event.event_type == CROSS_GROUP_EVENT_TYPE == "CrossGroupInconsistency"
        assert event.groups == ("s1", "s2", "s3")
        assert event.p_value < 0.05
        assert event.group_means["s3"] == pytest.approx(30.0, abs=0.5)

    def test_consistent_groups_give_no_event(self, store):
        values = [20.0, 21.0, 22.0, 23.0]
        for stream_id in ("s1", "s2", "s3"):
            self._current(store, stream_id, values)

        assert detect_cross_group(store, "temperature", ["s1", "s2", "s3"]) is None

    def test_needs_three_groups(self, store, rng):
        self._current(store, "s1", rng.normal(20.0, 0.5, 50))
        self._current(store, "s2", rng.normal(30.0, 0.5, 50))
        self._current(store, "s3", [25.0])

        assert detect_cross_group(store, "temperature", ["s1", "s2", "s3"]) is None

    def test_named_groups_pool_streams(self, store, rng):
        self._current(store, "a1", rng.normal(20.0, 0.5, 20))
        self._current(store, "a2", rng.normal(20.0, 0.5, 20))
        self._current(store, "b1", rng.normal(26.0, 0.5, 20))
        self._current(store, "c1", rng.normal(32.0, 0.5, 20))

        event = detect_cross_group(
            store, "temperature", {"zone-a": ["a1", "a2"], "zone-b": ["b1"], "zone-c": ["c1"]}
        )

        assert event is not None
        assert event.groups == ("zone-a", "zone-b", "zone-c")
