"""Drift layer - tests estadísticos, detector y consistencia entre grupos."""

from .cross_group import detect_cross_group
from .drift_detector import DriftDetector
from .statistics import (
    ks_test,
    mean_shift_test,
    one_way_anova,
    transport_distance,
    wasserstein_test,
)

__all__ = [
    "DriftDetector",
    "detect_cross_group",
    "ks_test",
    "mean_shift_test",
    "one_way_anova",
    "transport_distance",
    "wasserstein_test",
]
