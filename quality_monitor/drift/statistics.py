"""Tests estadísticos usados por el Drift Detector y el Quality Scorer.

- mean_shift_test:  |mean(C) − mean(B)| > k·std(B)
- ks_test:          Kolmogorov–Smirnov de dos muestras (statistic, p-value)
- wasserstein_test: distancia de transporte normalizada por std(B)
- one_way_anova:    F de una vía entre ≥3 grupos

Todas las funciones son puras: mismas entradas → mismo resultado.
"""

from __future__ import annotations

import math
import warnings
from typing import Callable, Dict, Sequence, Tuple

import numpy as np
from scipy import stats

from ..domain.events import StatTestResult


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


def baseline_scale(baseline: Sequence[float]) -> float:
    """Desviación estándar muestral (ddof=1) del baseline; 0 si n < 2."""
    arr = _as_array(baseline)
    if arr.size < 2:
        return 0.0
    return float(np.std(arr, ddof=1))


def mean_shift_test(baseline: Sequence[float], current: Sequence[float], k: float) -> StatTestResult:
    """Test de localización/escala.

    Registra (|Δmean|, |Δmean| / std(B)). Con std(B) = 0 cualquier
    desplazamiento distinto de cero marca.
    """
    b = _as_array(baseline)
    c = _as_array(current)
    delta = abs(float(np.mean(c)) - float(np.mean(b)))
    scale = baseline_scale(b)
    if scale > 0:
        standardized = delta / scale
    else:
        standardized = 0.0 if delta == 0 else math.inf
    return StatTestResult(
        statistic=delta,
        p_value_or_distance=standardized,
        flagged=delta > k * scale,
    )


def ks_test(baseline: Sequence[float], current: Sequence[float], alpha: float) -> StatTestResult:
    """Kolmogorov–Smirnov de dos muestras. Marca si p-value < alpha."""
    result = stats.ks_2samp(_as_array(baseline), _as_array(current))
    statistic = float(result.statistic)
    p_value = float(result.pvalue)
    if math.isnan(p_value):
        p_value = 1.0
    return StatTestResult(statistic=statistic, p_value_or_distance=p_value, flagged=p_value < alpha)


def transport_distance(reference: Sequence[float], sample: Sequence[float]) -> Tuple[float, float]:
    """Distancia de Wasserstein (earth mover's) cruda y normalizada.

    La normalización divide por std(reference); si es 0 se usa la cruda.

    Returns:
        (raw_distance, normalized_distance)
    """
    raw = float(stats.wasserstein_distance(_as_array(reference), _as_array(sample)))
    scale = baseline_scale(reference)
    normalized = raw / scale if scale > 0 else raw
    return raw, normalized


def normalized_transport_distance(reference: Sequence[float], sample: Sequence[float]) -> float:
    """Distancia de Wasserstein normalizada por std(reference)."""
    return transport_distance(reference, sample)[1]


def ks_distance(reference: Sequence[float], sample: Sequence[float]) -> float:
    """Estadístico KS de dos muestras, ya acotado a [0, 1]."""
    return float(stats.ks_2samp(_as_array(reference), _as_array(sample)).statistic)


# Métricas de distancia seleccionables para la accuracy del scorer
DISTANCE_METRICS: Dict[str, Callable[[Sequence[float], Sequence[float]], float]] = {
    "wasserstein": normalized_transport_distance,
    "ks": ks_distance,
}


def wasserstein_test(baseline: Sequence[float], current: Sequence[float], threshold: float) -> StatTestResult:
    """Marca si la distancia normalizada supera ``threshold``."""
    raw, normalized = transport_distance(baseline, current)
    return StatTestResult(statistic=raw, p_value_or_distance=normalized, flagged=normalized > threshold)


def one_way_anova(groups: Sequence[Sequence[float]]) -> Tuple[float, float]:
    """ANOVA de una vía. Devuelve (F, p-value).

    Grupos todos constantes e idénticos → (0.0, 1.0): no hay evidencia de
    inconsistencia.
    """
    arrays = [_as_array(g) for g in groups]
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        result = stats.f_oneway(*arrays)
    f_stat = float(result.statistic)
    p_value = float(result.pvalue)
    if math.isnan(f_stat) or math.isnan(p_value):
        return 0.0, 1.0
    return f_stat, p_value
