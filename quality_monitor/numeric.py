"""Funciones canónicas de sanitización numérica.

Guards para que NaN / Infinity / bool nunca entren en ventanas ni en scores.
"""

from __future__ import annotations

import math
from typing import Optional


def safe_float(value, default: Optional[float] = 0.0) -> Optional[float]:
    """Convierte un valor a float con validación de NaN/Infinity.

    Args:
        value: Valor a convertir (puede ser None, str, Decimal, etc.)
        default: Valor por defecto si es inválido

    Returns:
        Float válido o default si el valor es None, bool, NaN o Infinity
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        f = float(value)
        if not math.isfinite(f):
            return default
        return f
    except (TypeError, ValueError):
        return default



def clamp01(value: float) -> float:
    """Acota a [0, 1]; NaN cuenta como 0."""
    if value != value:
        return 0.0
    return max(0.0, min(1.0, float(value)))
