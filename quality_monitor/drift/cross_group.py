"""Consistencia entre grupos (sensores / ubicaciones) para un mismo campo.

ANOVA de una vía sobre las ventanas current. Se reporta como evento aparte
(CrossGroupInconsistency) y NO se fusiona con la decisión de drift primaria.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from ..domain.events import CrossGroupEvent
from ..windows.baseline_store import BaselineStore
from .statistics import one_way_anova

logger = logging.getLogger(__name__)

MIN_GROUPS = 3
MIN_GROUP_SIZE = 2

GroupSpec = Union[Sequence[str], Mapping[str, Sequence[str]]]


def _normalize_groups(groups: GroupSpec) -> Dict[str, List[str]]:
    """Lista de streams → un grupo por stream; mapping → grupos con nombre."""
    if isinstance(groups, Mapping):
        return {str(name): list(streams) for name, streams in groups.items()}
    return {str(stream_id): [str(stream_id)] for stream_id in groups}


def detect_cross_group(
    store: BaselineStore,
    field_name: str,
    groups: GroupSpec,
    alpha: float = 0.05,
) -> Optional[CrossGroupEvent]:
    """Compara las ventanas current de varios grupos del mismo campo.

    Args:
        store: Baseline Store con las ventanas
        field_name: Campo nominal común (p. ej. "temperature")
        groups: streams a comparar, o {grupo: [streams]} para agrupar
        alpha: Nivel de significancia

    Returns:
        CrossGroupEvent si p-value < alpha; None si son consistentes o si no
        hay al menos 3 grupos con 2+ valores.
    """
    samples: Dict[str, List[float]] = {}
    for name, stream_ids in _normalize_groups(groups).items():
        pooled: List[float] = []
        for stream_id in stream_ids:
            pooled.extend(store.current_snapshot(stream_id, field_name))
        if len(pooled) >= MIN_GROUP_SIZE:
            samples[name] = pooled

    if len(samples) < MIN_GROUPS:
        logger.debug(
            "[CROSS_GROUP] %s: only %d eligible groups (min %d)", field_name, len(samples), MIN_GROUPS
        )
        return None

    names = sorted(samples.keys())
    f_stat, p_value = one_way_anova([samples[n] for n in names])
    if p_value >= alpha:
        return None

    event = CrossGroupEvent(
        field=field_name,
        groups=tuple(names),
        f_statistic=f_stat,
        p_value=p_value,
        group_means={n: float(np.mean(samples[n])) for n in names},
    )
    logger.warning(
        "[CROSS_GROUP] %s inconsistent across %d groups: F=%.3f p=%.4g",
        field_name,
        len(names),
        f_stat,
        p_value,
    )
    return event
