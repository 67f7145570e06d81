"""Windows layer - ventanas deslizantes y Baseline Store."""

from .baseline_store import BaselineStore, RefreshOutcome
from .sliding_window import SlidingWindow

__all__ = ["BaselineStore", "RefreshOutcome", "SlidingWindow"]
