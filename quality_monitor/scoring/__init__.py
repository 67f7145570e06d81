"""Scoring layer - Quality Scorer, ciclos y pesos."""

from ..config import QualityThresholds, ScoringWeights
from .quality_scorer import QualityScorer, ScoringCycle

__all__ = ["QualityScorer", "QualityThresholds", "ScoringCycle", "ScoringWeights"]
