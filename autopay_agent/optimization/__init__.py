"""
Provider scoring and selection.
"""

from .scorer import ProviderScorer, ScoredProvider, ScoringWeights

__all__ = ["ProviderScorer", "ScoredProvider", "ScoringWeights"]
