"""Rule registry, score calculator and score bands."""

from npmscore.scoring.bands import (
    SCORE_BANDS,
    get_score_band,
    get_score_interpretation,
    should_block,
)
from npmscore.scoring.calculator import ScoreCalculator
from npmscore.scoring.registry import RuleRegistry

__all__ = [
    "SCORE_BANDS",
    "RuleRegistry",
    "ScoreCalculator",
    "get_score_band",
    "get_score_interpretation",
    "should_block",
]
