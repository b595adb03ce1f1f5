"""Score bands used to classify final scores."""

from npmscore.models.schemas import ScoreBand

SAFE = ScoreBand(
    key="SAFE",
    label="Safe",
    min_score=90,
    description="Package shows no significant risk indicators",
    emoji="✅",
)
REVIEW = ScoreBand(
    key="REVIEW",
    label="Review",
    min_score=70,
    description="Package has some risk indicators and should be reviewed before use",
    emoji="🟡",
)
HIGH_RISK = ScoreBand(
    key="HIGH_RISK",
    label="High Risk",
    min_score=50,
    description="Package has multiple risk indicators; use with caution",
    emoji="🟠",
)
BLOCK = ScoreBand(
    key="BLOCK",
    label="Block",
    min_score=0,
    description="Package has severe risk indicators and should not be installed",
    emoji="🔴",
)

# Highest threshold first
SCORE_BANDS = (SAFE, REVIEW, HIGH_RISK, BLOCK)


def get_score_band(score: float) -> ScoreBand:
    for band in SCORE_BANDS:
        if score >= band.min_score:
            return band
    return BLOCK


def should_block(score: float) -> bool:
    return get_score_band(score).key == BLOCK.key


def get_score_interpretation(score: float) -> str:
    """One-line human readable reading of a score."""
    band = get_score_band(score)
    return f"{band.label}: {band.description}"
