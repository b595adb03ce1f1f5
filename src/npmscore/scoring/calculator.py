"""Aggregates rule results into a single package score."""

import logging
from datetime import datetime, timezone

from npmscore.config import ScoringConfig
from npmscore.errors import InvalidInputError
from npmscore.models.schemas import (
    PackageSnapshot,
    RiskLevel,
    RuleOutcome,
    ScoreResult,
)
from npmscore.rules.base import BaseRule
from npmscore.scoring.bands import get_score_band
from npmscore.scoring.registry import RuleRegistry

logger = logging.getLogger(__name__)


class ScoreCalculator:
    """Runs registered rules against a snapshot and aggregates the result.

    Scores start at ``base_score``, lose each rule's deduction, gain each
    rule's bonus, and are clamped to ``[min_score, max_score]``.
    A rule that raises is recorded with risk level ``error`` and no
    impact on the score.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()
        self.registry = RuleRegistry()

    def register_rule(self, rule: BaseRule) -> None:
        self.registry.register(rule)

    def get_rules(self) -> list[BaseRule]:
        """Active rules in evaluation order."""
        return self.registry.get_active_rules()

    async def calculate_score(self, snapshot: PackageSnapshot | None) -> ScoreResult:
        """Score one package version.

        Args:
            snapshot: Normalized package version.

        Returns:
            ScoreResult with one outcome per active rule, in registration order.

        Raises:
            InvalidInputError: If no snapshot is given.
        """
        if snapshot is None:
            raise InvalidInputError("Package data is required")

        score = float(self.config.base_score)
        outcomes: list[RuleOutcome] = []

        for rule in self.get_rules():
            try:
                result = await rule.evaluate(snapshot)
                deduction = result.deduction
                bonus = result.bonus
                if rule.is_bonus:
                    bonus = min(bonus, rule.weight)
                else:
                    deduction = min(deduction, rule.weight)
                outcome = RuleOutcome(
                    rule_name=rule.name,
                    deduction=deduction,
                    bonus=bonus,
                    details=result.details,
                    risk_level=result.risk_level,
                )
            except Exception as e:
                logger.warning(f"Error evaluating rule {rule.name}: {e}")
                outcomes.append(
                    RuleOutcome(
                        rule_name=rule.name,
                        details={"error": str(e)},
                        risk_level=RiskLevel.ERROR,
                    )
                )
                continue

            score = score - outcome.deduction + outcome.bonus
            outcomes.append(outcome)
            logger.debug(
                f"{rule.name}: -{outcome.deduction} +{outcome.bonus} ({outcome.risk_level.value})"
            )

        score = max(self.config.min_score, min(self.config.max_score, score))
        score = round(score, 2)

        return ScoreResult(
            score=score,
            band=get_score_band(score),
            rule_results=outcomes,
            package_name=snapshot.name,
            package_version=snapshot.version,
            timestamp=datetime.now(timezone.utc),
        )
