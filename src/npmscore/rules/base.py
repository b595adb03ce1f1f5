"""Base class shared by every scoring rule."""

import math
from abc import ABC, abstractmethod
from typing import Any

from npmscore.models.schemas import PackageSnapshot, RiskLevel, RuleResult


class BaseRule(ABC):
    """A named, weighted check over one package snapshot.

    Deduction rules lower the score by at most ``weight``; bonus rules
    (``is_bonus = True``) raise it by at most ``weight``.
    Subclasses implement ``_evaluate``; ``evaluate`` short-circuits when
    the rule is disabled.
    """

    name: str = ""
    description: str = ""
    is_bonus: bool = False

    def __init__(self, weight: int, enabled: bool = True) -> None:
        if weight < 0:
            raise ValueError(f"Rule weight must be non-negative, got {weight}")
        self.weight = weight
        self.enabled = enabled

    async def evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        """Evaluate the rule against a package snapshot.

        Args:
            snapshot: Normalized package version.

        Returns:
            RuleResult with the deduction or bonus for this rule.
        """
        if not self.enabled:
            return self.disabled_result()
        return await self._evaluate(snapshot)

    @abstractmethod
    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        ...

    def disabled_result(self) -> RuleResult:
        return self.no_risk("Rule is disabled")

    @staticmethod
    def no_risk(reason: str, **details: Any) -> RuleResult:
        """Zero-impact result carrying a ``reason``."""
        return RuleResult(details={"reason": reason, **details}, risk_level=RiskLevel.NONE)

    def info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "weight": self.weight,
            "type": "bonus" if self.is_bonus else "deduction",
            "enabled": self.enabled,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, weight={self.weight}, enabled={self.enabled})"


def tiered_deduction(
    weight: int,
    risk: float,
    high: bool = False,
    full: float = 3,
    partial: float = 2,
    minimal: float = 1,
) -> tuple[int, RiskLevel]:
    """Map an accumulated risk score onto a deduction tier.

    Full weight when ``high`` is set or ``risk >= full``, three quarters at
    ``partial``, half at ``minimal``, otherwise nothing.

    Returns:
        Tuple of (deduction, risk level).
    """
    if high or risk >= full:
        return weight, RiskLevel.HIGH
    if risk >= partial:
        return math.floor(weight * 0.75), RiskLevel.MEDIUM
    if risk >= minimal:
        return math.floor(weight * 0.5), RiskLevel.LOW
    return 0, RiskLevel.NONE
