"""Advisory history rule: known vulnerabilities and malware reports."""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from npmscore.models.schemas import Advisory, PackageSnapshot, RiskLevel, RuleResult
from npmscore.rules.base import BaseRule

logger = logging.getLogger(__name__)

RECENT_ADVISORY_DAYS = 30

# Fraction of the weight deducted for the most severe advisory found
SEVERITY_FACTORS = (
    ("critical", 0.9),
    ("high", 0.75),
    ("moderate", 0.5),
    ("low", 0.25),
)


class AdvisorySource(Protocol):
    async def get_advisories(self, name: str, version: str | None = None) -> list[Advisory]: ...


class AdvisoryHistoryRule(BaseRule):
    """Deducts for published advisories, with malware reports costing the full weight."""

    name = "advisory-history"
    description = "Analyzes security advisory history and malware incidents"

    def __init__(
        self,
        weight: int = 15,
        advisories: AdvisorySource | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(weight, enabled)
        self.advisories = advisories

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        if not snapshot.name:
            return self.no_risk("Package name is required")
        if self.advisories is None:
            return self.no_risk("No advisory source configured")

        try:
            advisories = await self.advisories.get_advisories(snapshot.name, snapshot.version or None)
        except Exception as e:
            logger.warning(f"Failed to fetch advisories for {snapshot.name}: {e}")
            return RuleResult(
                details={"reason": "Failed to fetch advisories", "error": str(e)},
                risk_level=RiskLevel.ERROR,
            )

        if not advisories:
            return RuleResult(
                details={
                    "advisories": [],
                    "total_advisories": 0,
                    "has_malware": False,
                    "has_critical_advisories": False,
                },
            )

        analysis = self.analyze(advisories)
        deduction = self._deduction(analysis)

        return RuleResult(
            deduction=deduction,
            details={
                "advisories": [
                    {
                        "id": a.id,
                        "title": a.title,
                        "severity": a.severity,
                        "source": a.source,
                        "is_malware": a.is_malware,
                        "cve": a.cve,
                        "url": a.url,
                    }
                    for a in advisories
                ],
                "total_advisories": len(advisories),
                "analysis": analysis,
                "has_malware": analysis["has_malware"],
                "has_critical_advisories": analysis["counts"]["critical"] > 0,
            },
            risk_level=self._risk_level(analysis),
        )

    @staticmethod
    def analyze(advisories: list[Advisory]) -> dict[str, Any]:
        counts = {"critical": 0, "high": 0, "moderate": 0, "low": 0, "unknown": 0}
        cutoff = datetime.now(timezone.utc) - timedelta(days=RECENT_ADVISORY_DAYS)
        recent = 0
        for advisory in advisories:
            counts[advisory.severity if advisory.severity in counts else "unknown"] += 1
            published = advisory.published
            if published is not None:
                if published.tzinfo is None:
                    published = published.replace(tzinfo=timezone.utc)
                if published >= cutoff:
                    recent += 1
        return {
            "total": len(advisories),
            "counts": counts,
            "has_malware": any(a.is_malware for a in advisories),
            "recent_advisories": recent,
            "cve_count": sum(1 for a in advisories if a.cve),
        }

    def _deduction(self, analysis: dict[str, Any]) -> int:
        if analysis["has_malware"]:
            return self.weight
        for severity, factor in SEVERITY_FACTORS:
            if analysis["counts"][severity]:
                return math.floor(self.weight * factor)
        return 0

    @staticmethod
    def _risk_level(analysis: dict[str, Any]) -> RiskLevel:
        counts = analysis["counts"]
        if analysis["has_malware"] or counts["critical"]:
            return RiskLevel.HIGH
        if counts["high"] or counts["moderate"] or analysis["recent_advisories"]:
            return RiskLevel.MEDIUM
        if counts["low"]:
            return RiskLevel.LOW
        return RiskLevel.NONE
