"""Verified publisher bonus."""

from npmscore.models.schemas import PackageSnapshot, RuleResult
from npmscore.rules.base import BaseRule


class VerifiedPublisherRule(BaseRule):
    name = "verified-publisher"
    description = "Checks if package is published by a verified npm publisher"
    is_bonus = True

    def __init__(self, bonus: int = 10, enabled: bool = True) -> None:
        super().__init__(bonus, enabled)

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        publisher = snapshot.publisher
        if publisher is not None and publisher.verified:
            return RuleResult(
                bonus=self.weight,
                details={
                    "verified": True,
                    "publisher": publisher.model_dump(),
                    "description": "Package is published by a verified npm publisher",
                },
            )
        return RuleResult(
            details={
                "verified": False,
                "description": "Package is not published by a verified npm publisher",
            },
        )
