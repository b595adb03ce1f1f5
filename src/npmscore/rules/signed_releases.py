"""Signed releases bonus: registry signatures or an integrity hash on the tarball."""

from npmscore.models.schemas import PackageSnapshot, RuleResult
from npmscore.rules.base import BaseRule


class SignedReleasesRule(BaseRule):
    name = "signed-releases"
    description = "Checks if package releases are cryptographically signed"
    is_bonus = True

    def __init__(self, bonus: int = 10, enabled: bool = True) -> None:
        super().__init__(bonus, enabled)

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        dist = snapshot.dist
        # An SRI integrity hash counts as a signature for this bonus
        if dist.signatures or dist.integrity:
            return RuleResult(
                bonus=self.weight,
                details={
                    "signed": True,
                    "signatures": dist.signatures,
                    "integrity": dist.integrity,
                    "description": "Package releases are cryptographically signed",
                },
            )
        return RuleResult(
            details={
                "signed": False,
                "description": "Package releases are not cryptographically signed",
            },
        )
