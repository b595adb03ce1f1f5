"""Maintainer security rule: repository hygiene and maintainer accounts."""

import logging
import re
from typing import Any

from npmscore.errors import RateLimitError
from npmscore.models.schemas import Maintainer, PackageSnapshot, Platform, RuleResult
from npmscore.rules.base import BaseRule, tiered_deduction
from npmscore.rules.repository import RepositorySource, days_since, source_repo_for

logger = logging.getLogger(__name__)

NEW_ACCOUNT_DAYS = 30
INACTIVE_REPO_DAYS = 365
GITHUB_USER_URL = re.compile(r"github\.com[/:]([^/\s]+)")
GITHUB_HANDLE = re.compile(r"^[A-Za-z0-9-]+$")


def github_username(maintainer: Maintainer) -> str | None:
    """GitHub login from the maintainer URL, or the name if it looks like a handle."""
    if maintainer.url:
        match = GITHUB_USER_URL.search(maintainer.url)
        if match:
            return match.group(1)
    if maintainer.name and GITHUB_HANDLE.match(maintainer.name):
        return maintainer.name
    return None


class MaintainerSecurityRule(BaseRule):
    """Checks SECURITY.md presence, maintainer accounts, and repository status."""

    name = "maintainer-security"
    description = "Checks maintainer accounts and repository security posture"

    def __init__(
        self,
        weight: int = 15,
        github: RepositorySource | None = None,
        require_security_policy: bool = True,
        enabled: bool = True,
    ) -> None:
        super().__init__(weight, enabled)
        self.github = github
        self.require_security_policy = require_security_policy

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        repo_ref = source_repo_for(snapshot)
        if repo_ref is None:
            return self.no_risk("No repository information found")
        if repo_ref.platform != Platform.GITHUB:
            return self.no_risk("Repository is not hosted on GitHub", repository=repo_ref.url)
        if self.github is None:
            return self.no_risk("No GitHub client configured")

        owner, repo = repo_ref.owner, repo_ref.repo
        findings: list[dict[str, Any]] = []
        total_risk = 0.0

        try:
            if self.require_security_policy:
                try:
                    if not await self.github.has_security_policy(owner, repo):
                        findings.append({
                            "type": "no-security-policy",
                            "description": "Repository does not have SECURITY.md file",
                            "severity": "medium",
                        })
                        total_risk += 1
                except RateLimitError:
                    raise
                except Exception as e:
                    findings.append(self._check_error("security-policy-check-error", e))

            maintainers = list(snapshot.maintainers)
            if snapshot.author:
                maintainers.append(snapshot.author)
            if not maintainers:
                findings.append({
                    "type": "no-maintainers",
                    "description": "No maintainer information found",
                    "severity": "low",
                })
                total_risk += 0.5
            for maintainer in maintainers:
                maintainer_findings = await self._check_maintainer(maintainer)
                findings.extend(maintainer_findings)
                total_risk += 0.5 * len(maintainer_findings)

            try:
                repo_info = await self.github.get_repository(owner, repo)
            except RateLimitError:
                raise
            except Exception as e:
                logger.debug(f"Repository lookup failed for {owner}/{repo}: {e}")
                repo_info = None
            if repo_info:
                repo_findings = self._analyze_repository(repo_info)
                findings.extend(repo_findings)
                total_risk += len(repo_findings)
        except RateLimitError as e:
            logger.warning(f"{self.name}: {e}")
            return self.no_risk(
                "GitHub rate limit exceeded",
                reset_time=e.reset_time.isoformat() if e.reset_time else None,
            )

        deduction, level = tiered_deduction(self.weight, total_risk)
        return RuleResult(
            deduction=deduction,
            details={
                "findings": findings,
                "total_risk": round(total_risk, 1),
                "repository": {"owner": owner, "repo": repo, "url": repo_ref.url},
                "maintainers": len(maintainers),
            },
            risk_level=level,
        )

    async def _check_maintainer(self, maintainer: Maintainer) -> list[dict[str, Any]]:
        username = github_username(maintainer)
        if not username:
            return []

        try:
            user = await self.github.get_user(username)
        except RateLimitError:
            raise
        except Exception as e:
            logger.debug(f"User lookup failed for {username}: {e}")
            return []
        if not user:
            return []

        findings = []
        account_age = days_since(user.get("created_at"))
        if account_age is not None and account_age < NEW_ACCOUNT_DAYS:
            findings.append({
                "type": "new-account",
                "maintainer": username,
                "description": f"Maintainer account is very new ({account_age} days old)",
                "severity": "medium",
                "account_age": account_age,
            })
        if user.get("type") == "Bot":
            findings.append({
                "type": "bot-account",
                "maintainer": username,
                "description": "Maintainer is a bot account",
                "severity": "low",
            })
        return findings

    @staticmethod
    def _analyze_repository(repo_info: dict[str, Any]) -> list[dict[str, Any]]:
        findings = []
        if repo_info.get("archived"):
            findings.append({
                "type": "archived-repo",
                "description": "Repository is archived",
                "severity": "medium",
            })
        if repo_info.get("disabled"):
            findings.append({
                "type": "disabled-repo",
                "description": "Repository is disabled",
                "severity": "high",
            })
        inactive_days = days_since(repo_info.get("pushed_at"))
        if inactive_days is not None and inactive_days > INACTIVE_REPO_DAYS:
            findings.append({
                "type": "inactive-repo",
                "description": f"Repository has not been updated in {inactive_days} days",
                "severity": "medium",
                "days_since_update": inactive_days,
            })
        return findings

    @staticmethod
    def _check_error(kind: str, error: Exception) -> dict[str, Any]:
        return {
            "type": kind,
            "description": f"Could not complete check: {error}",
            "severity": "low",
        }
