"""Community signals rule: repository activity, engagement and disclosure policy."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from npmscore.config import CommunitySignalsConfig
from npmscore.errors import RateLimitError
from npmscore.models.schemas import PackageSnapshot, Platform, RuleResult
from npmscore.rules.base import BaseRule, tiered_deduction
from npmscore.rules.repository import RepositorySource, days_since, parse_timestamp, source_repo_for

logger = logging.getLogger(__name__)

MANY_OPEN_ISSUES = 50
MIN_STARS = 5

DISCLOSURE_KEYWORDS = (
    "responsible disclosure",
    "security disclosure",
    "security@",
    "security email",
    "report vulnerability",
    "vulnerability reporting",
    "security issue",
    "coordinated disclosure",
)

# Risk added per finding, by check group
ACTIVITY_RISK = 0.5
POLICY_RISK = 0.5
HEALTH_RISK = 0.3


def has_responsible_disclosure(content: str | None) -> bool:
    if not content:
        return False
    lowered = content.lower()
    return any(keyword in lowered for keyword in DISCLOSURE_KEYWORDS)


class CommunitySignalsRule(BaseRule):
    """Penalizes dormant repositories and missing disclosure policies."""

    name = "community-signals"
    description = "Checks repository activity, community engagement, and security policy"

    def __init__(
        self,
        weight: int = 5,
        github: RepositorySource | None = None,
        config: CommunitySignalsConfig | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(weight, enabled)
        self.github = github
        config = config or CommunitySignalsConfig(weight=weight)
        self.inactive_threshold_days = config.inactive_threshold_days
        self.low_activity_threshold_days = config.low_activity_threshold_days
        self.min_commits_per_month = config.min_commits_per_month

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
            for check, risk_per_finding in (
                (self._check_activity, ACTIVITY_RISK),
                (self._check_security_policy, POLICY_RISK),
                (self._check_health, HEALTH_RISK),
            ):
                check_findings = await check(owner, repo)
                findings.extend(check_findings)
                total_risk += risk_per_finding * sum(
                    1 for f in check_findings if not f["type"].endswith("-error")
                )
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
            },
            risk_level=level,
        )

    async def _check_activity(self, owner: str, repo: str) -> list[dict[str, Any]]:
        findings = []
        now = datetime.now(timezone.utc)
        low_activity_cutoff = now - timedelta(days=self.low_activity_threshold_days)
        inactive_cutoff = now - timedelta(days=self.inactive_threshold_days)

        try:
            commits = await self.github.get_commits(owner, repo, since=inactive_cutoff)
        except RateLimitError:
            raise
        except Exception as e:
            findings.append(_error_finding("commit-check-error", "commit activity", e))
        else:
            if not commits:
                findings.append({
                    "type": "no-recent-commits",
                    "description": f"No commits in the last {self.inactive_threshold_days} days",
                    "severity": "high",
                })
            else:
                recent = [c for c in commits if _after(_commit_date(c), low_activity_cutoff)]
                if not recent:
                    findings.append({
                        "type": "low-commit-activity",
                        "description": f"No commits in the last {self.low_activity_threshold_days} days",
                        "severity": "medium",
                    })
                else:
                    per_month = len(recent) / (self.low_activity_threshold_days / 30)
                    if per_month < self.min_commits_per_month:
                        findings.append({
                            "type": "low-commit-frequency",
                            "description": (
                                f"Low commit frequency: {per_month:.1f} commits/month "
                                f"(minimum: {self.min_commits_per_month})"
                            ),
                            "severity": "low",
                            "commits_per_month": round(per_month, 1),
                        })

        try:
            issues = await self.github.get_issues(owner, repo)
            pull_requests = await self.github.get_pull_requests(owner, repo)
        except RateLimitError:
            raise
        except Exception as e:
            findings.append(_error_finding("issue-pr-check-error", "issue/PR activity", e))
            return findings

        recent_issues = [i for i in issues if _after(parse_timestamp(i.get("created_at")), low_activity_cutoff)]
        recent_prs = [p for p in pull_requests if _after(parse_timestamp(p.get("created_at")), low_activity_cutoff)]
        if not recent_issues and not recent_prs:
            findings.append({
                "type": "no-recent-community-activity",
                "description": (
                    f"No issues or pull requests in the last {self.low_activity_threshold_days} days"
                ),
                "severity": "low",
            })

        open_issues = [i for i in issues if i.get("state") == "open" and "pull_request" not in i]
        if len(open_issues) > MANY_OPEN_ISSUES:
            findings.append({
                "type": "many-open-issues",
                "description": f"Repository has {len(open_issues)} open issues",
                "severity": "low",
                "open_issues_count": len(open_issues),
            })

        return findings

    async def _check_security_policy(self, owner: str, repo: str) -> list[dict[str, Any]]:
        try:
            content = await self.github.get_security_policy(owner, repo)
        except RateLimitError:
            raise
        except Exception as e:
            return [_error_finding("security-policy-check-error", "security policy", e)]

        if content is None:
            return [{
                "type": "no-security-policy",
                "description": "Repository does not have SECURITY.md file",
                "severity": "medium",
            }]
        if content.strip() and not has_responsible_disclosure(content):
            return [{
                "type": "no-responsible-disclosure",
                "description": (
                    "SECURITY.md exists but does not clearly describe responsible disclosure process"
                ),
                "severity": "low",
            }]
        return []

    async def _check_health(self, owner: str, repo: str) -> list[dict[str, Any]]:
        try:
            repo_info = await self.github.get_repository(owner, repo)
        except RateLimitError:
            raise
        except Exception as e:
            logger.debug(f"Repository lookup failed for {owner}/{repo}: {e}")
            return []
        if not repo_info:
            return []

        findings = []
        if repo_info.get("archived"):
            findings.append({"type": "archived-repo", "description": "Repository is archived", "severity": "high"})
        if repo_info.get("disabled"):
            findings.append({"type": "disabled-repo", "description": "Repository is disabled", "severity": "high"})

        idle_days = days_since(repo_info.get("pushed_at"))
        if idle_days is not None and idle_days > self.inactive_threshold_days:
            findings.append({
                "type": "inactive-repo",
                "description": f"Repository has not been updated in {idle_days} days",
                "severity": "high",
                "days_since_update": idle_days,
            })
        elif idle_days is not None and idle_days > self.low_activity_threshold_days:
            findings.append({
                "type": "low-activity-repo",
                "description": f"Repository has low activity (last update: {idle_days} days ago)",
                "severity": "medium",
                "days_since_update": idle_days,
            })

        stars = repo_info.get("stargazers_count")
        if isinstance(stars, int) and stars < MIN_STARS:
            findings.append({
                "type": "low-popularity",
                "description": f"Repository has only {stars} stars",
                "severity": "low",
                "stars": stars,
            })
        return findings


def _commit_date(commit: dict[str, Any]) -> datetime | None:
    info = commit.get("commit") or {}
    author = info.get("author") or info.get("committer") or {}
    return parse_timestamp(author.get("date"))


def _after(timestamp: datetime | None, cutoff: datetime) -> bool:
    return timestamp is not None and timestamp >= cutoff


def _error_finding(kind: str, what: str, error: Exception) -> dict[str, Any]:
    return {
        "type": kind,
        "description": f"Could not check {what}: {error}",
        "severity": "low",
    }
