"""Update behavior rule.

Compares consecutive releases from a package's recent history and
flags changes typical of a hijacked package: sudden size growth, new or
altered install scripts, bulk dependency additions, and unusual jumps in
version numbers.
"""

import logging
import re
from typing import Any, NamedTuple, Protocol

from npmscore.config import UpdateBehaviorConfig
from npmscore.models.schemas import PackageSnapshot, RuleResult
from npmscore.rules.base import BaseRule, tiered_deduction
from npmscore.rules.lifecycle_scripts import get_lifecycle_scripts, normalize_script
from npmscore.rules.semver import parse_version, sort_versions

logger = logging.getLogger(__name__)

MINOR_SKIP_THRESHOLD = 5
SIGNIFICANT_DEPENDENCY_ADDITIONS = 10
FALLBACK_WINDOW = 5

SUSPICIOUS_SCRIPT_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bcurl\s+[^\s]+",
        r"\bwget\s+[^\s]+",
        r"\beval\s*\(",
        r"\bfetch\s*\(",
        r"\brequire\s*\(\s*['\"]https?['\"]\s*\)",
        r"\b(?:curl|wget)\s+.*\|\s*(?:sh|bash)\b",
    )
)


class VersionHistorySource(Protocol):
    async def get_all_versions(self, name: str) -> dict[str, PackageSnapshot]: ...


class VersionJump(NamedTuple):
    is_unusual: bool
    type: str | None = None
    magnitude: int = 0


def is_suspicious_script(script: str | None) -> bool:
    if not script or not isinstance(script, str):
        return False
    return any(pattern.search(script) for pattern in SUSPICIOUS_SCRIPT_PATTERNS)


def format_bytes(size: int) -> str:
    """Human readable byte count, base 1024."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


class UpdateBehaviorRule(BaseRule):
    """Flags suspicious changes across a package's recent releases."""

    name = "update-behavior"
    description = "Analyzes version history to detect suspicious update patterns"

    def __init__(
        self,
        weight: int = 10,
        registry: VersionHistorySource | None = None,
        config: UpdateBehaviorConfig | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(weight, enabled)
        self.registry = registry
        config = config or UpdateBehaviorConfig(weight=weight)
        self.size_increase_threshold = config.size_increase_threshold
        self.max_versions_to_analyze = config.max_versions_to_analyze
        self.version_jump_threshold = config.version_jump_threshold

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        if not snapshot.name:
            return self.no_risk("Invalid package data")
        if self.registry is None:
            return self.no_risk("Could not analyze version history", error="No registry client")

        try:
            history = await self.registry.get_all_versions(snapshot.name)
        except Exception as e:
            logger.warning(f"Could not fetch version history for {snapshot.name}: {e}")
            return self.no_risk("Could not analyze version history", error=str(e))

        if not history or len(history) < 2:
            return self.no_risk("Insufficient version history for analysis")

        analysis = self.analyze_versions(snapshot, history)
        risk, has_high_risk = self._risk_score(analysis["findings"])
        deduction, level = tiered_deduction(
            self.weight, risk, high=has_high_risk, full=5, partial=3, minimal=1
        )

        return RuleResult(
            deduction=deduction,
            details={
                "analysis": analysis,
                "risk_score": risk,
                "version_count": len(history),
                "analyzed_versions": analysis["versions_analyzed"],
            },
            risk_level=level,
        )

    def analyze_versions(
        self, snapshot: PackageSnapshot, history: dict[str, PackageSnapshot]
    ) -> dict[str, Any]:
        """Diff the analysis window and scan the full history for version jumps."""
        versions = sort_versions(history)
        window = self._select_window(versions, snapshot.version or versions[-1])

        findings: list[dict[str, Any]] = []
        for prev_version, curr_version in zip(window, window[1:]):
            changes = self.compare_versions(history[prev_version], history[curr_version])
            if changes is None:
                continue
            published = history[curr_version].published_at
            findings.append({
                "from_version": prev_version,
                "to_version": curr_version,
                "changes": changes,
                "timestamp": published.isoformat() if published else None,
            })

        for prev_version, curr_version, jump in self.detect_version_jumps(versions):
            findings.append({
                "type": "version-jump",
                "from_version": prev_version,
                "to_version": curr_version,
                "jump_type": jump.type,
                "magnitude": jump.magnitude,
                "severity": "low",
                "description": f"Unusual version jump: {prev_version} → {curr_version} ({jump.type})",
            })

        return {
            "findings": findings,
            "versions_analyzed": len(window),
            "total_versions": len(versions),
            "has_suspicious_changes": bool(findings),
        }

    def _select_window(self, versions: list[str], current: str) -> list[str]:
        recent = versions[-self.max_versions_to_analyze:]
        if current in recent:
            return recent[: recent.index(current) + 1]
        return recent[-FALLBACK_WINDOW:]

    def compare_versions(
        self, prev: PackageSnapshot, curr: PackageSnapshot
    ) -> dict[str, Any] | None:
        """Diff two releases.

        Returns:
            Dict of size, script and dependency changes, or None when nothing
            worth reporting changed.
        """
        size_change = self._size_change(prev.dist.unpacked_size or 0, curr.dist.unpacked_size or 0)
        script_changes = self._script_changes(
            get_lifecycle_scripts(prev.scripts), get_lifecycle_scripts(curr.scripts)
        )
        dependency_changes = self._dependency_changes(prev, curr)

        has_script_changes = any(
            script_changes[k] for k in ("added", "removed", "modified")
        )
        significant_deps = dependency_changes["total_added"] > SIGNIFICANT_DEPENDENCY_ADDITIONS

        if not (size_change or has_script_changes or significant_deps):
            return None

        return {
            "size_change": size_change,
            "script_changes": script_changes if has_script_changes else None,
            "dependency_changes": dependency_changes if significant_deps else None,
        }

    def _size_change(self, prev_size: int, curr_size: int) -> dict[str, Any] | None:
        if prev_size <= 0 or curr_size <= 0:
            return None
        increase = (curr_size - prev_size) / prev_size
        if increase <= self.size_increase_threshold:
            return None
        percent = round(increase * 100)
        return {
            "previous": prev_size,
            "current": curr_size,
            "increase": increase,
            "increase_percent": percent,
            "description": (
                f"Size increased by {percent}% "
                f"({format_bytes(prev_size)} → {format_bytes(curr_size)})"
            ),
            "severity": "high" if increase > 1 else "medium",
        }

    def _script_changes(
        self, prev_scripts: dict[str, str], curr_scripts: dict[str, str]
    ) -> dict[str, list[dict[str, Any]]]:
        changes: dict[str, list[dict[str, Any]]] = {
            "added": [],
            "removed": [],
            "modified": [],
            "new_suspicious_scripts": [],
        }

        for hook, script in curr_scripts.items():
            if hook in prev_scripts:
                continue
            changes["added"].append({"hook": hook, "script": script})
            if is_suspicious_script(script):
                changes["new_suspicious_scripts"].append({
                    "hook": hook,
                    "script": script,
                    "description": "New suspicious script detected in lifecycle hook",
                })

        for hook, script in prev_scripts.items():
            if hook not in curr_scripts:
                changes["removed"].append({"hook": hook, "script": script})

        for hook, script in prev_scripts.items():
            if hook not in curr_scripts:
                continue
            previous = normalize_script(script)
            current = normalize_script(curr_scripts[hook])
            if previous == current:
                continue
            changes["modified"].append({"hook": hook, "previous": previous, "current": current})
            if not is_suspicious_script(previous) and is_suspicious_script(current):
                changes["new_suspicious_scripts"].append({
                    "hook": hook,
                    "script": current,
                    "description": "Script modified to include suspicious patterns",
                })

        return changes

    def _dependency_changes(self, prev: PackageSnapshot, curr: PackageSnapshot) -> dict[str, Any]:
        added = []
        removed = []
        prev_kinds = prev.dependencies.by_kind()
        for kind, curr_deps in curr.dependencies.by_kind().items():
            prev_deps = prev_kinds[kind]
            added.extend(
                {"name": n, "version": v, "type": kind}
                for n, v in curr_deps.items()
                if n not in prev_deps
            )
            removed.extend(
                {"name": n, "version": v, "type": kind}
                for n, v in prev_deps.items()
                if n not in curr_deps
            )
        return {
            "added": added,
            "removed": removed,
            "total_added": len(added),
            "total_removed": len(removed),
        }

    def detect_version_jumps(self, versions: list[str]) -> list[tuple[str, str, VersionJump]]:
        """Scan consecutive parseable versions for unusual jumps.

        Args:
            versions: Version strings in ascending order.
        """
        parseable = [v for v in versions if parse_version(v) is not None]
        jumps = []
        for prev, curr in zip(parseable, parseable[1:]):
            jump = self.analyze_version_jump(prev, curr)
            if jump.is_unusual:
                jumps.append((prev, curr, jump))
        return jumps

    def analyze_version_jump(self, prev_version: str, curr_version: str) -> VersionJump:
        """Classify the step from one version to the next.

        A major jump is a major delta of at least ``version_jump_threshold``.
        A minor jump is a minor delta above five within the same major.
        Patch deltas are never unusual.
        """
        prev = parse_version(prev_version)
        curr = parse_version(curr_version)
        if prev is None or curr is None:
            return VersionJump(False)

        major_delta = curr.major - prev.major
        if major_delta >= self.version_jump_threshold:
            return VersionJump(True, "major-jump", major_delta)

        minor_delta = curr.minor - prev.minor
        if major_delta == 0 and minor_delta > MINOR_SKIP_THRESHOLD:
            return VersionJump(True, "minor-jump", minor_delta)

        return VersionJump(False)

    @staticmethod
    def _risk_score(findings: list[dict[str, Any]]) -> tuple[int, bool]:
        risk = 0
        has_high_risk = False
        for finding in findings:
            if finding.get("type") == "version-jump":
                risk += 1
                continue

            changes = finding.get("changes") or {}
            size_change = changes.get("size_change")
            if size_change:
                if size_change["severity"] == "high":
                    risk += 3
                    has_high_risk = True
                else:
                    risk += 1

            script_changes = changes.get("script_changes")
            if script_changes and script_changes["new_suspicious_scripts"]:
                risk += 2 * len(script_changes["new_suspicious_scripts"])
                has_high_risk = True
            elif script_changes:
                risk += 1

            if changes.get("dependency_changes"):
                risk += 1
        return risk, has_high_risk
