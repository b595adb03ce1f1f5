"""Lifecycle script risk rule.

npm runs lifecycle hooks (``preinstall``, ``postinstall``...) automatically
on install, which makes them the most common delivery vector for
supply chain malware. Each hook's command text is matched against
three pattern categories and a command-chaining heuristic.
"""

import logging
import re
from typing import Any

from npmscore.models.schemas import PackageSnapshot, RiskLevel, RuleResult
from npmscore.rules.base import BaseRule, tiered_deduction

logger = logging.getLogger(__name__)

LIFECYCLE_HOOKS = (
    "preinstall",
    "install",
    "postinstall",
    "preuninstall",
    "uninstall",
    "postuninstall",
    "prepublish",
    "prepublishOnly",
    "prepare",
    "prepack",
    "postpack",
)

# Remote code execution. Only the first match counts.
HIGH_RISK_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(?:curl|wget)\s+.*\|\s*(?:sh|bash)\b",
        r"\bhttp.*\|\s*(?:sh|bash)\b",
        r"\beval\s*\(\s*.*http",
        r"\bFunction\s*\(\s*.*http",
    )
)

# Each matching pattern adds one point, unless its only matches sit inside
# the high-risk match.
SUSPICIOUS_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        # Network CLI tools with an argument
        r"\bcurl\s+[^\s]+",
        r"\bwget\s+[^\s]+",
        r"\bhttp\s+[^\s]+",
        r"\bftp\s+[^\s]+",
        r"\bnc\s+[^\s]+",
        r"\bnetcat\s+[^\s]+",
        r"\btelnet\s+[^\s]+",
        # Network client modules
        r"\brequire\s*\(\s*['\"]https?['\"]\s*\)",
        r"\brequire\s*\(\s*['\"](?:request|axios)['\"]\s*\)",
        r"\bfetch\s*\(",
        r"\bXMLHttpRequest",
        r"\bdownload",
        # Dynamic code execution
        r"\beval\s*\(",
        r"\bFunction\s*\(",
        # Process spawning
        r"\bexec\s*\(",
        r"\bexecSync\s*\(",
        r"\bspawn\s*\(",
        r"\bspawnSync\s*\(",
    )
)

# Each pattern with at least one match adds two points.
OBFUSCATION_PATTERNS = (
    re.compile(r"[A-Za-z0-9+/]{50,}={0,2}"),
    re.compile(r"\\x[0-9a-fA-F]{2}"),
    re.compile(r"String\.fromCharCode\s*\(", re.IGNORECASE),
    re.compile(r"\beval\s*\(\s*eval\s*\(", re.IGNORECASE),
    re.compile(r"\b[a-z]\$[a-z0-9]+\$", re.IGNORECASE),
)

CHAIN_PATTERN = re.compile(r"&&|\|\||;")
CHAIN_THRESHOLD = 3


def normalize_script(script: str) -> str:
    """Trim and collapse runs of whitespace."""
    return " ".join(script.split())


def get_lifecycle_scripts(scripts: dict[str, str]) -> dict[str, str]:
    """Select lifecycle hooks with non-empty command text, in hook order."""
    selected = {}
    for hook in LIFECYCLE_HOOKS:
        command = scripts.get(hook)
        if isinstance(command, str) and command.strip():
            selected[hook] = command
    return selected


def _within(span: tuple[int, int], outer: tuple[int, int] | None) -> bool:
    return outer is not None and outer[0] <= span[0] and span[1] <= outer[1]


def script_risk_level(risk: int, is_high_risk: bool) -> RiskLevel:
    if is_high_risk or risk >= 3:
        return RiskLevel.HIGH
    if risk >= 2:
        return RiskLevel.MEDIUM
    if risk >= 1:
        return RiskLevel.LOW
    return RiskLevel.NONE


class LifecycleScriptRiskRule(BaseRule):
    """Flags dangerous commands in npm lifecycle hooks."""

    name = "lifecycle-script-risk"
    description = "Detects risky commands in install-time lifecycle scripts"

    def __init__(self, weight: int = 30, enabled: bool = True) -> None:
        super().__init__(weight, enabled)

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        lifecycle_scripts = get_lifecycle_scripts(snapshot.scripts)
        if not lifecycle_scripts:
            return self.no_risk("No lifecycle scripts found")

        findings = []
        total_risk = 0
        has_high_risk = False

        for hook, script in lifecycle_scripts.items():
            normalized = normalize_script(script)
            analysis = self.analyze_script(normalized)
            if analysis["risk"] <= 0:
                continue

            findings.append({"hook": hook, "script": normalized, **analysis})
            total_risk += analysis["risk"]
            has_high_risk = has_high_risk or analysis["is_high_risk"]
            logger.debug(f"{snapshot.name}: {hook} scored {analysis['risk']}")

        deduction, level = tiered_deduction(self.weight, total_risk, high=has_high_risk)

        return RuleResult(
            deduction=deduction,
            details={
                "findings": findings,
                "total_scripts": len(lifecycle_scripts),
                "risky_scripts": len(findings),
                "total_risk": total_risk,
                "has_high_risk": has_high_risk,
            },
            risk_level=level,
        )

    def analyze_script(self, script: str) -> dict[str, Any]:
        """Score one normalized script.

        Returns:
            Dict with ``risk``, ``risk_level``, ``issues`` and ``is_high_risk``.
        """
        issues: list[dict[str, Any]] = []
        risk = 0
        is_high_risk = False
        high_risk_span = None

        for pattern in HIGH_RISK_PATTERNS:
            match = pattern.search(script)
            if match:
                issues.append({
                    "type": "high-risk-pattern",
                    "pattern": pattern.pattern,
                    "description": "High-risk pattern detected: potential remote code execution",
                    "severity": "high",
                })
                risk += 3
                is_high_risk = True
                high_risk_span = match.span()
                break

        for pattern in SUSPICIOUS_PATTERNS:
            spans = [m.span() for m in pattern.finditer(script)]
            if any(not _within(span, high_risk_span) for span in spans):
                issues.append({
                    "type": "suspicious-command",
                    "pattern": pattern.pattern,
                    "description": "Suspicious command detected in lifecycle script",
                    "severity": "medium",
                })
                risk += 1

        for pattern in OBFUSCATION_PATTERNS:
            matches = pattern.findall(script)
            if matches:
                issues.append({
                    "type": "obfuscation",
                    "pattern": pattern.pattern,
                    "description": "Possible obfuscation detected",
                    "severity": "medium",
                    "matches": len(matches),
                })
                risk += 2

        chain_count = len(CHAIN_PATTERN.findall(script))
        if chain_count >= CHAIN_THRESHOLD:
            issues.append({
                "type": "excessive-chaining",
                "description": "Excessive command chaining detected",
                "severity": "low",
                "chain_count": chain_count,
            })
            risk += 1

        return {
            "risk": risk,
            "risk_level": script_risk_level(risk, is_high_risk).value,
            "issues": issues,
            "is_high_risk": is_high_risk,
        }
