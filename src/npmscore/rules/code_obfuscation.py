"""Code obfuscation rule: encoded payloads and high-entropy source lines."""

import logging
import math
import re
from typing import Any

from npmscore.errors import ArchiveError
from npmscore.models.schemas import PackageSnapshot, RiskLevel, RuleResult
from npmscore.rules.base import BaseRule
from npmscore.rules.content import TarballSource, is_minified, iter_js_sources, shannon_entropy

logger = logging.getLogger(__name__)

# (pattern, type, severity, description); tuned to keep legitimate libraries quiet
OBFUSCATION_PATTERNS = (
    (re.compile(r"['\"][A-Za-z0-9+/=]{200,}['\"]"), "long-base64", "critical",
     "Very long base64-encoded string detected"),
    (re.compile(r"\\x[0-9a-fA-F]{2}(?:\\x[0-9a-fA-F]{2}){30,}"), "hex-encoding", "high",
     "Long hex-encoded string sequence"),
    (re.compile(r"\beval\s*\(\s*[a-zA-Z_$][a-zA-Z0-9_$]*\s*\)"), "eval-dynamic", "high",
     "eval() with variable (potential code injection)"),
    (re.compile(r"\beval\s*\([^)]*\+[^)]*\)"), "eval-concat", "critical",
     "eval() with concatenation (code injection risk)"),
    (re.compile(r"new\s+Function\s*\([^)]*\+[^)]*\)"), "function-constructor-concat", "critical",
     "Function constructor with concatenation"),
    (re.compile(r"\b[_$][a-zA-Z0-9_$]{40,}\b"), "obfuscated-names", "medium",
     "Heavily obfuscated variable names"),
    (re.compile(r"\[['\"][^'\"]+['\"](?:\s*,\s*['\"][^'\"]+['\"]){20,}\]"), "string-array", "medium",
     "Large string array (potential obfuscation)"),
    (re.compile(r"String\.fromCharCode\s*\([^)]{50,}\)"), "charcode", "high",
     "String.fromCharCode with many codes (deobfuscation)"),
    (re.compile(r"Buffer\.from\s*\(\s*[a-zA-Z_$][a-zA-Z0-9_$]*\s*,\s*['\"]base64['\"]"), "buffer-base64",
     "medium", "Buffer.from base64 with variable"),
)

ENTROPY_MIN_LINE_LENGTH = 80
ENTROPY_THRESHOLD = 5.2
MAX_FINDINGS_PER_FILE = 20


def scan_for_obfuscation(content: str, path: str) -> list[dict[str, Any]]:
    """Match obfuscation patterns and high-entropy lines in one source file."""
    findings: list[dict[str, Any]] = []
    for pattern, kind, severity, description in OBFUSCATION_PATTERNS:
        match = pattern.search(content)
        if match:
            findings.append({
                "file": path,
                "type": kind,
                "severity": severity,
                "description": description,
                "match": match.group(0)[:100],
            })

    for line_no, line in enumerate(content.splitlines(), start=1):
        stripped = line.strip()
        if len(stripped) < ENTROPY_MIN_LINE_LENGTH:
            continue
        entropy = shannon_entropy(stripped)
        if entropy >= ENTROPY_THRESHOLD:
            findings.append({
                "file": path,
                "type": "high-entropy",
                "severity": "medium",
                "description": f"High entropy line ({entropy:.2f} bits/char)",
                "line": line_no,
                "entropy": round(entropy, 2),
            })
        if len(findings) >= MAX_FINDINGS_PER_FILE:
            break
    return findings


class CodeObfuscationRule(BaseRule):
    """Scans the published JavaScript for obfuscation techniques."""

    name = "code-obfuscation"
    description = "Detects obfuscated or encoded code in package files"

    def __init__(
        self,
        weight: int = 10,
        tarball: TarballSource | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(weight, enabled)
        self.tarball = tarball

    async def _evaluate(self, snapshot: PackageSnapshot) -> RuleResult:
        if not snapshot.dist.tarball:
            return self.no_risk("No tarball URL available")
        if self.tarball is None:
            return self.no_risk("No tarball analyzer configured")

        findings: list[dict[str, Any]] = []
        minified: list[str] = []
        scanned = 0
        try:
            async with self.tarball.open_tarball(snapshot.dist.tarball, snapshot.name) as archive:
                async for path, content in iter_js_sources(self.tarball, archive):
                    # Pattern matching on minified bundles is mostly noise
                    if is_minified(content):
                        minified.append(path)
                        continue
                    scanned += 1
                    findings.extend(scan_for_obfuscation(content, path))
        except ArchiveError as e:
            logger.warning(f"Could not analyze tarball for {snapshot.name}: {e}")
            return self.no_risk("Could not analyze tarball", error=str(e))

        level = self._risk_level(findings)
        if level == RiskLevel.HIGH:
            deduction = self.weight
        elif level == RiskLevel.MEDIUM:
            deduction = math.floor(self.weight * 0.5)
        else:
            deduction = 0

        return RuleResult(
            deduction=deduction,
            details={
                "findings": findings,
                "files_scanned": scanned,
                "minified_files": minified,
                "has_minified_code": bool(minified),
            },
            risk_level=level,
        )

    @staticmethod
    def _risk_level(findings: list[dict[str, Any]]) -> RiskLevel:
        severities = {f["severity"] for f in findings}
        if severities & {"critical", "high"}:
            return RiskLevel.HIGH
        if "medium" in severities:
            return RiskLevel.MEDIUM
        return RiskLevel.NONE
