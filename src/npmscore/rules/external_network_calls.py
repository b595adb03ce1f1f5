"""External network calls rule: outbound network capability in package code."""

import logging
import re
from typing import Any

from npmscore.errors import ArchiveError
from npmscore.models.schemas import PackageSnapshot, RuleResult
from npmscore.rules.base import BaseRule, tiered_deduction
from npmscore.rules.content import TarballSource, is_minified, iter_js_sources

logger = logging.getLogger(__name__)

NETWORK_MODULES = (
    "http", "https", "http2", "net", "tls", "dgram", "dns",
    "axios", "node-fetch", "request", "got", "undici", "ws", "socket.io-client",
)
_MODULES = "|".join(re.escape(m) for m in NETWORK_MODULES)

# kind -> patterns; a kind counts once however often it matches
NETWORK_SIGNALS = {
    "network-module": (
        re.compile(rf"require\s*\(\s*['\"](?:node:)?(?:{_MODULES})['\"]\s*\)"),
        re.compile(rf"\bfrom\s+['\"](?:node:)?(?:{_MODULES})['\"]"),
        re.compile(rf"\bimport\s*\(\s*['\"](?:node:)?(?:{_MODULES})['\"]\s*\)"),
    ),
    "fetch-api": (
        re.compile(r"\bfetch\s*\("),
        re.compile(r"\bXMLHttpRequest\b"),
    ),
    "raw-socket": (
        re.compile(r"\bnet\.(?:connect|createConnection|Socket)\b"),
        re.compile(r"\bdgram\.createSocket\b"),
        re.compile(r"\bnew\s+WebSocket\s*\("),
    ),
    "hardcoded-url": (
        re.compile(r"['\"]https?://[^'\"]{10,}['\"]"),
    ),
    "hardcoded-ip": (
        re.compile(r"['\"](?:https?://)?(?!127\.0\.0\.1|0\.0\.0\.0)(?:\d{1,3}\.){3}\d{1,3}(?::\d+)?[/'\"]"),
    ),
    "shell-network": (
        re.compile(r"['\"](?:curl|wget|nc|netcat)\s+[^'\"]+['\"]"),
        re.compile(r"\b(?:sh|bash|exec|spawn|system)\s*\([^)]*\b(?:curl|wget|nc|netcat)\b"),
    ),
}

# Risk contributed by each distinct signal kind
SIGNAL_WEIGHTS = {
    "network-module": 1.0,
    "fetch-api": 1.0,
    "raw-socket": 1.0,
    "hardcoded-url": 0.5,
    "hardcoded-ip": 2.0,
    "shell-network": 2.0,
}

MAX_EXAMPLES_PER_KIND = 5


def scan_for_network_calls(content: str) -> dict[str, str]:
    """Return the first match for each signal kind present in ``content``."""
    found = {}
    for kind, patterns in NETWORK_SIGNALS.items():
        for pattern in patterns:
            match = pattern.search(content)
            if match:
                found[kind] = match.group(0)[:100]
                break
    return found


class ExternalNetworkCallsRule(BaseRule):
    """Deducts for network capability found in the published JavaScript."""

    name = "external-network-calls"
    description = "Detects outbound network calls and hard-coded endpoints in package code"

    def __init__(
        self,
        weight: int = 20,
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

        signals: dict[str, list[dict[str, str]]] = {}
        scanned = 0
        try:
            async with self.tarball.open_tarball(snapshot.dist.tarball, snapshot.name) as archive:
                async for path, content in iter_js_sources(self.tarball, archive):
                    if is_minified(content):
                        continue
                    scanned += 1
                    for kind, match in scan_for_network_calls(content).items():
                        examples = signals.setdefault(kind, [])
                        if len(examples) < MAX_EXAMPLES_PER_KIND:
                            examples.append({"file": path, "match": match})
        except ArchiveError as e:
            logger.warning(f"Could not analyze tarball for {snapshot.name}: {e}")
            return self.no_risk("Could not analyze tarball", error=str(e))

        total_risk = sum(SIGNAL_WEIGHTS[kind] for kind in signals)
        deduction, level = tiered_deduction(self.weight, total_risk, full=4, partial=3, minimal=2)

        findings: list[dict[str, Any]] = [
            {"type": kind, "occurrences": examples} for kind, examples in signals.items()
        ]
        return RuleResult(
            deduction=deduction,
            details={
                "findings": findings,
                "signal_kinds": sorted(signals),
                "total_risk": total_risk,
                "files_scanned": scanned,
            },
            risk_level=level,
        )
