"""Report builders for score results: JSON, Markdown and rich console output."""

from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from npmscore import __version__
from npmscore.models.schemas import RiskLevel, RuleOutcome, ScoreResult
from npmscore.scoring.bands import BLOCK, HIGH_RISK, REVIEW, SAFE, get_score_interpretation

REPORT_SCHEMA = "https://npm-security-score.schema.json"
TOOL_NAME = "npm-security-score"

RULE_RECOMMENDATIONS: dict[str, dict[str, Any]] = {
    "lifecycle-script-risk": {
        "priority": "high",
        "action": "review",
        "message": "Review lifecycle scripts for suspicious commands. Consider removing or replacing risky scripts.",
        "remediation": [
            "Review all preinstall/postinstall scripts",
            "Remove any scripts that download or execute remote code",
            "Verify script contents match expected behavior",
        ],
    },
    "external-network-calls": {
        "priority": "high",
        "action": "review",
        "message": "Package makes external network calls. Verify these are legitimate and secure.",
        "remediation": [
            "Review network call destinations",
            "Ensure HTTPS is used for all connections",
            "Verify network calls are necessary",
        ],
    },
    "maintainer-security": {
        "priority": "medium",
        "action": "review",
        "message": "Review maintainer security practices. Consider contacting maintainers about security improvements.",
        "remediation": [
            "Check repository security policy",
            "Verify maintainer account security",
        ],
    },
    "code-obfuscation": {
        "priority": "medium",
        "action": "review",
        "message": "Package contains obfuscated code. Review source code if available.",
        "remediation": [
            "Compare published files with the source repository",
            "Consider alternatives if source is unavailable",
        ],
    },
    "advisory-history": {
        "priority": "high",
        "action": "update",
        "message": "Package has security advisories. Update to patched version if available.",
        "remediation": [
            "Check for updated versions",
            "Review advisory details",
        ],
    },
    "update-behavior": {
        "priority": "medium",
        "action": "review",
        "message": "Suspicious update patterns detected. Review recent changes carefully.",
        "remediation": [
            "Review recent version changes",
            "Check changelog for unexpected updates",
        ],
    },
    "community-signals": {
        "priority": "low",
        "action": "monitor",
        "message": "Repository shows low activity. Monitor for updates and security improvements.",
        "remediation": [
            "Monitor repository activity",
            "Check for security policy updates",
        ],
    },
}

RISK_STYLES = {
    RiskLevel.NONE: "green",
    RiskLevel.LOW: "yellow",
    RiskLevel.MEDIUM: "magenta",
    RiskLevel.HIGH: "red",
    RiskLevel.ERROR: "bold red",
}


def format_rule_name(name: str) -> str:
    """``lifecycle-script-risk`` -> ``Lifecycle Script Risk``."""
    return " ".join(part.capitalize() for part in name.split("-"))


def score_style(score: float) -> str:
    if score >= SAFE.min_score:
        return "green"
    if score >= REVIEW.min_score:
        return "yellow"
    if score >= HIGH_RISK.min_score:
        return "magenta"
    return "red"


def build_summary(result: ScoreResult, base_score: float = 100) -> dict[str, Any]:
    band = result.band.key
    return {
        "final_score": result.score,
        "base_score": base_score,
        "total_deductions": result.total_deductions,
        "total_bonuses": result.total_bonuses,
        "issues_found": sum(1 for r in result.rule_results if r.deduction > 0),
        "rules_evaluated": len(result.rule_results),
        "risk_level": band,
        "is_safe": band == SAFE.key,
        "requires_review": band == REVIEW.key,
        "is_high_risk": band == HIGH_RISK.key,
        "should_block": band == BLOCK.key,
    }


def build_recommendations(result: ScoreResult) -> list[dict[str, Any]]:
    recommendations = []
    band = result.band.key
    if band == BLOCK.key:
        recommendations.append({
            "priority": "critical",
            "action": "block",
            "message": "Package should be blocked in CI/CD. Significant security concerns detected.",
        })
    elif band == HIGH_RISK.key:
        recommendations.append({
            "priority": "high",
            "action": "review",
            "message": "Thorough security review recommended before use.",
        })
    elif band == REVIEW.key:
        recommendations.append({
            "priority": "medium",
            "action": "review",
            "message": "Review recommended. Some security concerns detected.",
        })

    for outcome in result.rule_results:
        if outcome.deduction > 0 and outcome.rule_name in RULE_RECOMMENDATIONS:
            recommendations.append({"rule": outcome.rule_name, **RULE_RECOMMENDATIONS[outcome.rule_name]})
    return recommendations


def build_json_report(result: ScoreResult) -> dict[str, Any]:
    """JSON-ready report for one score result."""
    return {
        "$schema": REPORT_SCHEMA,
        "version": __version__,
        "timestamp": result.timestamp.isoformat(),
        "package": {"name": result.package_name, "version": result.package_version},
        "score": {
            "value": result.score,
            "band": result.band.key,
            "band_label": result.band.label,
            "band_description": result.band.description,
            "interpretation": get_score_interpretation(result.score),
        },
        "rules": [
            {
                "name": r.rule_name,
                "deduction": r.deduction,
                "bonus": r.bonus,
                "risk_level": r.risk_level.value,
                "details": r.details,
            }
            for r in result.rule_results
        ],
        "summary": build_summary(result),
        "recommendations": build_recommendations(result),
        "metadata": {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "tool": TOOL_NAME,
            "tool_version": __version__,
        },
    }


def build_comparison_report(first: ScoreResult, second: ScoreResult) -> dict[str, Any]:
    return {
        "package1": build_json_report(first),
        "package2": build_json_report(second),
        "comparison": {
            "score_difference": round(first.score - second.score, 2),
            "recommendation": _preferred(first, second),
        },
    }


def _preferred(first: ScoreResult, second: ScoreResult) -> str | None:
    if first.score == second.score:
        return None
    return first.package_name if first.score > second.score else second.package_name


def score_bar(score: float, width: int = 20) -> str:
    filled = round(max(0.0, min(100.0, score)) / 100 * width)
    return f"{'█' * filled}{'░' * (width - filled)} {round(score)}%"


def _finding_lines(outcome: RuleOutcome) -> list[str]:
    lines = []
    for finding in outcome.details.get("findings") or []:
        if not isinstance(finding, dict):
            continue
        label = finding.get("hook") or finding.get("type") or "finding"
        description = finding.get("description")
        if finding.get("script"):
            lines.append(f"- **{label}**: `{finding['script'][:80]}`")
            for issue in finding.get("issues") or []:
                lines.append(f"  - {issue.get('type')}: {issue.get('description')}")
        else:
            lines.append(f"- **{label}**" + (f": {description}" if description else ""))
    return lines


def render_markdown(result: ScoreResult) -> str:
    """Markdown report, suitable for PR comments."""
    summary = build_summary(result)
    lines = [
        "# Security Score Report",
        "",
        f"**Package:** `{result.package_name}@{result.package_version}`",
        f"**Security Score:** {result.score:g}/100 {result.band.emoji} {result.band.label}",
        "",
        f"`{score_bar(result.score)}`",
        "",
        f"> {get_score_interpretation(result.score)}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "| --- | --- |",
        f"| Security Score | {result.score:g}/100 |",
        f"| Issues Found | {summary['issues_found']} |",
        f"| Rules Evaluated | {summary['rules_evaluated']} |",
        f"| Total Deductions | {summary['total_deductions']:g} |",
        f"| Total Bonuses | {summary['total_bonuses']:g} |",
        "",
        "## Security Analysis",
        "",
    ]

    flagged = [r for r in result.rule_results if r.deduction > 0 or r.risk_level == RiskLevel.ERROR]
    if not flagged:
        lines.extend(["No security issues detected.", ""])
    for outcome in flagged:
        lines.append(f"### {format_rule_name(outcome.rule_name)}")
        lines.append("")
        lines.append(f"- Deduction: -{outcome.deduction:g} points")
        lines.append(f"- Risk Level: {outcome.risk_level.value}")
        if outcome.risk_level == RiskLevel.ERROR and outcome.details.get("error"):
            lines.append(f"- Error: {outcome.details['error']}")
        lines.extend(_finding_lines(outcome))
        lines.append("")

    recommendations = build_recommendations(result)
    if recommendations:
        lines.extend(["## Recommendations", ""])
        for rec in recommendations:
            action = format_rule_name(rec["action"])
            lines.append(f"- **{action} Package** ({rec['priority']}): {rec['message']}")
            for step in rec.get("remediation", []):
                lines.append(f"  - {step}")
        lines.append("")

    lines.append(f"_Generated by {TOOL_NAME} {__version__}_")
    return "\n".join(lines) + "\n"


def render_comparison_markdown(first: ScoreResult, second: ScoreResult) -> str:
    lines = [
        "# Package Comparison",
        "",
        "| Package | Score | Band |",
        "| --- | --- | --- |",
    ]
    for result in (first, second):
        lines.append(
            f"| `{result.package_name}@{result.package_version}` | {result.score:g}/100 "
            f"| {result.band.emoji} {result.band.label} |"
        )
    lines.append("")
    preferred = _preferred(first, second)
    diff = abs(first.score - second.score)
    if preferred:
        lines.append(f"**Recommendation:** `{preferred}` scores {diff:g} points higher.")
    else:
        lines.append("**Recommendation:** Both packages have the same score.")
    return "\n".join(lines) + "\n"


def print_result(console: Console, result: ScoreResult, verbose: bool = False) -> None:
    """Print a score result as a rich panel plus a rule table."""
    style = score_style(result.score)
    console.print()
    console.print(
        Panel(
            f"[bold][{style}]{result.score:g}[/{style}][/bold] / 100  "
            f"{result.band.emoji} [bold]{result.band.label}[/bold]\n"
            f"[dim]{result.band.description}[/dim]",
            title=f"{result.package_name}@{result.package_version}",
            expand=False,
        )
    )

    shown = [
        r for r in result.rule_results
        if verbose or r.deduction > 0 or r.bonus > 0 or r.risk_level == RiskLevel.ERROR
    ]
    if not shown:
        console.print("[green]✅ No security issues detected[/green]")
        return

    table = Table(title="Rule Results", show_header=True)
    table.add_column("Rule", style="bold")
    table.add_column("Impact", justify="right")
    table.add_column("Risk")
    if verbose:
        table.add_column("Details", max_width=60)

    for outcome in shown:
        if outcome.bonus > 0:
            impact = f"[green]+{outcome.bonus:g}[/green]"
        elif outcome.deduction > 0:
            impact = f"[red]-{outcome.deduction:g}[/red]"
        else:
            impact = "[dim]0[/dim]"
        risk_style = RISK_STYLES.get(outcome.risk_level, "white")
        row = [outcome.rule_name, impact, f"[{risk_style}]{outcome.risk_level.value}[/{risk_style}]"]
        if verbose:
            row.append(_detail_summary(outcome))
        table.add_row(*row)

    console.print(table)


def _detail_summary(outcome: RuleOutcome) -> str:
    details = outcome.details
    if details.get("error"):
        return str(details["error"])
    if details.get("reason"):
        return str(details["reason"])
    findings = details.get("findings")
    if findings:
        return f"{len(findings)} finding(s)"
    return details.get("description", "")


def print_batch(console: Console, items: list[Any]) -> None:
    """Print a table of batch results with a summary line."""
    table = Table(title="Batch Security Score Report", show_header=True)
    table.add_column("#", style="dim", width=4)
    table.add_column("Package", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Band")

    scores = []
    for i, item in enumerate(items, 1):
        if item.success and item.result is not None:
            result = item.result
            scores.append(result.score)
            style = score_style(result.score)
            table.add_row(
                str(i),
                f"{result.package_name}@{result.package_version}",
                f"[{style}]{result.score:g}[/{style}]",
                f"{result.band.emoji} {result.band.label}",
            )
        else:
            table.add_row(str(i), f"{item.package}@{item.version}", "[red]error[/red]", f"[red]{item.error}[/red]")

    console.print(table)
    failed = len(items) - len(scores)
    summary = f"Total: {len(items)}  Successful: [green]{len(scores)}[/green]"
    if failed:
        summary += f"  Failed: [red]{failed}[/red]"
    if scores:
        average = sum(scores) / len(scores)
        summary += f"  Average Score: {average:.2f}/100"
    console.print(summary)


def print_comparison(console: Console, first: ScoreResult, second: ScoreResult) -> None:
    table = Table(title="Package Comparison", show_header=True)
    table.add_column("Package", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Band")
    for result in (first, second):
        style = score_style(result.score)
        table.add_row(
            f"{result.package_name}@{result.package_version}",
            f"[{style}]{result.score:g}[/{style}]",
            f"{result.band.emoji} {result.band.label}",
        )
    console.print(table)

    preferred = _preferred(first, second)
    if preferred:
        console.print(
            f"Recommendation: [bold]{preferred}[/bold] "
            f"(+{abs(first.score - second.score):g} points)"
        )
    else:
        console.print("[dim]Both packages have the same score.[/dim]")
