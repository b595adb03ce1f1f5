"""Tests for the advisory client and the advisory history rule."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from npmscore.analyzers.advisories import (
    AdvisoryClient,
    deduplicate_advisories,
    normalize_severity,
)
from npmscore.errors import InvalidInputError
from npmscore.models.schemas import Advisory, RiskLevel
from npmscore.rules.advisory_history import AdvisoryHistoryRule

OSV_RESPONSE = {
    "vulns": [
        {
            "id": "GHSA-aaaa-bbbb-cccc",
            "summary": "Prototype pollution",
            "aliases": ["CVE-2024-0001"],
            "database_specific": {"severity": "HIGH"},
            "affected": [{"ranges": [{"events": [{"introduced": "0"}, {"fixed": "1.2.3"}]}]}],
            "published": "2024-01-01T00:00:00Z",
        },
        {"id": "MAL-2024-1", "summary": "Malicious code in pkg"},
    ]
}

GITHUB_RESPONSE = [
    {
        "ghsa_id": "GHSA-aaaa-bbbb-cccc",
        "cve_id": "CVE-2024-0001",
        "summary": "Duplicate of the OSV entry",
        "severity": "high",
    },
    {
        "ghsa_id": "GHSA-zzzz-yyyy-xxxx",
        "summary": "ReDoS",
        "severity": "moderate",
        "html_url": "https://github.com/advisories/GHSA-zzzz-yyyy-xxxx",
        "vulnerabilities": [
            {
                "package": {"name": "pkg"},
                "vulnerable_version_range": "< 2.0.0",
                "first_patched_version": {"identifier": "2.0.0"},
            }
        ],
    },
]


def advisory_client(osv=OSV_RESPONSE, gh=GITHUB_RESPONSE, osv_status=200, calls=None):
    calls = [] if calls is None else calls

    def handler(request):
        calls.append(request.url.host)
        if request.url.host == "api.osv.dev":
            body = json.loads(request.content)
            assert body["package"] == {"name": "pkg", "ecosystem": "npm"}
            return httpx.Response(osv_status, json=osv)
        assert request.url.params["ecosystem"] == "npm"
        return httpx.Response(200, json=gh)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AdvisoryClient(client=client)


async def test_merges_and_deduplicates_sources():
    advisories = await advisory_client().get_advisories("pkg")

    ids = [a.id for a in advisories]
    assert ids == ["MAL-2024-1", "GHSA-aaaa-bbbb-cccc", "GHSA-zzzz-yyyy-xxxx"]
    malware = advisories[0]
    assert malware.is_malware
    assert malware.severity == "critical"
    osv_entry = advisories[1]
    assert osv_entry.source == "osv"
    assert osv_entry.cve == "CVE-2024-0001"
    assert osv_entry.patched_versions == "1.2.3"
    github_entry = advisories[2]
    assert github_entry.severity == "moderate"
    assert github_entry.vulnerable_versions == "< 2.0.0"
    assert github_entry.patched_versions == "2.0.0"


async def test_results_are_cached():
    calls = []
    client = advisory_client(calls=calls)

    await client.get_advisories("pkg")
    await client.get_advisories("pkg")

    assert len(calls) == 2
    assert client.cache_stats()["size"] == 1
    client.clear_cache()
    await client.get_advisories("pkg")
    assert len(calls) == 4


async def test_expired_entries_are_evicted():
    calls = []
    client = advisory_client(calls=calls)

    await client.get_advisories("pkg", "1.0.0")
    client.cache_ttl = 0
    await client.get_advisories("pkg", "2.0.0")

    assert client.cache_stats()["entries"] == ["pkg@2.0.0"]
    await client.get_advisories("pkg", "2.0.0")
    assert len(calls) == 6


async def test_failing_source_is_skipped():
    advisories = await advisory_client(osv_status=500).get_advisories("pkg")

    assert [a.id for a in advisories] == ["GHSA-aaaa-bbbb-cccc", "GHSA-zzzz-yyyy-xxxx"]


async def test_empty_name_rejected():
    with pytest.raises(InvalidInputError):
        await advisory_client().get_advisories("")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("CRITICAL", "critical"),
        ("Medium", "moderate"),
        ("low", "low"),
        (9.8, "critical"),
        (7.5, "high"),
        ("5.0", "moderate"),
        (None, "unknown"),
        ("weird", "unknown"),
    ],
)
def test_normalize_severity(value, expected):
    assert normalize_severity(value) == expected


def test_deduplicate_by_alias():
    first = Advisory(id="GHSA-1", source="osv", package="p", aliases=["CVE-1"])
    second = Advisory(id="CVE-1", source="github", package="p")
    third = Advisory(id="GHSA-2", source="github", package="p", cve="CVE-1")

    assert deduplicate_advisories([first, second, third]) == [first]


class FakeAdvisories:
    def __init__(self, advisories=None, error=None):
        self.advisories = advisories or []
        self.error = error

    async def get_advisories(self, name, version=None):
        if self.error:
            raise self.error
        return self.advisories


def advisory(severity="low", malware=False, published=None):
    return Advisory(
        id=f"ADV-{severity}",
        source="osv",
        package="pkg",
        severity=severity,
        is_malware=malware,
        published=published,
    )


@pytest.mark.parametrize(
    ("advisories", "deduction", "level"),
    [
        ([advisory(malware=True, severity="critical")], 15, RiskLevel.HIGH),
        ([advisory("critical")], 13, RiskLevel.HIGH),
        ([advisory("high"), advisory("low")], 11, RiskLevel.MEDIUM),
        ([advisory("moderate")], 7, RiskLevel.MEDIUM),
        ([advisory("low")], 3, RiskLevel.LOW),
    ],
)
async def test_advisory_rule_deductions(make_snapshot, advisories, deduction, level):
    rule = AdvisoryHistoryRule(weight=15, advisories=FakeAdvisories(advisories))

    result = await rule.evaluate(make_snapshot())

    assert result.deduction == deduction
    assert result.risk_level == level


async def test_recent_low_advisory_is_medium(make_snapshot):
    recent = advisory("low", published=datetime.now(timezone.utc) - timedelta(days=2))
    rule = AdvisoryHistoryRule(weight=15, advisories=FakeAdvisories([recent]))

    result = await rule.evaluate(make_snapshot())

    assert result.details["analysis"]["recent_advisories"] == 1
    assert result.risk_level == RiskLevel.MEDIUM


async def test_no_advisories(make_snapshot):
    rule = AdvisoryHistoryRule(weight=15, advisories=FakeAdvisories([]))

    result = await rule.evaluate(make_snapshot())

    assert result.deduction == 0
    assert result.details["total_advisories"] == 0


async def test_source_failure_is_error_level(make_snapshot):
    rule = AdvisoryHistoryRule(weight=15, advisories=FakeAdvisories(error=RuntimeError("down")))

    result = await rule.evaluate(make_snapshot())

    assert result.deduction == 0
    assert result.risk_level == RiskLevel.ERROR
    assert result.details["reason"] == "Failed to fetch advisories"
