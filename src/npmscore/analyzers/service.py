"""Scoring service: fetches package data and runs the configured rules."""

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from npmscore.adapters.npm import NpmAdapter
from npmscore.analyzers.advisories import AdvisoryClient
from npmscore.analyzers.github import GitHubClient
from npmscore.analyzers.tarball import TarballAnalyzer
from npmscore.config import Settings
from npmscore.errors import InvalidInputError
from npmscore.models.schemas import ScoreResult
from npmscore.rules import (
    AdvisoryHistoryRule,
    CodeObfuscationRule,
    CommunitySignalsRule,
    ExternalNetworkCallsRule,
    LifecycleScriptRiskRule,
    MaintainerSecurityRule,
    SBOMDetectionRule,
    SignedReleasesRule,
    UpdateBehaviorRule,
    VerifiedPublisherRule,
)
from npmscore.scoring.calculator import ScoreCalculator

logger = logging.getLogger(__name__)


class BatchItem(BaseModel):
    """Outcome of scoring one package in a batch."""

    success: bool
    result: ScoreResult | None = None
    package: str | None = None
    version: str | None = None
    error: str | None = None


def parse_package_spec(spec: str) -> tuple[str, str | None]:
    """Split ``name@version`` into its parts.

    Scoped names keep their leading ``@``: ``@scope/pkg@1.0.0`` gives
    ``("@scope/pkg", "1.0.0")`` and ``@scope/pkg`` gives ``("@scope/pkg", None)``.

    Raises:
        InvalidInputError: If the spec has no package name.
    """
    spec = spec.strip()
    at = spec.rfind("@")
    if at > 0:
        name, version = spec[:at], spec[at + 1:] or None
    else:
        name, version = spec, None
    if not name or name == "@":
        raise InvalidInputError(f"Invalid package spec: {spec!r}")
    return name, version


class ScoringService:
    """Builds the rule set from settings and scores packages.

    Use as an async context manager so all clients share one HTTP
    connection pool:

        async with ScoringService(settings) as service:
            result = await service.score_package("lodash")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: NpmAdapter | None = None,
        github: Any | None = None,
        advisories: Any | None = None,
        tarball: Any | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._client: httpx.AsyncClient | None = None
        self._registry = registry
        self._github = github
        self._advisories = advisories
        self._tarball = tarball

    async def __aenter__(self) -> "ScoringService":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.api.npm.timeout,
                headers={"User-Agent": "npm-security-score"},
            )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def registry(self) -> NpmAdapter:
        if self._registry is None:
            api = self.settings.api.npm
            self._registry = NpmAdapter(
                client=self._client, registry_url=api.registry, timeout=api.timeout
            )
        return self._registry

    @property
    def github(self) -> GitHubClient:
        if self._github is None:
            api = self.settings.api.github
            self._github = GitHubClient(
                token=api.token, client=self._client, base_url=api.base_url, timeout=api.timeout
            )
        return self._github

    @property
    def advisories(self) -> AdvisoryClient:
        if self._advisories is None:
            api = self.settings.api.advisory
            self._advisories = AdvisoryClient(
                client=self._client,
                osv_url=api.osv_url,
                github_advisory_url=api.github_advisory_url,
                github_token=self.settings.api.github.token,
                timeout=api.timeout,
                cache_ttl=self.settings.cache.ttl_seconds,
                cache_enabled=self.settings.cache.enabled,
            )
        return self._advisories

    @property
    def tarball(self) -> TarballAnalyzer:
        if self._tarball is None:
            self._tarball = TarballAnalyzer(config=self.settings.tarball, client=self._client)
        return self._tarball

    def create_calculator(self) -> ScoreCalculator:
        """Calculator with every enabled rule registered in evaluation order."""
        rules = self.settings.rules
        calculator = ScoreCalculator(self.settings.scoring)

        if rules.lifecycle_script_risk.enabled:
            calculator.register_rule(LifecycleScriptRiskRule(rules.lifecycle_script_risk.weight))
        if rules.external_network_calls.enabled:
            calculator.register_rule(
                ExternalNetworkCallsRule(rules.external_network_calls.weight, tarball=self.tarball)
            )
        if rules.maintainer_security.enabled:
            calculator.register_rule(
                MaintainerSecurityRule(rules.maintainer_security.weight, github=self.github)
            )
        if rules.code_obfuscation.enabled:
            calculator.register_rule(
                CodeObfuscationRule(rules.code_obfuscation.weight, tarball=self.tarball)
            )
        if rules.advisory_history.enabled:
            calculator.register_rule(
                AdvisoryHistoryRule(rules.advisory_history.weight, advisories=self.advisories)
            )
        if rules.update_behavior.enabled:
            calculator.register_rule(
                UpdateBehaviorRule(
                    rules.update_behavior.weight,
                    registry=self.registry,
                    config=rules.update_behavior,
                )
            )
        if rules.community_signals.enabled:
            calculator.register_rule(
                CommunitySignalsRule(
                    rules.community_signals.weight,
                    github=self.github,
                    config=rules.community_signals,
                )
            )
        if rules.verified_publisher.enabled:
            calculator.register_rule(VerifiedPublisherRule(rules.verified_publisher.bonus))
        if rules.signed_releases.enabled:
            calculator.register_rule(SignedReleasesRule(rules.signed_releases.bonus))
        if rules.sbom_detection.enabled:
            calculator.register_rule(
                SBOMDetectionRule(rules.sbom_detection.bonus, tarball=self.tarball)
            )

        return calculator

    async def score_package(self, name: str, version: str | None = None) -> ScoreResult:
        """Fetch a package version from the registry and score it.

        Raises:
            PackageNotFoundError: If the package or version does not exist.
            FetchError: If the registry request fails.
        """
        logger.info(f"Fetching metadata for {name}{f'@{version}' if version else ''}")
        snapshot = await self.registry.get_package_metadata(name, version)

        logger.info(f"Scoring {snapshot.name}@{snapshot.version}")
        calculator = self.create_calculator()
        return await calculator.calculate_score(snapshot)

    async def score_packages(self, specs: list[str]) -> list[BatchItem]:
        """Score several packages in turn; one failure does not stop the batch."""
        items = []
        for i, spec in enumerate(specs, start=1):
            logger.info(f"[{i}/{len(specs)}] Processing {spec}")
            name, version = spec, None
            try:
                name, version = parse_package_spec(spec)
                result = await self.score_package(name, version)
            except Exception as e:
                logger.warning(f"Failed to score {spec}: {e}")
                items.append(
                    BatchItem(
                        success=False,
                        package=name,
                        version=version or "latest",
                        error=str(e),
                    )
                )
                continue
            items.append(
                BatchItem(success=True, result=result, package=result.package_name, version=result.package_version)
            )
        return items
