"""Configuration loading for npm-security-score.

Settings are resolved in three layers, later layers winning:

1. Built-in defaults (the pydantic model defaults below)
2. A JSON config file passed with ``--config``
3. Environment variables prefixed with ``NPM_SECURITY_SCORE_``, using ``__``
   to separate nested keys, e.g. ``NPM_SECURITY_SCORE_SCORING__BASE_SCORE=90``
   or ``NPM_SECURITY_SCORE_RULES__UPDATE_BEHAVIOR__ENABLED=false``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from npmscore.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "NPM_SECURITY_SCORE_"
ENV_NESTING = "__"


class ScoringConfig(BaseModel):
    """Score range used by the calculator."""

    base_score: float = Field(default=100, ge=0)
    min_score: float = 0
    max_score: float = 100

    @model_validator(mode="after")
    def _check_range(self) -> ScoringConfig:
        if self.min_score >= self.max_score:
            raise ValueError("scoring.min_score must be less than scoring.max_score")
        return self


class RuleToggle(BaseModel):
    """Enable flag and weight for a deduction rule."""

    enabled: bool = True
    weight: int = Field(default=10, ge=0)


class BonusToggle(BaseModel):
    """Enable flag and bonus for a bonus rule."""

    enabled: bool = True
    bonus: int = Field(default=10, ge=0)


class UpdateBehaviorConfig(RuleToggle):
    """Thresholds for the update-behavior rule."""

    weight: int = Field(default=10, ge=0)
    size_increase_threshold: float = Field(default=0.5, gt=0)
    max_versions_to_analyze: int = Field(default=10, ge=2)
    version_jump_threshold: int = Field(default=2, ge=1)


class CommunitySignalsConfig(RuleToggle):
    """Thresholds for the community-signals rule."""

    weight: int = Field(default=5, ge=0)
    inactive_threshold_days: int = 180
    low_activity_threshold_days: int = 90
    min_commits_per_month: float = 1


class RulesConfig(BaseModel):
    """Per-rule configuration."""

    lifecycle_script_risk: RuleToggle = Field(default_factory=lambda: RuleToggle(weight=30))
    external_network_calls: RuleToggle = Field(default_factory=lambda: RuleToggle(weight=20))
    maintainer_security: RuleToggle = Field(default_factory=lambda: RuleToggle(weight=15))
    code_obfuscation: RuleToggle = Field(default_factory=lambda: RuleToggle(weight=10))
    advisory_history: RuleToggle = Field(default_factory=lambda: RuleToggle(weight=15))
    update_behavior: UpdateBehaviorConfig = Field(default_factory=UpdateBehaviorConfig)
    community_signals: CommunitySignalsConfig = Field(default_factory=CommunitySignalsConfig)
    verified_publisher: BonusToggle = Field(default_factory=BonusToggle)
    signed_releases: BonusToggle = Field(default_factory=BonusToggle)
    sbom_detection: BonusToggle = Field(default_factory=BonusToggle)


class NpmApiConfig(BaseModel):
    registry: str = "https://registry.npmjs.org"
    timeout: float = 30.0


class GitHubApiConfig(BaseModel):
    base_url: str = "https://api.github.com"
    token: str | None = None
    timeout: float = 30.0


class AdvisoryApiConfig(BaseModel):
    osv_url: str = "https://api.osv.dev/v1"
    github_advisory_url: str = "https://api.github.com/advisories"
    timeout: float = 30.0


class ApiConfig(BaseModel):
    npm: NpmApiConfig = Field(default_factory=NpmApiConfig)
    github: GitHubApiConfig = Field(default_factory=GitHubApiConfig)
    advisory: AdvisoryApiConfig = Field(default_factory=AdvisoryApiConfig)


class CacheConfig(BaseModel):
    enabled: bool = True
    ttl_seconds: float = 3600.0


class TarballConfig(BaseModel):
    """Limits for tarball download and extraction."""

    temp_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "npm-security-score"
    )
    timeout: float = 60.0
    max_file_size: int = 50 * 1024 * 1024
    max_total_size: int = 250 * 1024 * 1024


class Settings(BaseModel):
    """Root configuration object."""

    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    tarball: TarballConfig = Field(default_factory=TarballConfig)


def merge_config(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_config(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _parse_env_value(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def config_from_env(env: Mapping[str, str]) -> dict[str, Any]:
    """Build a nested config dict from prefixed environment variables."""
    result: dict[str, Any] = {}
    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in key[len(ENV_PREFIX):].split(ENV_NESTING) if part]
        if not path:
            continue
        current = result
        for part in path[:-1]:
            current = current.setdefault(part, {})
            if not isinstance(current, dict):
                raise ConfigError(f"Conflicting environment override for {key}")
        current[path[-1]] = _parse_env_value(value)
    return result


def config_from_file(path: Path) -> dict[str, Any]:
    """Read a JSON config file."""
    path = Path(path)
    if path.suffix.lower() != ".json":
        raise ConfigError(f"Unsupported config file format: {path.suffix or '(none)'}")
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def load_settings(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Load settings from defaults, an optional JSON file and the environment.

    Args:
        path: Optional JSON config file.
        env: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Validated Settings.

    Raises:
        ConfigError: If the file cannot be read or the result fails validation.
    """
    env = os.environ if env is None else env
    data: dict[str, Any] = {}

    if path is not None:
        data = merge_config(data, config_from_file(path))
        logger.debug(f"Loaded config file {path}")

    env_overrides = config_from_env(env)
    if env_overrides:
        data = merge_config(data, env_overrides)
        logger.debug(f"Applied environment overrides: {sorted(env_overrides)}")

    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if not settings.api.github.token and env.get("GITHUB_TOKEN"):
        settings.api.github.token = env["GITHUB_TOKEN"]

    return settings
