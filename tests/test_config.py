"""Tests for settings loading."""

import json

import pytest

from npmscore.config import Settings, config_from_env, load_settings, merge_config
from npmscore.errors import ConfigError


def test_defaults():
    settings = load_settings(env={})

    assert settings.scoring.base_score == 100
    assert settings.rules.lifecycle_script_risk.weight == 30
    assert settings.rules.external_network_calls.weight == 20
    assert settings.rules.community_signals.weight == 5
    assert settings.rules.sbom_detection.bonus == 10
    assert settings.api.npm.registry == "https://registry.npmjs.org"
    assert settings.api.github.token is None


def test_json_file_overrides_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "scoring": {"base_score": 90},
        "rules": {"update_behavior": {"enabled": False, "size_increase_threshold": 1.0}},
    }))

    settings = load_settings(path, env={})

    assert settings.scoring.base_score == 90
    assert settings.scoring.max_score == 100
    assert settings.rules.update_behavior.enabled is False
    assert settings.rules.update_behavior.size_increase_threshold == 1.0
    assert settings.rules.update_behavior.weight == 10


def test_environment_wins_over_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"scoring": {"base_score": 90}}))
    env = {
        "NPM_SECURITY_SCORE_SCORING__BASE_SCORE": "80",
        "NPM_SECURITY_SCORE_RULES__SIGNED_RELEASES__ENABLED": "false",
        "UNRELATED": "1",
    }

    settings = load_settings(path, env=env)

    assert settings.scoring.base_score == 80
    assert settings.rules.signed_releases.enabled is False


def test_github_token_from_environment():
    settings = load_settings(env={"GITHUB_TOKEN": "ghp_test"})

    assert settings.api.github.token == "ghp_test"


def test_configured_token_is_not_replaced():
    env = {"GITHUB_TOKEN": "ghp_env", "NPM_SECURITY_SCORE_API__GITHUB__TOKEN": "ghp_cfg"}

    assert load_settings(env=env).api.github.token == "ghp_cfg"


@pytest.mark.parametrize("filename", ["config.yaml", "config"])
def test_unsupported_file_format(tmp_path, filename):
    path = tmp_path / filename
    path.write_text("{}")

    with pytest.raises(ConfigError, match="Unsupported config file format"):
        load_settings(path, env={})


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_settings(tmp_path / "nope.json", env={})


def test_invalid_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError, match="Invalid JSON"):
        load_settings(path, env={})


def test_non_object_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2]")

    with pytest.raises(ConfigError, match="JSON object"):
        load_settings(path, env={})


def test_invalid_score_range(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"scoring": {"min_score": 50, "max_score": 50}}))

    with pytest.raises(ConfigError, match="min_score"):
        load_settings(path, env={})


def test_negative_weight_rejected():
    with pytest.raises(ConfigError):
        load_settings(env={"NPM_SECURITY_SCORE_RULES__CODE_OBFUSCATION__WEIGHT": "-1"})


def test_config_from_env_nests_keys():
    env = {
        "NPM_SECURITY_SCORE_CACHE__ENABLED": "TRUE",
        "NPM_SECURITY_SCORE_API__NPM__TIMEOUT": "5",
    }

    assert config_from_env(env) == {
        "cache": {"enabled": True},
        "api": {"npm": {"timeout": "5"}},
    }


def test_config_from_env_conflict():
    env = {
        "NPM_SECURITY_SCORE_CACHE": "off",
        "NPM_SECURITY_SCORE_CACHE__ENABLED": "false",
    }

    with pytest.raises(ConfigError, match="Conflicting"):
        config_from_env(env)


def test_merge_config_is_recursive():
    base = {"a": {"b": 1, "c": 2}, "d": 3}

    merged = merge_config(base, {"a": {"b": 10}, "e": 4})

    assert merged == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}
    assert base["a"]["b"] == 1


def test_settings_model_is_usable_without_loader():
    assert Settings().cache.ttl_seconds == 3600.0
