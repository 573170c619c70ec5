"""Tests for client configuration loading, interpolation, merge, and redaction.

Validates:
- DifyConfig validation, immutability, replace()
- YAML loading with env fallback and overrides
- {env:VAR} interpolation with allowlist
- Deep merge semantics
- Secret redaction in configs, headers, and strings
"""

import dataclasses
import os
import re
import sys

import pytest

# Ensure adapters/ is on path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from config_loader import (
    REDACTED,
    DifyConfig,
    deep_merge,
    interpolate_config,
    interpolate_value,
    load_config,
    redact_config,
    redact_headers,
    redact_string,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in ("DIFY_CONFIG", "DIFY_BASE_URL", "DIFY_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


# ── DifyConfig ────────────────────────────────────────────────────────


class TestDifyConfig:
    def test_defaults(self):
        config = DifyConfig(base_url="https://api.dify.ai/v1", api_key="app-1")
        assert config.default_response_mode == "blocking"
        assert config.default_user is None
        assert config.extra_headers == {}

    def test_missing_api_key_rejected(self):
        with pytest.raises(ValueError, match="'api_key' is required"):
            DifyConfig(base_url="https://api.dify.ai/v1", api_key="")

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError, match="Unknown response mode"):
            DifyConfig(base_url="https://h/v1", api_key="k", default_response_mode="batch")

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError, match="read_timeout_ms"):
            DifyConfig(base_url="https://h/v1", api_key="k", read_timeout_ms=0)

    def test_frozen(self):
        config = DifyConfig(base_url="https://h/v1", api_key="k")
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.api_key = "other"

    def test_replace_returns_new_value(self):
        config = DifyConfig(base_url="https://h/v1", api_key="k")
        updated = config.replace(default_response_mode="streaming", default_user="alice")
        assert updated.default_response_mode == "streaming"
        assert updated.default_user == "alice"
        assert config.default_response_mode == "blocking"
        assert config.default_user is None

    def test_replace_validates(self):
        config = DifyConfig(base_url="https://h/v1", api_key="k")
        with pytest.raises(ValueError):
            config.replace(default_response_mode="nope")

    def test_extra_headers_detached_from_caller(self):
        headers = {"X-Trace": "1"}
        config = DifyConfig(base_url="https://h/v1", api_key="k", extra_headers=headers)
        headers["X-Trace"] = "2"
        assert config.extra_headers["X-Trace"] == "1"

    def test_timeout_in_seconds(self):
        config = DifyConfig(
            base_url="https://h/v1", api_key="k", connect_timeout_ms=2500, read_timeout_ms=90000
        )
        timeout = config.timeout()
        assert timeout.connect == 2.5
        assert timeout.read == 90.0

    def test_redacted_hides_key(self):
        config = DifyConfig(
            base_url="https://h/v1",
            api_key="app-secret",
            extra_headers={"Authorization": "Bearer x", "X-Trace": "t"},
        )
        redacted = config.redacted()
        assert redacted["api_key"] == REDACTED
        assert redacted["base_url"] == "https://h/v1"
        assert redacted["extra_headers"]["Authorization"] == REDACTED
        assert redacted["extra_headers"]["X-Trace"] == "t"


# ── load_config ───────────────────────────────────────────────────────


class TestLoadConfig:
    def test_from_yaml_with_env_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DIFY_APP_KEY", "app-from-env")
        path = tmp_path / "dify.yaml"
        path.write_text(
            "dify:\n"
            "  base_url: https://api.dify.ai/v1\n"
            "  api_key: '{env:DIFY_APP_KEY}'\n"
            "  default_response_mode: streaming\n"
            "  default_user: alice\n"
            "  extra_headers:\n"
            "    X-Tenant: acme\n"
        )
        config = load_config(str(path))
        assert config.api_key == "app-from-env"
        assert config.default_response_mode == "streaming"
        assert config.default_user == "alice"
        assert config.extra_headers == {"X-Tenant": "acme"}

    def test_default_file_in_cwd(self, tmp_path):
        (tmp_path / ".dify.config.yaml").write_text(
            "dify:\n  base_url: https://h/v1\n  api_key: k-default\n"
        )
        assert load_config().api_key == "k-default"

    def test_dify_config_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "other.yaml"
        path.write_text("dify:\n  base_url: https://h/v1\n  api_key: k-env-path\n")
        monkeypatch.setenv("DIFY_CONFIG", str(path))
        assert load_config().api_key == "k-env-path"

    def test_env_only_without_file(self, monkeypatch):
        monkeypatch.setenv("DIFY_BASE_URL", "https://h/v1")
        monkeypatch.setenv("DIFY_API_KEY", "k-env")
        config = load_config()
        assert config.base_url == "https://h/v1"
        assert config.api_key == "k-env"

    def test_file_wins_over_env_fallback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DIFY_API_KEY", "k-env")
        (tmp_path / ".dify.config.yaml").write_text(
            "dify:\n  base_url: https://h/v1\n  api_key: k-file\n"
        )
        assert load_config().api_key == "k-file"

    def test_overrides_win(self, tmp_path):
        (tmp_path / ".dify.config.yaml").write_text(
            "dify:\n  base_url: https://h/v1\n  api_key: k\n"
            "  extra_headers:\n    X-A: '1'\n"
        )
        config = load_config(overrides={"default_user": "bob", "extra_headers": {"X-B": "2"}})
        assert config.default_user == "bob"
        assert config.extra_headers == {"X-A": "1", "X-B": "2"}

    def test_explicit_missing_path_raises(self, tmp_path):
        with pytest.raises(ValueError, match="Config not found"):
            load_config(str(tmp_path / "missing.yaml"))

    def test_nothing_configured_raises(self):
        with pytest.raises(ValueError, match="'base_url' is required"):
            load_config()

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config(str(path))

    def test_extra_env_patterns_reach_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("APP_DIFY_KEY", "app-extra")
        path = tmp_path / "dify.yaml"
        path.write_text("dify:\n  base_url: https://h/v1\n  api_key: '{env:APP_DIFY_KEY}'\n")
        with pytest.raises(ValueError, match="not in the allowlist"):
            load_config(str(path))
        config = load_config(str(path), extra_env_patterns=[re.compile(r"^APP_")])
        assert config.api_key == "app-extra"

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "dify.yaml"
        path.write_text("dify:\n  base_url: https://h/v1\n  api_key: k\n  retries: 3\n")
        assert load_config(str(path)).api_key == "k"


# ── Env interpolation ────────────────────────────────────────────────


class TestEnvInterpolation:
    def test_resolve_dify_prefixed_var(self, monkeypatch):
        monkeypatch.setenv("DIFY_API_KEY", "app-123")
        assert interpolate_value("{env:DIFY_API_KEY}") == "app-123"

    def test_extra_pattern_extends_allowlist(self, monkeypatch):
        monkeypatch.setenv("APP_SECRET", "secret123")
        with pytest.raises(ValueError, match="not in the allowlist"):
            interpolate_value("{env:APP_SECRET}")
        extra = [re.compile(r"^APP_")]
        assert interpolate_value("{env:APP_SECRET}", extra) == "secret123"

    def test_reject_disallowed_env_var(self):
        with pytest.raises(ValueError, match="not in the allowlist"):
            interpolate_value("{env:HOME}")

    def test_missing_env_var_raises(self, monkeypatch):
        monkeypatch.delenv("DIFY_NONEXISTENT", raising=False)
        with pytest.raises(ValueError, match="is not set"):
            interpolate_value("{env:DIFY_NONEXISTENT}")

    def test_mixed_text_and_interpolation(self, monkeypatch):
        monkeypatch.setenv("DIFY_HOST", "localhost")
        assert interpolate_value("http://{env:DIFY_HOST}/v1") == "http://localhost/v1"

    def test_recursive_and_non_strings_preserved(self, monkeypatch):
        monkeypatch.setenv("DIFY_TRACE", "t-1")
        config = {"extra_headers": {"X-Trace": "{env:DIFY_TRACE}"}, "read_timeout_ms": 1000}
        assert interpolate_config(config) == {
            "extra_headers": {"X-Trace": "t-1"},
            "read_timeout_ms": 1000,
        }


# ── Deep merge ────────────────────────────────────────────────────────


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"x": {"a": 1, "b": 2}, "y": 10}
        overlay = {"x": {"b": 3, "c": 4}}
        assert deep_merge(base, overlay) == {"x": {"a": 1, "b": 3, "c": 4}, "y": 10}

    def test_overlay_replaces_non_dict(self):
        assert deep_merge({"x": {"nested": True}}, {"x": "replaced"})["x"] == "replaced"

    def test_no_mutation(self):
        base = {"a": {"b": 1}}
        overlay = {"a": {"c": 2}}
        deep_merge(base, overlay)
        assert "c" not in base["a"]
        assert "b" not in overlay["a"]


# ── Redaction ─────────────────────────────────────────────────────────


class TestRedaction:
    def test_redacts_interpolation_tokens(self):
        result = redact_config({"api_key": "{env:DIFY_API_KEY}", "base_url": "https://h"})
        assert REDACTED in result["api_key"]
        assert "DIFY_API_KEY" in result["api_key"]
        assert result["base_url"] == "https://h"

    def test_redacts_authorization_header(self):
        result = redact_headers(
            {"Authorization": "Bearer app-secret", "Content-Type": "application/json"}
        )
        assert result["Authorization"] == REDACTED
        assert result["Content-Type"] == "application/json"

    def test_redacts_bearer_token_in_text(self):
        result = redact_string("Authorization: Bearer app-test123 was sent")
        assert "app-test123" not in result
        assert REDACTED in result

    def test_redacts_known_env_values(self, monkeypatch):
        monkeypatch.setenv("DIFY_API_KEY", "app-real-secret")
        result = redact_string("Error with app-real-secret in message")
        assert "app-real-secret" not in result

    def test_plain_string_unchanged(self):
        assert redact_string("Just a normal error message") == "Just a normal error message"
