"""Client configuration: immutable value, YAML/env loading, interpolation, redaction.

Provides:
- DifyConfig, a frozen configuration value ("updating" builds a new one)
- load_config from .dify.config.yaml (or DIFY_CONFIG) plus DIFY_* env vars
- {env:VAR} secret interpolation with allowlist enforcement
- Deep merge for layered config
- Redaction for safe logging (never leak the API key)
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import httpx
import yaml

logger = logging.getLogger("dify.config_loader")

DEFAULT_CONFIG_PATH = ".dify.config.yaml"

RESPONSE_MODES = ("blocking", "streaming")

# Redaction sentinel
REDACTED = "***REDACTED***"

# Core allowlist for env var interpolation
_CORE_ENV_PATTERNS = [
    re.compile(r"^DIFY_"),
]

# Regex for interpolation tokens: {env:VAR}
_INTERP_RE = re.compile(r"\{env:([^}]+)\}")

# Patterns that indicate sensitive keys (for redaction)
_SENSITIVE_KEY_RE = re.compile(
    r"(auth|key|secret|token|password|credential|bearer)",
    re.IGNORECASE,
)


# ── Config value ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class DifyConfig:
    """Connection settings shared by every endpoint handle of one client."""

    base_url: str
    api_key: str
    default_response_mode: str = "blocking"
    default_user: Optional[str] = None
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    connect_timeout_ms: int = 5000
    read_timeout_ms: int = 60000
    total_timeout_ms: int = 300000

    def __post_init__(self) -> None:
        errors = validate_config(dataclasses.asdict(self))
        if errors:
            raise ValueError("Invalid Dify config: " + "; ".join(errors))
        # Detach from the caller's dict so later mutation can't leak in
        object.__setattr__(self, "extra_headers", dict(self.extra_headers))

    def replace(self, **changes: Any) -> "DifyConfig":
        """Return a new config with changes applied. self is untouched."""
        return dataclasses.replace(self, **changes)

    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout_ms / 1000.0,
            read=self.read_timeout_ms / 1000.0,
            write=30.0,
            pool=self.total_timeout_ms / 1000.0,
        )

    def redacted(self) -> Dict[str, Any]:
        return redact_config(dataclasses.asdict(self))


def validate_config(values: Mapping[str, Any]) -> List[str]:
    """Validate a config mapping.

    Returns list of error strings (empty = valid).
    """
    errors = []

    if not values.get("base_url"):
        errors.append("'base_url' is required")
    if not values.get("api_key"):
        errors.append("'api_key' is required")

    mode = values.get("default_response_mode", "blocking")
    if mode not in RESPONSE_MODES:
        errors.append(
            f"Unknown response mode '{mode}'. Supported: {list(RESPONSE_MODES)}"
        )

    for key in ("connect_timeout_ms", "read_timeout_ms", "total_timeout_ms"):
        value = values.get(key)
        if value is not None and (not isinstance(value, (int, float)) or value <= 0):
            errors.append(f"'{key}' must be a positive number")

    return errors


# ── Loading ───────────────────────────────────────────────────────────


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    extra_env_patterns: List[re.Pattern] = (),
) -> DifyConfig:
    """Load a DifyConfig from YAML, environment, and overrides.

    Precedence (later wins): config file < DIFY_BASE_URL / DIFY_API_KEY
    (only filling keys the file left empty) < overrides.
    The file's settings live under a top-level "dify:" key. extra_env_patterns
    widens the {env:VAR} allowlist beyond DIFY_*.
    """
    explicit = path or os.environ.get("DIFY_CONFIG")
    config_path = Path(explicit or DEFAULT_CONFIG_PATH)

    values: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        values = dict(raw.get("dify") or {})
        logger.debug("Loaded config from %s", config_path)
    elif explicit:
        raise ValueError(f"Config not found: {config_path}")

    for key, env_var in (("base_url", "DIFY_BASE_URL"), ("api_key", "DIFY_API_KEY")):
        if not values.get(key) and os.environ.get(env_var):
            values[key] = os.environ[env_var]

    if overrides:
        values = deep_merge(values, overrides)

    values = interpolate_config(values, extra_env_patterns)

    known = {f.name for f in dataclasses.fields(DifyConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))

    errors = validate_config(values)
    if errors:
        raise ValueError("Invalid Dify config: " + "; ".join(errors))

    config = DifyConfig(**{k: v for k, v in values.items() if k in known})
    logger.debug("Effective config: %s", config.redacted())
    return config


# ── Env allowlist ─────────────────────────────────────────────────────


def _check_env_allowed(
    var_name: str, extra_patterns: List[re.Pattern] = ()
) -> bool:
    """Check if env var name is in the allowlist."""
    for pattern in list(_CORE_ENV_PATTERNS) + list(extra_patterns):
        if pattern.search(var_name):
            return True
    return False


# ── Interpolation ─────────────────────────────────────────────────────


def interpolate_value(value: str, extra_env_patterns: List[re.Pattern] = ()) -> str:
    """Resolve {env:VAR_NAME} tokens in a string value (allowlisted vars only)."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if not _check_env_allowed(var_name, extra_env_patterns):
            raise ValueError(
                f"Environment variable '{var_name}' is not in the allowlist. "
                f"Allowed: ^DIFY_.*"
            )
        resolved = os.environ.get(var_name)
        if resolved is None:
            raise ValueError(f"Environment variable '{var_name}' is not set")
        return resolved

    return _INTERP_RE.sub(_replace, value)


def interpolate_config(
    config: Dict[str, Any], extra_env_patterns: List[re.Pattern] = ()
) -> Dict[str, Any]:
    """Recursively interpolate string values. Returns a new dict."""
    result: Dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, str):
            result[key] = interpolate_value(value, extra_env_patterns)
        elif isinstance(value, dict):
            result[key] = interpolate_config(value, extra_env_patterns)
        else:
            result[key] = value
    return result


# ── Deep merge ────────────────────────────────────────────────────────


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base. Overlay values win.

    Returns a new dict (base and overlay are not modified).
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


# ── Redaction ─────────────────────────────────────────────────────────


def redact_config(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Redacted copy of a config mapping for display/logging.

    Unresolved {env:} tokens are annotated with their source; keys matching
    sensitive patterns are replaced outright.
    """
    result: Dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, Mapping):
            result[key] = redact_config(value)
        elif isinstance(value, str) and _INTERP_RE.search(value):
            sources = ", ".join(f"env:{name}" for name in _INTERP_RE.findall(value))
            result[key] = f"{REDACTED} (from {sources})"
        elif _SENSITIVE_KEY_RE.search(key):
            result[key] = REDACTED
        else:
            result[key] = value
    return result


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Return a copy of headers with sensitive values redacted."""
    return {
        key: REDACTED if _SENSITIVE_KEY_RE.search(key) else value
        for key, value in headers.items()
    }


def redact_string(value: str) -> str:
    """Redact bearer tokens and DIFY_* secret values from free text."""
    result = value

    for key, val in os.environ.items():
        if key.startswith("DIFY_") and _SENSITIVE_KEY_RE.search(key) and val and val in result:
            result = result.replace(val, REDACTED)

    return re.sub(
        r"(Authorization:\s*Bearer\s+)\S+", rf"\1{REDACTED}", result, flags=re.IGNORECASE
    )
