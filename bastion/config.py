"""
Config system - Layered configuration with typed, validated settings.

Provides:
- ConfigProvider protocol (``get(path, default)``) and DictConfigProvider
- ConfigLoader: defaults < YAML files < .env file < BASTION_* env vars < overrides
- Frozen settings dataclasses consumed by the stack builder
- load_settings(): validates values and raises ConfigInvalidFault
"""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field
from glob import glob
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

import yaml
from dotenv import dotenv_values

from .faults import ConfigInvalidFault


DEFAULTS: Dict[str, Any] = {
    "trust_proxy": False,
    "rate_limit": {
        "enabled": True,
        "max_attempts": 60,
        "decay_minutes": 1,
        "identifier": "ip",
        "tiers": {},
        "excluded_paths": [],
    },
    "csrf": {
        "enabled": True,
        "header_name": "X-CSRF-TOKEN",
        "xsrf_header_name": "X-XSRF-TOKEN",
        "form_field": "_token",
        "cookie_name": "XSRF-TOKEN",
        "cookie_secure": True,
        "cookie_samesite": "Lax",
        "excluded_paths": [],
    },
    "auth": {
        "enabled": True,
        "guards": ["session", "bearer", "api_key"],
        "basic_realm": "bastion",
        "login_url": "/login",
        "session_key": "principal_id",
        "excluded_paths": ["/login", "/health"],
        "optional_paths": [],
        "access_provider": "static",
        "access_cache_ttl": 300,
        "super_admin_role": "super_admin",
        "roles": {},
        "principals": {},
        "rules": [],
    },
    "cache": {
        "enabled": True,
        "ttl": 3600,
        "max_size": 1000,
        "excluded_paths": [],
    },
    "compression": {
        "enabled": True,
        "min_size": 1024,
        "level": 6,
        "excluded_paths": [],
    },
    "security_headers": {
        "enabled": True,
        "hsts_max_age": 31536000,
        "hsts_include_subdomains": True,
        "hsts_preload": False,
        "permissions_policy": None,
        "headers": {},
        "excluded_paths": [],
    },
    "api_version": {
        "enabled": False,
        "strategy": "header",
        "header_name": "X-API-Version",
        "url_base": "/api",
        "url_prefix": "v",
        "default_version": "v1",
        "supported_versions": {},
        "excluded_paths": [],
    },
    "input_guard": {
        "sanitize": True,
        "strip_tags": False,
        "allowed_tags": [],
        "sanitize_except": ["password", "password_confirmation", "current_password"],
        "xss": True,
        "xss_block": False,
        "content_security_policy": None,
        "sqli": True,
        "sanitize_excluded_paths": [],
        "xss_excluded_paths": [],
        "sqli_excluded_paths": [],
    },
    "timing": {
        "enabled": True,
        "slow_threshold_ms": 1000,
    },
    "logging": {
        "level": "INFO",
        "structured": True,
        "access_log": True,
        "excluded_paths": ["/health"],
    },
}


# ============================================================================
# Providers
# ============================================================================

@runtime_checkable
class ConfigProvider(Protocol):
    """Read access to configuration by dot-separated path."""

    def get(self, path: str, default: Any = None) -> Any: ...


def _lookup(data: Mapping[str, Any], path: str, default: Any) -> Any:
    current: Any = data
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return default
    return current


def _merge_dict(target: dict, source: Mapping[str, Any]) -> None:
    """Deep merge source into target."""
    for key, value in source.items():
        if key in target and isinstance(target[key], dict) and isinstance(value, Mapping):
            _merge_dict(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class DictConfigProvider:
    """In-memory provider; values are deep-merged over ``DEFAULTS``."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None, *, with_defaults: bool = True):
        self.config_data: Dict[str, Any] = copy.deepcopy(DEFAULTS) if with_defaults else {}
        if data:
            _merge_dict(self.config_data, data)

    def get(self, path: str, default: Any = None) -> Any:
        return _lookup(self.config_data, path, default)


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources with precedence:
    overrides > environment variables > .env file > YAML files > defaults
    """

    def __init__(self, env_prefix: str = "BASTION_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = copy.deepcopy(DEFAULTS)

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = "BASTION_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from multiple sources.

        Args:
            paths: YAML file paths (glob patterns supported)
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)
            environ: Environment mapping (``os.environ`` when omitted)

        Returns:
            Configured ConfigLoader instance
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or ():
            for path_str in sorted(glob(pattern)):
                loader._load_yaml_file(Path(path_str))

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env(os.environ if environ is None else environ)

        if overrides:
            _merge_dict(loader.config_data, overrides)

        return loader

    def _load_yaml_file(self, path: Path) -> None:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigInvalidFault(str(path), "top-level YAML value must be a mapping")
        _merge_dict(self.config_data, data)

    def _load_env_file(self, path: str) -> None:
        if not Path(path).exists():
            return
        for key, value in dotenv_values(path).items():
            if key.startswith(self.env_prefix) and value is not None:
                self._set_nested(key, value)

    def _load_from_env(self, environ: Mapping[str, str]) -> None:
        for key, value in environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str) -> None:
        """Convert BASTION_RATE_LIMIT__MAX_ATTEMPTS to nested dict."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    @staticmethod
    def _parse_value(value: str) -> Any:
        """Parse string value to appropriate type."""
        lowered = value.lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        return _lookup(self.config_data, path, default)

    def to_dict(self) -> dict:
        return copy.deepcopy(self.config_data)


# ============================================================================
# Typed settings
# ============================================================================

IDENTIFIER_STRATEGIES = ("ip", "user", "route")
ACCESS_PROVIDER_KINDS = ("static", "database", "cache")
GUARD_KINDS = ("session", "bearer", "api_key", "basic")
DEFAULT_GUARDS = ("session", "bearer", "api_key")
VERSION_STRATEGIES = ("header", "url", "accept")
RATE_LIMIT_TIERS = ("guest", "user", "admin", "api_key")


@dataclass(frozen=True)
class RateLimitSettings:
    enabled: bool = True
    max_attempts: int = 60
    decay_seconds: float = 60.0
    identifier: str = "ip"
    tiers: Mapping[str, int] = field(default_factory=dict)
    excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CsrfSettings:
    enabled: bool = True
    header_name: str = "X-CSRF-TOKEN"
    xsrf_header_name: str = "X-XSRF-TOKEN"
    form_field: str = "_token"
    cookie_name: str = "XSRF-TOKEN"
    cookie_secure: bool = True
    cookie_samesite: str = "Lax"
    excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AuthSettings:
    enabled: bool = True
    guards: Tuple[str, ...] = DEFAULT_GUARDS
    basic_realm: str = "bastion"
    login_url: str = "/login"
    session_key: str = "principal_id"
    excluded_paths: Tuple[str, ...] = ()
    optional_paths: Tuple[str, ...] = ()
    access_provider: str = "static"
    access_cache_ttl: int = 300
    super_admin_role: str = "super_admin"
    roles: Mapping[str, Any] = field(default_factory=dict)
    principals: Mapping[str, Any] = field(default_factory=dict)
    rules: Tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class CacheSettings:
    enabled: bool = True
    ttl: int = 3600
    max_size: int = 1000
    excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CompressionSettings:
    enabled: bool = True
    min_size: int = 1024
    level: int = 6
    excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SecurityHeaderSettings:
    enabled: bool = True
    hsts_max_age: int = 31536000
    hsts_include_subdomains: bool = True
    hsts_preload: bool = False
    permissions_policy: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ApiVersionSettings:
    enabled: bool = False
    strategy: str = "header"
    header_name: str = "X-API-Version"
    url_base: str = "/api"
    url_prefix: str = "v"
    default_version: str = "v1"
    supported_versions: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class InputGuardSettings:
    sanitize: bool = True
    strip_tags: bool = False
    allowed_tags: Tuple[str, ...] = ()
    sanitize_except: Tuple[str, ...] = ()
    xss: bool = True
    xss_block: bool = False
    content_security_policy: Optional[str] = None
    sqli: bool = True
    sanitize_excluded_paths: Tuple[str, ...] = ()
    xss_excluded_paths: Tuple[str, ...] = ()
    sqli_excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TimingSettings:
    enabled: bool = True
    slow_threshold_ms: float = 1000.0


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    structured: bool = True
    access_log: bool = True
    excluded_paths: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PipelineSettings:
    trust_proxy: bool = False
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    csrf: CsrfSettings = field(default_factory=CsrfSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    compression: CompressionSettings = field(default_factory=CompressionSettings)
    security_headers: SecurityHeaderSettings = field(default_factory=SecurityHeaderSettings)
    api_version: ApiVersionSettings = field(default_factory=ApiVersionSettings)
    input_guard: InputGuardSettings = field(default_factory=InputGuardSettings)
    timing: TimingSettings = field(default_factory=TimingSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# ─── Coercion helpers ────────────────────────────────────────────────────────

def _bool(provider: ConfigProvider, path: str, default: bool) -> bool:
    return _coerce_bool(path, provider.get(path, default))


def _coerce_bool(path: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false", "yes", "no", "on", "off"):
        return value.lower() in ("true", "yes", "on")
    raise ConfigInvalidFault(path, f"expected a boolean, got {value!r}")


def _number(provider: ConfigProvider, path: str, default: float, *, minimum: float = 1, cast=int):
    value = provider.get(path, default)
    if isinstance(value, bool):
        raise ConfigInvalidFault(path, f"expected a number, got {value!r}")
    try:
        number = cast(value)
    except (TypeError, ValueError):
        raise ConfigInvalidFault(path, f"expected a number, got {value!r}") from None
    if number < minimum:
        raise ConfigInvalidFault(path, f"must be >= {minimum}, got {number}")
    return number


def _choice(provider: ConfigProvider, path: str, default: str, choices: Tuple[str, ...]) -> str:
    value = provider.get(path, default)
    if value not in choices:
        raise ConfigInvalidFault(path, f"must be one of {', '.join(choices)}; got {value!r}")
    return value


def _strings(provider: ConfigProvider, path: str, default: Any = ()) -> Tuple[str, ...]:
    value = provider.get(path, default)
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if not isinstance(value, (list, tuple)):
        raise ConfigInvalidFault(path, f"expected a list, got {value!r}")
    return tuple(str(item) for item in value)


def _mapping(provider: ConfigProvider, path: str) -> Dict[str, Any]:
    value = provider.get(path, {}) or {}
    if not isinstance(value, Mapping):
        raise ConfigInvalidFault(path, f"expected a mapping, got {value!r}")
    return dict(value)


def load_settings(provider: Optional[ConfigProvider] = None) -> PipelineSettings:
    """
    Build validated settings from a provider.

    Raises:
        ConfigInvalidFault: On any invalid value
    """
    p = provider or ConfigLoader.load()

    decay_seconds = p.get("rate_limit.decay_seconds")
    if decay_seconds is None:
        decay_seconds = _number(p, "rate_limit.decay_minutes", 1, minimum=0.001, cast=float) * 60
    else:
        decay_seconds = _number(p, "rate_limit.decay_seconds", 60, minimum=0.001, cast=float)

    tiers = _mapping(p, "rate_limit.tiers")
    for tier, limit in tiers.items():
        if tier not in RATE_LIMIT_TIERS:
            raise ConfigInvalidFault(f"rate_limit.tiers.{tier}", "unknown tier")
        tiers[tier] = _number(p, f"rate_limit.tiers.{tier}", limit)

    rate_limit = RateLimitSettings(
        enabled=_bool(p, "rate_limit.enabled", True),
        max_attempts=_number(p, "rate_limit.max_attempts", 60),
        decay_seconds=decay_seconds,
        identifier=_choice(p, "rate_limit.identifier", "ip", IDENTIFIER_STRATEGIES),
        tiers=tiers,
        excluded_paths=_strings(p, "rate_limit.excluded_paths"),
    )

    csrf = CsrfSettings(
        enabled=_bool(p, "csrf.enabled", True),
        header_name=p.get("csrf.header_name", "X-CSRF-TOKEN"),
        xsrf_header_name=p.get("csrf.xsrf_header_name", "X-XSRF-TOKEN"),
        form_field=p.get("csrf.form_field", "_token"),
        cookie_name=p.get("csrf.cookie_name", "XSRF-TOKEN"),
        cookie_secure=_bool(p, "csrf.cookie_secure", True),
        cookie_samesite=p.get("csrf.cookie_samesite", "Lax"),
        excluded_paths=_strings(p, "csrf.excluded_paths"),
    )

    guards = _strings(p, "auth.guards", DEFAULT_GUARDS)
    for guard in guards:
        if guard not in GUARD_KINDS:
            raise ConfigInvalidFault("auth.guards", f"unknown guard {guard!r}")

    rules = p.get("auth.rules", []) or []
    if not isinstance(rules, (list, tuple)) or not all(isinstance(r, Mapping) for r in rules):
        raise ConfigInvalidFault("auth.rules", "expected a list of mappings")

    auth = AuthSettings(
        enabled=_bool(p, "auth.enabled", True),
        guards=guards,
        basic_realm=p.get("auth.basic_realm", "bastion"),
        login_url=p.get("auth.login_url", "/login"),
        session_key=p.get("auth.session_key", "principal_id"),
        excluded_paths=_strings(p, "auth.excluded_paths"),
        optional_paths=_strings(p, "auth.optional_paths"),
        access_provider=_choice(p, "auth.access_provider", "static", ACCESS_PROVIDER_KINDS),
        access_cache_ttl=_number(p, "auth.access_cache_ttl", 300),
        super_admin_role=p.get("auth.super_admin_role", "super_admin"),
        roles=_mapping(p, "auth.roles"),
        principals=_mapping(p, "auth.principals"),
        rules=tuple(dict(rule) for rule in rules),
    )

    cache = CacheSettings(
        enabled=_bool(p, "cache.enabled", True),
        ttl=_number(p, "cache.ttl", 3600),
        max_size=_number(p, "cache.max_size", 1000),
        excluded_paths=_strings(p, "cache.excluded_paths"),
    )

    level = _number(p, "compression.level", 6)
    if level > 9:
        raise ConfigInvalidFault("compression.level", f"must be <= 9, got {level}")
    compression = CompressionSettings(
        enabled=_bool(p, "compression.enabled", True),
        min_size=_number(p, "compression.min_size", 1024, minimum=0),
        level=level,
        excluded_paths=_strings(p, "compression.excluded_paths"),
    )

    headers = {
        name.replace("_", "-").lower(): "" if value is None else str(value)
        for name, value in _mapping(p, "security_headers.headers").items()
    }
    security_headers = SecurityHeaderSettings(
        enabled=_bool(p, "security_headers.enabled", True),
        hsts_max_age=_number(p, "security_headers.hsts_max_age", 31536000, minimum=0),
        hsts_include_subdomains=_bool(p, "security_headers.hsts_include_subdomains", True),
        hsts_preload=_bool(p, "security_headers.hsts_preload", False),
        permissions_policy=p.get("security_headers.permissions_policy") or None,
        headers=headers,
        excluded_paths=_strings(p, "security_headers.excluded_paths"),
    )

    versions: Dict[str, Dict[str, Any]] = {}
    for version, options in _mapping(p, "api_version.supported_versions").items():
        if options is None:
            options = {}
        if not isinstance(options, Mapping):
            raise ConfigInvalidFault(f"api_version.supported_versions.{version}", "expected a mapping")
        versions[str(version)] = {
            "deprecated": _coerce_bool(
                f"api_version.supported_versions.{version}.deprecated", options.get("deprecated", False)
            ),
            # YAML parses bare dates into datetime.date.
            "sunset_date": str(options["sunset_date"]) if options.get("sunset_date") else None,
        }
    default_version = str(p.get("api_version.default_version", "v1"))
    versioning_enabled = _bool(p, "api_version.enabled", False)
    if versioning_enabled and not versions:
        raise ConfigInvalidFault("api_version.supported_versions", "at least one version is required")
    if versions and default_version not in versions:
        raise ConfigInvalidFault("api_version.default_version", f"{default_version!r} is not a supported version")
    api_version = ApiVersionSettings(
        enabled=versioning_enabled,
        strategy=_choice(p, "api_version.strategy", "header", VERSION_STRATEGIES),
        header_name=p.get("api_version.header_name", "X-API-Version"),
        url_base=p.get("api_version.url_base", "/api"),
        url_prefix=p.get("api_version.url_prefix", "v"),
        default_version=default_version,
        supported_versions=versions,
        excluded_paths=_strings(p, "api_version.excluded_paths"),
    )

    input_guard = InputGuardSettings(
        sanitize=_bool(p, "input_guard.sanitize", True),
        strip_tags=_bool(p, "input_guard.strip_tags", False),
        allowed_tags=_strings(p, "input_guard.allowed_tags"),
        sanitize_except=_strings(p, "input_guard.sanitize_except"),
        xss=_bool(p, "input_guard.xss", True),
        xss_block=_bool(p, "input_guard.xss_block", False),
        content_security_policy=p.get("input_guard.content_security_policy") or None,
        sqli=_bool(p, "input_guard.sqli", True),
        sanitize_excluded_paths=_strings(p, "input_guard.sanitize_excluded_paths"),
        xss_excluded_paths=_strings(p, "input_guard.xss_excluded_paths"),
        sqli_excluded_paths=_strings(p, "input_guard.sqli_excluded_paths"),
    )

    timing = TimingSettings(
        enabled=_bool(p, "timing.enabled", True),
        slow_threshold_ms=_number(p, "timing.slow_threshold_ms", 1000, minimum=0, cast=float),
    )

    log_level = str(p.get("logging.level", "INFO")).upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigInvalidFault("logging.level", f"unknown level {log_level!r}")
    logging_settings = LoggingSettings(
        level=log_level,
        structured=_bool(p, "logging.structured", True),
        access_log=_bool(p, "logging.access_log", True),
        excluded_paths=_strings(p, "logging.excluded_paths"),
    )

    return PipelineSettings(
        trust_proxy=_bool(p, "trust_proxy", False),
        rate_limit=rate_limit,
        csrf=csrf,
        auth=auth,
        cache=cache,
        compression=compression,
        security_headers=security_headers,
        api_version=api_version,
        input_guard=input_guard,
        timing=timing,
        logging=logging_settings,
    )


__all__ = [
    "DEFAULTS",
    "ConfigProvider",
    "DictConfigProvider",
    "ConfigLoader",
    "RateLimitSettings",
    "CsrfSettings",
    "AuthSettings",
    "CacheSettings",
    "CompressionSettings",
    "SecurityHeaderSettings",
    "ApiVersionSettings",
    "InputGuardSettings",
    "TimingSettings",
    "LoggingSettings",
    "PipelineSettings",
    "load_settings",
]
