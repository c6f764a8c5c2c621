"""
Stack builder - assembles the default pipeline from settings.

Default order (outermost first):

    logging(10) → rate_limit(20) → api_version(25) → csrf(30) → auth(40)
    → authz(50) → sqli(60) → xss(62) → sanitize(64) → security_headers(70)
    → cache(80) → compression(90) → timing(100) → handler

timing is an envelope stage: it is listed last but wraps the whole chain.
api_version is off unless configured.

Stores, hasher and providers are injected; in-memory implementations are
created for whatever is not supplied.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from .auth import (
    AccessControlEvaluator,
    AccessProvider,
    AccessRule,
    ApiKeyGuard,
    AuthenticationStage,
    AuthorizationStage,
    BasicAuthGuard,
    BearerTokenGuard,
    CredentialStore,
    Guard,
    MemoryCredentialStore,
    PrincipalStore,
    SessionGuard,
    TokenHasher,
    create_access_provider,
)
from .cache import CacheBackend, MemoryBackend, ResponseCacheStage
from .config import PipelineSettings, load_settings
from .middleware import PathExclusionPolicy, Pipeline
from .middleware_ext import (
    ApiVersionStage,
    CompressionStage,
    CsrfStage,
    InputSanitizationStage,
    MemoryRateLimitStore,
    RateLimitStage,
    RateLimitStore,
    RequestLoggerStage,
    ResponseTimeStage,
    SecurityHeadersStage,
    SqlInjectionGuardStage,
    XssProtectionStage,
)

logger = logging.getLogger("bastion.pipeline")

PRIORITIES: Dict[str, int] = {
    "logging": 10,
    "rate_limit": 20,
    "api_version": 25,
    "csrf": 30,
    "auth": 40,
    "authz": 50,
    "sqli": 60,
    "xss": 62,
    "sanitize": 64,
    "security_headers": 70,
    "cache": 80,
    "compression": 90,
    "timing": 100,
}


def build_guards(
    kinds: List[str] | tuple,
    store: CredentialStore,
    *,
    hasher: Optional[TokenHasher] = None,
    session_key: str = "principal_id",
    basic_realm: str = "bastion",
) -> List[Guard]:
    """Instantiate guards by kind, preserving order."""
    guards: List[Guard] = []
    for kind in kinds:
        if kind == "session":
            guards.append(SessionGuard(store, session_key=session_key))
        elif kind == "bearer":
            guards.append(BearerTokenGuard(store))
        elif kind == "api_key":
            guards.append(ApiKeyGuard(store, hasher=hasher))
        elif kind == "basic":
            guards.append(BasicAuthGuard(store, realm=basic_realm))
        else:
            raise ValueError(f"Unknown guard kind {kind!r}")
    return guards


def build_default_stack(
    settings: Optional[PipelineSettings] = None,
    *,
    credential_store: Optional[CredentialStore] = None,
    hasher: Optional[TokenHasher] = None,
    rate_store: Optional[RateLimitStore] = None,
    cache_backend: Optional[CacheBackend] = None,
    access_provider: Optional[AccessProvider] = None,
    principal_store: Optional[PrincipalStore] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Pipeline:
    """
    Build the default pipeline.

    Args:
        settings: Validated settings (``load_settings()`` when omitted)
        credential_store: Principal/token/API key storage for the guards
        hasher: Argon2 hasher for API key secrets
        rate_store: Shared rate-limit counter store
        cache_backend: Shared response cache backend (also caches grants)
        access_provider: Role/permission provider; built from settings if absent
        principal_store: Store for the ``database`` access provider
        clock: Wall clock shared by the rate limiter and its store
    """
    settings = settings or load_settings()
    pipeline = Pipeline()

    if settings.logging.access_log:
        pipeline.add(
            RequestLoggerStage(exclusion=PathExclusionPolicy(settings.logging.excluded_paths)),
            priority=PRIORITIES["logging"],
        )

    rl = settings.rate_limit
    if rl.enabled:
        wall_clock = clock or time.time
        pipeline.add(
            RateLimitStage(
                rate_store or MemoryRateLimitStore(clock=wall_clock),
                rl.max_attempts,
                rl.decay_seconds,
                identifier=rl.identifier,
                tiers=rl.tiers,
                exclusion=PathExclusionPolicy(rl.excluded_paths),
                clock=wall_clock,
            ),
            priority=PRIORITIES["rate_limit"],
        )

    versioning = settings.api_version
    if versioning.enabled:
        pipeline.add(
            ApiVersionStage(
                versioning.supported_versions,
                versioning.default_version,
                strategy=versioning.strategy,
                header_name=versioning.header_name,
                url_base=versioning.url_base,
                url_prefix=versioning.url_prefix,
                exclusion=PathExclusionPolicy(versioning.excluded_paths),
            ),
            priority=PRIORITIES["api_version"],
        )

    csrf = settings.csrf
    if csrf.enabled:
        pipeline.add(
            CsrfStage(
                header_name=csrf.header_name,
                xsrf_header_name=csrf.xsrf_header_name,
                form_field=csrf.form_field,
                cookie_name=csrf.cookie_name,
                cookie_secure=csrf.cookie_secure,
                cookie_samesite=csrf.cookie_samesite,
                exclusion=PathExclusionPolicy(csrf.excluded_paths),
            ),
            priority=PRIORITIES["csrf"],
        )

    auth = settings.auth
    if auth.enabled:
        store = credential_store or MemoryCredentialStore(hasher)
        auth_exclusion = PathExclusionPolicy(auth.excluded_paths)
        pipeline.add(
            AuthenticationStage(
                build_guards(
                    auth.guards, store,
                    hasher=hasher, session_key=auth.session_key, basic_realm=auth.basic_realm,
                ),
                login_url=auth.login_url,
                session_key=auth.session_key,
                exclusion=auth_exclusion,
                optional=PathExclusionPolicy(auth.optional_paths),
            ),
            priority=PRIORITIES["auth"],
        )

        provider = access_provider or create_access_provider(
            auth.access_provider,
            roles=auth.roles,
            principals=auth.principals,
            store=principal_store,
            backend=cache_backend,
            ttl=auth.access_cache_ttl,
        )
        pipeline.add(
            AuthorizationStage(
                AccessControlEvaluator(provider, super_admin_role=auth.super_admin_role),
                [AccessRule.from_dict(rule) for rule in auth.rules],
                exclusion=auth_exclusion,
            ),
            priority=PRIORITIES["authz"],
        )

    guard = settings.input_guard
    if guard.sqli:
        pipeline.add(
            SqlInjectionGuardStage(exclusion=PathExclusionPolicy(guard.sqli_excluded_paths)),
            priority=PRIORITIES["sqli"],
        )
    if guard.xss:
        pipeline.add(
            XssProtectionStage(
                block=guard.xss_block,
                content_security_policy=guard.content_security_policy,
                except_fields=guard.sanitize_except,
                exclusion=PathExclusionPolicy(guard.xss_excluded_paths),
            ),
            priority=PRIORITIES["xss"],
        )
    if guard.sanitize:
        pipeline.add(
            InputSanitizationStage(
                strip_tags=guard.strip_tags,
                allowed_tags=guard.allowed_tags,
                except_fields=guard.sanitize_except,
                exclusion=PathExclusionPolicy(guard.sanitize_excluded_paths),
            ),
            priority=PRIORITIES["sanitize"],
        )

    headers = settings.security_headers
    if headers.enabled:
        pipeline.add(
            SecurityHeadersStage(
                headers.headers,
                hsts_max_age=headers.hsts_max_age,
                hsts_include_subdomains=headers.hsts_include_subdomains,
                hsts_preload=headers.hsts_preload,
                permissions_policy=headers.permissions_policy,
                exclusion=PathExclusionPolicy(headers.excluded_paths),
            ),
            priority=PRIORITIES["security_headers"],
        )

    cache = settings.cache
    if cache.enabled:
        pipeline.add(
            ResponseCacheStage(
                cache_backend or MemoryBackend(max_size=cache.max_size),
                ttl=cache.ttl,
                exclusion=PathExclusionPolicy(cache.excluded_paths),
            ),
            priority=PRIORITIES["cache"],
        )

    compression = settings.compression
    if compression.enabled:
        pipeline.add(
            CompressionStage(
                compression.min_size,
                compression.level,
                exclusion=PathExclusionPolicy(compression.excluded_paths),
            ),
            priority=PRIORITIES["compression"],
        )

    if settings.timing.enabled:
        pipeline.add(
            ResponseTimeStage(settings.timing.slow_threshold_ms),
            priority=PRIORITIES["timing"],
        )

    logger.debug("Built default stack: %s", pipeline.names)
    return pipeline


__all__ = ["PRIORITIES", "build_guards", "build_default_stack"]
