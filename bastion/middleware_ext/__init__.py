"""
Pipeline stages for Bastion beyond the core executor in middleware.py.

Traffic:
- RateLimitStage: Fixed-window rate limiting (IP, user, route, tiers)
- RequestLoggerStage: Access logging with X-Request-ID
- ResponseTimeStage: X-Response-Time and slow-request warnings
- CompressionStage: gzip with Accept-Encoding negotiation
- ApiVersionStage: API version resolution, validation and deprecation headers

Security:
- CsrfStage / CsrfTokenManager: Session-bound CSRF tokens
- SecurityHeadersStage: Baseline hardening headers
- SqlInjectionGuardStage: Blocks SQL-injection signatures
- XssProtectionStage: XSS neutralization and headers
- InputSanitizationStage: HTML-entity encoding of all input
"""

from .compression import CompressionStage
from .input_guard import InputSanitizationStage, SqlInjectionGuardStage, XssProtectionStage
from .logging import RequestLoggerStage, StructuredLogFormatter, configure_logging
from .rate_limit import (
    IDENTIFIER_RESOLVERS,
    HitResult,
    MemoryRateLimitStore,
    RateLimitStage,
    RateLimitStore,
    ip_identifier,
    resolve_tier,
    route_identifier,
    user_identifier,
)
from .security import CsrfStage, CsrfTokenManager, SecurityHeadersStage
from .timing import ResponseTimeStage
from .versioning import API_VERSION_KEY, ApiVersionStage

__all__ = [
    # Traffic
    "RateLimitStage",
    "RateLimitStore",
    "MemoryRateLimitStore",
    "HitResult",
    "IDENTIFIER_RESOLVERS",
    "ip_identifier",
    "user_identifier",
    "route_identifier",
    "resolve_tier",
    "RequestLoggerStage",
    "StructuredLogFormatter",
    "configure_logging",
    "ResponseTimeStage",
    "CompressionStage",
    "ApiVersionStage",
    "API_VERSION_KEY",
    # Security
    "CsrfStage",
    "CsrfTokenManager",
    "SecurityHeadersStage",
    "SqlInjectionGuardStage",
    "XssProtectionStage",
    "InputSanitizationStage",
]
