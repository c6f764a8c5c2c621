"""
BastionFaults - Domain-specific fault types.

One class per rejection the pipeline can produce. Each class carries the
HTTP status its response uses.
"""

from __future__ import annotations

from typing import Any, Optional

from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            public=False,
            metadata=metadata,
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# FLOW Faults
# ============================================================================

class InternalStageFault(Fault):
    """A stage raised an unexpected exception. Always rendered as a generic 500."""

    status = 500

    def __init__(self, stage: str, reason: str, **kwargs):
        super().__init__(
            code="INTERNAL_STAGE_FAULT",
            message=f"Stage '{stage}' failed: {reason}",
            domain=FaultDomain.FLOW,
            severity=Severity.ERROR,
            public=False,
            metadata={"stage": stage, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# SECURITY Faults
# ============================================================================

class SecurityFault(Fault):
    """Base class for security faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.WARN,
        public: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.SECURITY,
            severity=severity,
            retryable=False,
            public=public,
            metadata=metadata,
        )


class RateLimitExceededFault(SecurityFault):
    """Rate limit exceeded for client."""

    status = 429

    def __init__(self, limit: int, window: float, retry_after: int, **kwargs):
        super().__init__(
            code="RATE_LIMIT_EXCEEDED",
            message="Too Many Attempts.",
            metadata={
                "limit": limit,
                "window": window,
                "retry_after": retry_after,
                **kwargs.get("metadata", {}),
            },
        )
        self.retry_after = retry_after

    def to_public_dict(self) -> dict[str, Any]:
        body = super().to_public_dict()
        body["retry_after"] = self.retry_after
        return body


class CSRFMismatchFault(SecurityFault):
    """Submitted CSRF token is missing or does not match the session token."""

    status = 419

    def __init__(self, reason: str = "mismatch", **kwargs):
        super().__init__(
            code="CSRF_TOKEN_MISMATCH",
            message="CSRF token mismatch.",
            metadata={"reason": reason, **kwargs.get("metadata", {})},
        )


class UnauthenticatedFault(SecurityFault):
    """No guard could authenticate the request."""

    status = 401

    def __init__(self, guard: Optional[str] = None, **kwargs):
        super().__init__(
            code="UNAUTHENTICATED",
            message="Unauthenticated.",
            metadata={"guard": guard, **kwargs.get("metadata", {})},
        )


class UnauthorizedFault(SecurityFault):
    """Authenticated principal lacks a required role or permission."""

    status = 403

    def __init__(
        self,
        missing_roles: Optional[list[str]] = None,
        missing_permissions: Optional[list[str]] = None,
        **kwargs,
    ):
        super().__init__(
            code="UNAUTHORIZED",
            message="Forbidden",
            metadata={
                "missing_roles": missing_roles or [],
                "missing_permissions": missing_permissions or [],
                **kwargs.get("metadata", {}),
            },
        )

    def to_public_dict(self) -> dict[str, Any]:
        return {"message": self.message, "error": "Unauthorized", "code": self.code}


# ============================================================================
# INPUT Faults
# ============================================================================

class InvalidInputFault(Fault):
    """Client input rejected by a guard."""

    status = 400

    def __init__(
        self,
        code: str = "INVALID_INPUT",
        message: str = "Invalid input.",
        **kwargs,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.INPUT,
            severity=Severity.WARN,
            public=True,
            metadata=kwargs.get("metadata", {}),
        )


class SqlPatternDetectedFault(InvalidInputFault):
    """Input matched a SQL-injection signature."""

    def __init__(self, field: str, pattern: str, **kwargs):
        super().__init__(
            code="SQL_PATTERN_DETECTED",
            message="Request blocked due to SQL patterns.",
            metadata={"field": field, "pattern": pattern, **kwargs.get("metadata", {})},
        )


class XssPatternDetectedFault(InvalidInputFault):
    """Input matched an XSS signature while blocking mode is on."""

    def __init__(self, field: str, pattern: str, **kwargs):
        super().__init__(
            code="XSS_PATTERN_DETECTED",
            message="Request blocked due to XSS patterns.",
            metadata={"field": field, "pattern": pattern, **kwargs.get("metadata", {})},
        )


class UnsupportedApiVersionFault(InvalidInputFault):
    """Requested API version is not one of the supported versions."""

    def __init__(self, version: str, supported: list[str], current: str, **kwargs):
        super().__init__(
            code="UNSUPPORTED_API_VERSION",
            message="Invalid API version.",
            metadata={"version": version, **kwargs.get("metadata", {})},
        )
        self.supported = list(supported)
        self.current = current

    def to_public_dict(self) -> dict[str, Any]:
        body = super().to_public_dict()
        body["supported_versions"] = self.supported
        body["current_version"] = self.current
        return body


# ============================================================================
# CACHE Faults
# ============================================================================

class CacheFault(Fault):
    """Cache store operation failed."""

    def __init__(self, operation: str, key: str, reason: str, **kwargs):
        super().__init__(
            code="CACHE_FAULT",
            message=f"Cache {operation} failed for key '{key}': {reason}",
            domain=FaultDomain.CACHE,
            public=False,
            metadata={"operation": operation, "key": key, **kwargs.get("metadata", {})},
        )
