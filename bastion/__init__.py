"""
Bastion - Async HTTP request-processing pipeline

Complete integration of:
- Pipeline: Ordered stages folded into one handler behind a fault boundary
- Traffic: Fixed-window rate limiting, response caching, gzip, timing
- Security: CSRF, XSS and SQL-injection guards, input sanitization, headers
- Auth: Session/bearer/API-key guards, RBAC/PBAC with a role DAG
- Faults: Structured error handling with fault domains
- Config: Layered YAML/.env/environment configuration with typed settings

Everything composes through the stack builder and runs on any ASGI server.
"""

__version__ = "0.1.0"

# ============================================================================
# Core
# ============================================================================

from .request import Request
from .response import Response
from .middleware import (
    ExclusionPolicy,
    FunctionStage,
    Handler,
    NeverExclude,
    PathExclusionPolicy,
    Pipeline,
    Stage,
)
from .sessions import MemorySessionStore, Session

# ============================================================================
# Configuration
# ============================================================================

from .config import (
    ConfigLoader,
    ConfigProvider,
    DictConfigProvider,
    PipelineSettings,
    load_settings,
)

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    CacheFault,
    ConfigInvalidFault,
    CSRFMismatchFault,
    Fault,
    InternalStageFault,
    InvalidInputFault,
    RateLimitExceededFault,
    SqlPatternDetectedFault,
    UnauthenticatedFault,
    UnauthorizedFault,
    XssPatternDetectedFault,
)

# ============================================================================
# Stages and assembly
# ============================================================================

from .auth import (
    AccessControlEvaluator,
    AccessRule,
    AuthenticationStage,
    AuthorizationStage,
    MemoryCredentialStore,
    Principal,
    TokenHasher,
)
from .cache import MemoryBackend, ResponseCacheStage
from .middleware_ext import (
    CompressionStage,
    CsrfStage,
    CsrfTokenManager,
    InputSanitizationStage,
    MemoryRateLimitStore,
    RateLimitStage,
    RequestLoggerStage,
    ResponseTimeStage,
    SecurityHeadersStage,
    SqlInjectionGuardStage,
    XssProtectionStage,
    configure_logging,
)
from .stack import PRIORITIES, build_default_stack
from .asgi import BastionASGI, serve

__all__ = [
    "__version__",
    # Core
    "Request",
    "Response",
    "Handler",
    "Stage",
    "FunctionStage",
    "Pipeline",
    "ExclusionPolicy",
    "PathExclusionPolicy",
    "NeverExclude",
    "Session",
    "MemorySessionStore",
    # Configuration
    "ConfigLoader",
    "ConfigProvider",
    "DictConfigProvider",
    "PipelineSettings",
    "load_settings",
    # Faults
    "Fault",
    "RateLimitExceededFault",
    "CSRFMismatchFault",
    "UnauthenticatedFault",
    "UnauthorizedFault",
    "InvalidInputFault",
    "SqlPatternDetectedFault",
    "XssPatternDetectedFault",
    "InternalStageFault",
    "ConfigInvalidFault",
    "CacheFault",
    # Stages
    "RequestLoggerStage",
    "RateLimitStage",
    "MemoryRateLimitStore",
    "CsrfStage",
    "CsrfTokenManager",
    "AuthenticationStage",
    "AuthorizationStage",
    "AccessControlEvaluator",
    "AccessRule",
    "Principal",
    "MemoryCredentialStore",
    "TokenHasher",
    "SqlInjectionGuardStage",
    "XssProtectionStage",
    "InputSanitizationStage",
    "SecurityHeadersStage",
    "ResponseCacheStage",
    "MemoryBackend",
    "CompressionStage",
    "ResponseTimeStage",
    "configure_logging",
    # Assembly
    "PRIORITIES",
    "build_default_stack",
    "BastionASGI",
    "serve",
]
