"""
BastionFaults - Typed fault signals for the request pipeline.

Rejections in Bastion are NOT bare exceptions. Every client-facing refusal
is a structured Fault with a stable code and HTTP status, and every
unexpected exception is downgraded to an InternalStageFault at the
pipeline boundary.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain taxonomy
- Severity: Severity levels
- Domain faults: one per pipeline rejection
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    ConfigFault,
    ConfigInvalidFault,
    InternalStageFault,
    SecurityFault,
    RateLimitExceededFault,
    CSRFMismatchFault,
    UnauthenticatedFault,
    UnauthorizedFault,
    InvalidInputFault,
    SqlPatternDetectedFault,
    XssPatternDetectedFault,
    UnsupportedApiVersionFault,
    CacheFault,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigFault",
    "ConfigInvalidFault",
    "InternalStageFault",
    "SecurityFault",
    "RateLimitExceededFault",
    "CSRFMismatchFault",
    "UnauthenticatedFault",
    "UnauthorizedFault",
    "InvalidInputFault",
    "SqlPatternDetectedFault",
    "XssPatternDetectedFault",
    "UnsupportedApiVersionFault",
    "CacheFault",
]
