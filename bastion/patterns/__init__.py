"""
Bastion Patterns - detection and sanitization of hostile input.

Provides:
- XSS and SQL-injection signature sets (compiled once at import)
- Idempotent HTML-entity encoding and ``javascript:`` neutralization
- Tag stripping (bleach)
- Sensitive-field redaction for logs
"""

from .matcher import (
    detect_sql_injection,
    detect_xss,
    encode_html,
    iter_strings,
    map_strings,
    neutralize_scripts,
    redact,
    scan,
    strip_tags,
)
from .signatures import (
    REDACTED,
    SENSITIVE_KEYS,
    SQL_SIGNATURES,
    XSS_SIGNATURES,
    Signature,
)

__all__ = [
    "Signature",
    "SQL_SIGNATURES",
    "XSS_SIGNATURES",
    "SENSITIVE_KEYS",
    "REDACTED",
    "detect_sql_injection",
    "detect_xss",
    "scan",
    "encode_html",
    "neutralize_scripts",
    "strip_tags",
    "iter_strings",
    "map_strings",
    "redact",
]
