"""
Pattern matcher - stateless detection and neutralization helpers.

Every function here is pure: it takes a value and returns a verdict or a new
value. Nested containers (dicts, lists, tuples) are walked recursively and
only ``str`` leaves are ever inspected or rewritten.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Collection, Iterator, Optional, Tuple

import bleach

from .signatures import (
    REDACTED,
    SENSITIVE_KEYS,
    SQL_SIGNATURES,
    XSS_SIGNATURES,
    Signature,
)


# ``&`` that does not already start a named or numeric entity.
_BARE_AMPERSAND = re.compile(r"&(?!(?:[a-zA-Z][a-zA-Z0-9]*|#\d+|#[xX][0-9a-fA-F]+);)")
_JAVASCRIPT_SCHEME = re.compile(r"(javascript)\s*:", re.IGNORECASE)

_ENTITY_MAP = (
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
)


# ============================================================================
# Detection
# ============================================================================

def _first_match(value: str, signatures: Tuple[Signature, ...]) -> Optional[str]:
    for signature in signatures:
        if signature.regex.search(value):
            return signature.name
    return None


def detect_sql_injection(value: str) -> Optional[str]:
    """Return the name of the first SQL-injection signature ``value`` matches."""
    return _first_match(value, SQL_SIGNATURES)


def detect_xss(value: str) -> Optional[str]:
    """Return the name of the first XSS signature ``value`` matches."""
    return _first_match(value, XSS_SIGNATURES)


def scan(data: Any, detector: Callable[[str], Optional[str]]) -> Optional[Tuple[str, str, str]]:
    """
    Scan every string leaf and every string mapping key of ``data`` with
    ``detector``.

    Returns:
        ``(field_path, signature_name, value)`` for the first hit, else None.
    """
    for path, value in iter_strings(data, include_keys=True):
        name = detector(value)
        if name:
            return path, name, value
    return None


# ============================================================================
# Neutralization
# ============================================================================

def encode_html(value: str) -> str:
    """
    HTML-entity-encode ``& < > " '``.

    Idempotent: an ``&`` that already begins a valid entity is left alone, so
    ``encode_html(encode_html(s)) == encode_html(s)``.
    """
    value = _BARE_AMPERSAND.sub("&amp;", value)
    for char, entity in _ENTITY_MAP:
        value = value.replace(char, entity)
    return value


def neutralize_scripts(value: str) -> str:
    """Rewrite ``javascript:`` (any case) to the inert ``javascript&#58;``."""
    return _JAVASCRIPT_SCHEME.sub(r"\1&#58;", value)


def strip_tags(value: str, allowed_tags: Collection[str] = ()) -> str:
    """Remove HTML tags not in ``allowed_tags`` (text content is kept)."""
    return bleach.clean(value, tags=frozenset(allowed_tags), attributes={}, strip=True)


# ============================================================================
# Tree walking
# ============================================================================

def iter_strings(data: Any, prefix: str = "", include_keys: bool = False) -> Iterator[Tuple[str, str]]:
    """
    Yield ``(dotted_path, value)`` for every string leaf.

    With ``include_keys`` each string mapping key is yielded too, as
    ``(path + "#key", key)`` ahead of the value it labels.
    """
    if isinstance(data, str):
        yield prefix, data
    elif isinstance(data, dict):
        for key, value in data.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if include_keys and isinstance(key, str):
                yield f"{path}#key", key
            yield from iter_strings(value, path, include_keys)
    elif isinstance(data, (list, tuple)):
        for index, value in enumerate(data):
            yield from iter_strings(value, f"{prefix}[{index}]", include_keys)


def map_strings(data: Any, fn: Callable[[str], str], skip_keys: Collection[str] = ()) -> Any:
    """
    Return a copy of ``data`` with ``fn`` applied to every string leaf.

    Values stored under a key in ``skip_keys`` (at any depth) are copied
    unchanged.
    """
    if isinstance(data, str):
        return fn(data)
    if isinstance(data, dict):
        return {
            key: value if key in skip_keys else map_strings(value, fn, skip_keys)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [map_strings(value, fn, skip_keys) for value in data]
    if isinstance(data, tuple):
        return tuple(map_strings(value, fn, skip_keys) for value in data)
    return data


def redact(data: Any, keys: Collection[str] = SENSITIVE_KEYS) -> Any:
    """Return a copy of ``data`` with values under sensitive keys replaced."""
    if isinstance(data, dict):
        return {
            key: REDACTED if str(key).lower() in keys else redact(value, keys)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(value, keys) for value in data]
    return data


__all__ = [
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
