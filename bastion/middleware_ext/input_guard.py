"""
Input Guard Stages - SQL-injection blocking, XSS protection and sanitization.

Each stage walks the query params, form body and JSON payload of the
request. Order in the default stack:
1. SqlInjectionGuardStage (sees raw input, blocks with 400)
2. XssProtectionStage (logs signatures, neutralizes, optional blocking)
3. InputSanitizationStage (entity-encodes every string leaf)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Collection, Dict, Optional, Tuple

from ..faults import SqlPatternDetectedFault, XssPatternDetectedFault
from ..middleware import ExclusionPolicy, Handler, Stage
from ..patterns import (
    detect_sql_injection,
    detect_xss,
    encode_html,
    map_strings,
    neutralize_scripts,
    redact,
    scan,
    strip_tags as strip_html_tags,
)
from ..request import Request
from ..response import Response


def _payloads(request: Request) -> Tuple[Tuple[str, Any], ...]:
    return (("query", request.query), ("body", request.body), ("json", request.json))


def _scan_request(
    request: Request, detector: Callable[[str], Optional[str]]
) -> Optional[Tuple[str, str, str]]:
    for source, payload in _payloads(request):
        hit = scan(payload, detector)
        if hit is not None:
            field, pattern, value = hit
            return f"{source}.{field}" if field else source, pattern, value
    return None


def _rewrite_request(request: Request, fn: Callable[[str], str], skip_keys: Collection[str] = ()) -> None:
    request.query = map_strings(request.query, fn, skip_keys)
    request.body = map_strings(request.body, fn, skip_keys)
    if request.json is not None:
        request.json = map_strings(request.json, fn, skip_keys)


def _redacted_input(request: Request) -> Dict[str, Any]:
    return {source: redact(payload) for source, payload in _payloads(request) if payload}


# ─── SQL injection ───────────────────────────────────────────────────────────

class SqlInjectionGuardStage(Stage):
    """
    Rejects requests whose input matches a SQL-injection signature.

    Args:
        exclusion: Requests that are not scanned
        logger: Logger (``bastion.security`` by default)
    """

    name = "sqli"

    def __init__(
        self,
        *,
        exclusion: Optional[ExclusionPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.logger = logger or logging.getLogger("bastion.security")

    async def process(self, request: Request, next_handler: Handler) -> Response:
        hit = _scan_request(request, detect_sql_injection)
        if hit is None:
            return await next_handler(request)

        field, pattern, _ = hit
        self.logger.warning(
            "SQL injection pattern detected in %s",
            field,
            extra={"context": {
                **request.context(),
                "field": field,
                "pattern": pattern,
                "input": _redacted_input(request),
            }},
        )
        return Response.from_fault(SqlPatternDetectedFault(field=field, pattern=pattern))


# ─── XSS ─────────────────────────────────────────────────────────────────────

class XssProtectionStage(Stage):
    """
    XSS protection stage.

    Inbound: logs any XSS signature found in the input, then entity-encodes
    every string leaf and rewrites ``javascript:`` to an inert form. Fields
    named in ``except_fields`` are left untouched. With
    ``block=True`` a detection is answered with 400 instead.

    Outbound: adds ``X-XSS-Protection: 1; mode=block``,
    ``X-Content-Type-Options: nosniff`` and, if configured, a
    ``Content-Security-Policy``. Headers already set are kept.
    """

    name = "xss"

    def __init__(
        self,
        *,
        block: bool = False,
        content_security_policy: Optional[str] = None,
        except_fields: Collection[str] = ("password", "password_confirmation", "current_password"),
        exclusion: Optional[ExclusionPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.block = block
        self.content_security_policy = content_security_policy
        self.except_fields = frozenset(except_fields)
        self.logger = logger or logging.getLogger("bastion.security")

    @staticmethod
    def clean(value: str) -> str:
        return neutralize_scripts(encode_html(value))

    async def process(self, request: Request, next_handler: Handler) -> Response:
        hit = _scan_request(request, detect_xss)
        if hit is not None:
            field, pattern, _ = hit
            self.logger.warning(
                "XSS pattern detected in %s",
                field,
                extra={"context": {
                    **request.context(),
                    "field": field,
                    "pattern": pattern,
                    "input": _redacted_input(request),
                }},
            )
            if self.block:
                return Response.from_fault(XssPatternDetectedFault(field=field, pattern=pattern))

        _rewrite_request(request, self.clean, self.except_fields)

        response = await next_handler(request)
        response.headers.setdefault("x-xss-protection", "1; mode=block")
        response.headers.setdefault("x-content-type-options", "nosniff")
        if self.content_security_policy:
            response.headers.setdefault("content-security-policy", self.content_security_policy)
        return response


# ─── Sanitization ────────────────────────────────────────────────────────────

class InputSanitizationStage(Stage):
    """
    HTML-entity-encodes every string in query, body and JSON input.

    Non-string values pass through unchanged. Fields named in ``except_fields``
    (passwords by default) are left untouched. With ``strip_tags`` enabled,
    tags outside ``allowed_tags`` are removed before encoding.
    """

    name = "sanitize"

    def __init__(
        self,
        *,
        strip_tags: bool = False,
        allowed_tags: Collection[str] = (),
        except_fields: Collection[str] = ("password", "password_confirmation", "current_password"),
        exclusion: Optional[ExclusionPolicy] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.strip_tags = strip_tags
        self.allowed_tags = frozenset(allowed_tags)
        self.except_fields = frozenset(except_fields)

    def clean(self, value: str) -> str:
        if self.strip_tags:
            value = strip_html_tags(value, self.allowed_tags)
        return encode_html(value)

    async def process(self, request: Request, next_handler: Handler) -> Response:
        _rewrite_request(request, self.clean, self.except_fields)
        return await next_handler(request)


__all__ = [
    "SqlInjectionGuardStage",
    "XssProtectionStage",
    "InputSanitizationStage",
]
