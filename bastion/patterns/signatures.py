"""
Static signature sets for hostile input.

Each set is an immutable tuple of ``Signature`` compiled once at import and
shared by every request. Names are stable and appear in security logs.
"""

from __future__ import annotations

import re
from typing import NamedTuple, Pattern, Tuple


class Signature(NamedTuple):
    name: str
    regex: Pattern[str]


def _sig(name: str, pattern: str) -> Signature:
    return Signature(name, re.compile(pattern, re.IGNORECASE))


# ============================================================================
# SQL injection
# ============================================================================

SQL_SIGNATURES: Tuple[Signature, ...] = (
    # Keyword statements
    _sig("union_select", r"\bUNION\b(?:\s+ALL)?\s+SELECT\b"),
    _sig("select_from", r"(?:^\s*|[;'\"(]\s*)SELECT\s+(?:\*|\w+(?:\s*,\s*\w+)*)\s+FROM\s+\w+"),
    _sig("insert_into", r"\bINSERT\s+INTO\b"),
    _sig("delete_from", r"\bDELETE\s+FROM\b"),
    _sig("drop_object", r"\bDROP\s+(?:TABLE|DATABASE|SCHEMA|VIEW|INDEX)\b"),
    _sig("update_set", r"\bUPDATE\s+[\w`\"\[\].]+\s+SET\b"),
    _sig("ddl_table", r"\b(?:ALTER|CREATE|TRUNCATE)\s+TABLE\b"),
    # Boolean tautologies
    _sig("boolean_numeric", r"\b(?:OR|AND)\s+\d+\s*=\s*\d+"),
    _sig("boolean_quoted", r"'\s*(?:OR|AND)\s+'[^']*'\s*=\s*'"),
    _sig("quote_or", r"'\s*(?:OR|AND)\s+(?:\d|'|true\b)"),
    # Comment tokens
    _sig("comment_after_quote", r"(?:'|\))\s*(?:--|#)|\d\s*--"),
    _sig("trailing_comment", r"--\s*$"),
    _sig("block_comment", r"/\*[\s\S]*?\*/"),
    # Stacked queries
    _sig("stacked_query", r";\s*(?:DROP|DELETE|INSERT|UPDATE|ALTER|CREATE|TRUNCATE|EXEC|SHUTDOWN)\b"),
    # Dangerous procedures and metadata access
    _sig("xp_cmdshell", r"\bxp_cmdshell\b"),
    _sig("exec_procedure", r"\bEXEC(?:UTE)?\s+(?:master\.\.)?(?:xp_|sp_)\w+"),
    _sig("information_schema", r"\bINFORMATION_SCHEMA\b"),
    _sig("load_file", r"\bLOAD_FILE\s*\("),
    _sig("into_outfile", r"\bINTO\s+(?:OUT|DUMP)FILE\b"),
    # Timing primitives
    _sig("sleep", r"\b(?:PG_)?SLEEP\s*\(\s*\d"),
    _sig("benchmark", r"\bBENCHMARK\s*\("),
    _sig("waitfor_delay", r"\bWAITFOR\s+DELAY\b"),
)


# ============================================================================
# Cross-site scripting
# ============================================================================

XSS_SIGNATURES: Tuple[Signature, ...] = (
    _sig("script_tag", r"<\s*script\b"),
    _sig("javascript_uri", r"javascript\s*:"),
    _sig("vbscript_uri", r"vbscript\s*:"),
    _sig("event_handler", r"<[^>]*\bon[a-z]+\s*="),
    _sig("iframe_tag", r"<\s*iframe\b"),
    _sig("object_tag", r"<\s*object\b"),
    _sig("embed_tag", r"<\s*embed\b"),
    _sig("data_html_uri", r"data\s*:\s*text/html"),
    _sig("css_expression", r"expression\s*\("),
)


# ============================================================================
# Redaction
# ============================================================================

SENSITIVE_KEYS = frozenset({
    "password",
    "password_confirmation",
    "current_password",
    "api_key",
    "token",
    "_token",
    "secret",
    "access_token",
    "refresh_token",
    "authorization",
    "credit_card",
    "card_number",
    "cvv",
    "ssn",
})

REDACTED = "[REDACTED]"


__all__ = [
    "Signature",
    "SQL_SIGNATURES",
    "XSS_SIGNATURES",
    "SENSITIVE_KEYS",
    "REDACTED",
]
