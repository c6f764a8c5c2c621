"""
Tests for the input guard stages (middleware_ext/input_guard.py):
- SQL-injection blocking
- XSS detection, neutralization and blocking mode
- Input sanitization
"""

import logging

import orjson
import pytest

from bastion.middleware import PathExclusionPolicy
from bastion.middleware_ext import (
    InputSanitizationStage,
    SqlInjectionGuardStage,
    XssProtectionStage,
)
from bastion.patterns import REDACTED

from conftest import make_handler, make_request, run_stage


# ============================================================================
# SQL injection
# ============================================================================


class TestSqlInjectionGuardStage:

    @pytest.mark.asyncio
    async def test_blocks_query_payload(self, caplog):
        handler = make_handler()
        request = make_request(query={"id": "1 UNION SELECT password FROM users"})
        with caplog.at_level(logging.WARNING, logger="bastion.security"):
            response = await run_stage(SqlInjectionGuardStage(), request, handler)

        assert response.status == 400
        body = orjson.loads(response.body)
        assert body == {
            "message": "Request blocked due to SQL patterns.",
            "code": "SQL_PATTERN_DETECTED",
        }
        assert handler.calls == 0

        record = next(r for r in caplog.records if r.name == "bastion.security")
        assert record.context["field"] == "query.id"
        assert record.context["pattern"] == "union_select"

    @pytest.mark.asyncio
    async def test_blocks_nested_json(self):
        request = make_request(method="POST", json={"filter": {"terms": ["ok", "x'; DROP TABLE t"]}})
        response = await run_stage(SqlInjectionGuardStage(), request)
        assert response.status == 400
        assert response.fault.metadata["field"] == "json.filter.terms[1]"

    @pytest.mark.asyncio
    async def test_log_redacts_sensitive_fields(self, caplog):
        request = make_request(method="POST", body={"name": "' OR 1=1", "password": "hunter2"})
        with caplog.at_level(logging.WARNING, logger="bastion.security"):
            await run_stage(SqlInjectionGuardStage(), request)
        record = next(r for r in caplog.records if r.name == "bastion.security")
        assert record.context["input"]["body"]["password"] == REDACTED
        assert "hunter2" not in repr(record.context)

    @pytest.mark.asyncio
    async def test_query_credentials_never_logged(self, caplog):
        request = make_request(query={"api_key": "sk-live-SECRET", "q": "' OR 1=1"})
        with caplog.at_level(logging.WARNING, logger="bastion.security"):
            response = await run_stage(SqlInjectionGuardStage(), request)
        assert response.status == 400
        record = next(r for r in caplog.records if r.name == "bastion.security")
        assert "sk-live-SECRET" not in repr(record.context)
        assert "api_key=%5BREDACTED%5D" in record.context["url"]

    @pytest.mark.asyncio
    async def test_blocks_payload_in_field_name(self):
        handler = make_handler()
        request = make_request(method="POST", json={"filter": {"1 UNION SELECT password FROM users": "x"}})
        response = await run_stage(SqlInjectionGuardStage(), request, handler)
        assert response.status == 400
        assert response.fault.metadata["field"] == "json.filter.1 UNION SELECT password FROM users#key"
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_clean_input_passes_unchanged(self):
        handler = make_handler()
        request = make_request(method="POST", body={"name": "O'Brien", "age": 42})
        response = await run_stage(SqlInjectionGuardStage(), request, handler)
        assert response.status == 200
        assert handler.last_request.body == {"name": "O'Brien", "age": 42}

    @pytest.mark.asyncio
    async def test_excluded_path_not_scanned(self):
        stage = SqlInjectionGuardStage(exclusion=PathExclusionPolicy(["/admin/sql"]))
        request = make_request(path="/admin/sql", query={"q": "SELECT * FROM users"})
        assert (await run_stage(stage, request)).status == 200


# ============================================================================
# XSS
# ============================================================================


class TestXssProtectionStage:

    @pytest.mark.asyncio
    async def test_encodes_input_and_logs(self, caplog):
        handler = make_handler()
        request = make_request(method="POST", body={"comment": "<script>alert(1)</script>"})
        with caplog.at_level(logging.WARNING, logger="bastion.security"):
            response = await run_stage(XssProtectionStage(), request, handler)

        assert response.status == 200
        assert handler.last_request.body["comment"] == "&lt;script&gt;alert(1)&lt;/script&gt;"
        record = next(r for r in caplog.records if r.name == "bastion.security")
        assert record.context["pattern"] == "script_tag"
        assert record.context["field"] == "body.comment"

    @pytest.mark.asyncio
    async def test_javascript_scheme_neutralized(self):
        handler = make_handler()
        request = make_request(query={"next": "javascript:alert(1)"})
        await run_stage(XssProtectionStage(), request, handler)
        assert handler.last_request.query["next"] == "javascript&#58;alert(1)"

    @pytest.mark.asyncio
    async def test_block_mode_rejects(self):
        handler = make_handler()
        stage = XssProtectionStage(block=True)
        request = make_request(json={"bio": '<img src=x onerror="steal()">'})
        response = await run_stage(stage, request, handler)
        assert response.status == 400
        assert response.fault.code == "XSS_PATTERN_DETECTED"
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_password_fields_untouched(self):
        handler = make_handler()
        request = make_request(method="POST", body={"password": "<p&ss'>", "name": "<b>"})
        await run_stage(XssProtectionStage(), request, handler)
        assert handler.last_request.body["password"] == "<p&ss'>"
        assert handler.last_request.body["name"] == "&lt;b&gt;"

    @pytest.mark.asyncio
    async def test_response_headers(self):
        stage = XssProtectionStage(content_security_policy="default-src 'self'")
        response = await run_stage(stage, make_request())
        assert response.header("x-xss-protection") == "1; mode=block"
        assert response.header("x-content-type-options") == "nosniff"
        assert response.header("content-security-policy") == "default-src 'self'"

    @pytest.mark.asyncio
    async def test_handler_headers_win(self):
        handler = make_handler(headers={"content-security-policy": "none"})
        stage = XssProtectionStage(content_security_policy="default-src 'self'")
        response = await run_stage(stage, make_request(), handler)
        assert response.header("content-security-policy") == "none"

    @pytest.mark.asyncio
    async def test_non_string_values_preserved(self):
        handler = make_handler()
        request = make_request(json={"n": 1, "ok": True, "items": [None, 2.5]})
        await run_stage(XssProtectionStage(), request, handler)
        assert handler.last_request.json == {"n": 1, "ok": True, "items": [None, 2.5]}


# ============================================================================
# Sanitization
# ============================================================================


class TestInputSanitizationStage:

    @pytest.mark.asyncio
    async def test_encodes_every_source(self):
        handler = make_handler()
        request = make_request(
            method="POST",
            query={"q": "a<b"},
            body={"title": "Tom & Jerry"},
            json={"tags": ["\"x\""]},
        )
        await run_stage(InputSanitizationStage(), request, handler)
        seen = handler.last_request
        assert seen.query["q"] == "a&lt;b"
        assert seen.body["title"] == "Tom &amp; Jerry"
        assert seen.json["tags"] == ["&quot;x&quot;"]

    @pytest.mark.asyncio
    async def test_already_encoded_input_is_stable(self):
        handler = make_handler()
        request = make_request(body={"title": "Tom &amp; Jerry &lt;3"})
        await run_stage(InputSanitizationStage(), request, handler)
        assert handler.last_request.body["title"] == "Tom &amp; Jerry &lt;3"

    @pytest.mark.asyncio
    async def test_strip_tags_mode(self):
        handler = make_handler()
        stage = InputSanitizationStage(strip_tags=True, allowed_tags={"b"})
        request = make_request(body={"text": "<b>bold</b> <i>plain</i>"})
        await run_stage(stage, request, handler)
        assert handler.last_request.body["text"] == "&lt;b&gt;bold&lt;/b&gt; plain"

    @pytest.mark.asyncio
    async def test_except_fields(self):
        handler = make_handler()
        stage = InputSanitizationStage(except_fields={"raw_html"})
        request = make_request(body={"raw_html": "<p>", "other": "<p>"})
        await run_stage(stage, request, handler)
        assert handler.last_request.body == {"raw_html": "<p>", "other": "&lt;p&gt;"}
