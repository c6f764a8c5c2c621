"""
Tests for CSRF protection and security headers (middleware_ext/security.py).
"""

import logging
from urllib.parse import quote

import orjson
import pytest

from bastion.middleware import PathExclusionPolicy
from bastion.middleware_ext import CsrfStage, CsrfTokenManager, SecurityHeadersStage
from bastion.sessions import Session

from conftest import make_handler, make_request, run_stage


# ============================================================================
# Token manager
# ============================================================================


class TestCsrfTokenManager:

    def test_generated_token_is_stored_on_session(self, session):
        manager = CsrfTokenManager()
        token = manager.generate_token(session)
        assert len(token) == 40
        assert session.get("_csrf_token") == token
        assert manager.get_token(session) == token

    def test_generate_replaces_previous_token(self, session):
        manager = CsrfTokenManager()
        first = manager.generate_token(session)
        second = manager.generate_token(session)
        assert first != second
        assert not manager.validate(session, first)
        assert manager.validate(session, second)

    def test_ensure_token_is_stable(self, session):
        manager = CsrfTokenManager()
        assert manager.ensure_token(session) == manager.ensure_token(session)

    def test_validate_rejects_missing_values(self, session):
        manager = CsrfTokenManager()
        assert not manager.validate(session, "anything")
        assert not manager.validate(None, "anything")
        manager.generate_token(session)
        assert not manager.validate(session, None)
        assert not manager.validate(session, "")


# ============================================================================
# CSRF stage
# ============================================================================


def session_with_token():
    session = Session()
    token = CsrfTokenManager().generate_token(session)
    return session, token


class TestCsrfStage:

    @pytest.mark.asyncio
    async def test_safe_method_passes_and_exposes_token(self, session):
        stage = CsrfStage()
        request = make_request(session=session)
        response = await run_stage(stage, request)

        token = session.get("_csrf_token")
        assert response.status == 200
        assert token and request.state["csrf_token"] == token
        assert response.header("x-csrf-token") == token
        cookie = response.header("set-cookie")
        assert cookie.startswith(f"XSRF-TOKEN={token}")
        assert "HttpOnly" not in cookie
        assert "SameSite=Lax" in cookie

    @pytest.mark.asyncio
    async def test_post_with_header_token(self):
        session, token = session_with_token()
        handler = make_handler()
        request = make_request(method="POST", session=session, headers={"X-CSRF-TOKEN": token})
        response = await run_stage(CsrfStage(), request, handler)
        assert response.status == 200
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_post_with_form_field(self):
        session, token = session_with_token()
        request = make_request(method="POST", session=session, body={"_token": token})
        assert (await run_stage(CsrfStage(), request)).status == 200

    @pytest.mark.asyncio
    async def test_post_with_json_field(self):
        session, token = session_with_token()
        request = make_request(method="PUT", session=session, json={"_token": token})
        assert (await run_stage(CsrfStage(), request)).status == 200

    @pytest.mark.asyncio
    async def test_post_with_url_encoded_xsrf_header(self):
        session, token = session_with_token()
        request = make_request(
            method="DELETE", session=session, headers={"X-XSRF-TOKEN": quote(token, safe="")}
        )
        assert (await run_stage(CsrfStage(), request)).status == 200

    @pytest.mark.asyncio
    async def test_missing_token_is_419(self, caplog):
        session, _ = session_with_token()
        handler = make_handler()
        with caplog.at_level(logging.WARNING, logger="bastion.security"):
            response = await run_stage(CsrfStage(), make_request(method="POST", session=session), handler)

        assert response.status == 419
        assert orjson.loads(response.body)["message"] == "CSRF token mismatch."
        assert response.fault.metadata["reason"] == "missing"
        assert handler.calls == 0
        record = next(r for r in caplog.records if r.name == "bastion.security")
        assert record.getMessage() == "CSRF token mismatch"
        assert record.context["ip"] == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_wrong_token_is_419(self):
        session, _ = session_with_token()
        request = make_request(method="PATCH", session=session, headers={"X-CSRF-TOKEN": "forged"})
        response = await run_stage(CsrfStage(), request)
        assert response.status == 419
        assert response.fault.metadata["reason"] == "mismatch"

    @pytest.mark.asyncio
    async def test_no_session_is_419(self):
        request = make_request(method="POST", headers={"X-CSRF-TOKEN": "x"})
        response = await run_stage(CsrfStage(), request)
        assert response.status == 419
        assert response.fault.metadata["reason"] == "no_session"

    @pytest.mark.asyncio
    async def test_safe_method_without_session_sets_nothing(self):
        response = await run_stage(CsrfStage(), make_request())
        assert response.status == 200
        assert response.header("set-cookie") is None

    @pytest.mark.asyncio
    async def test_excluded_path_skips_validation(self):
        stage = CsrfStage(exclusion=PathExclusionPolicy(["/webhooks/*"]))
        request = make_request(method="POST", path="/webhooks/stripe", session=Session())
        response = await run_stage(stage, request)
        assert response.status == 200
        assert response.header("set-cookie") is None

    @pytest.mark.asyncio
    async def test_cookie_attributes_follow_settings(self, session):
        stage = CsrfStage(cookie_name="CSRF", cookie_secure=False, cookie_samesite="Strict")
        response = await run_stage(stage, make_request(session=session))
        cookie = response.header("set-cookie")
        assert cookie.startswith("CSRF=")
        assert "Secure" not in cookie
        assert "SameSite=Strict" in cookie


# ============================================================================
# Security headers
# ============================================================================


class TestSecurityHeadersStage:

    @pytest.mark.asyncio
    async def test_baseline_headers(self):
        response = await run_stage(SecurityHeadersStage(), make_request())
        assert response.header("x-content-type-options") == "nosniff"
        assert response.header("x-frame-options") == "DENY"
        assert response.header("referrer-policy") == "strict-origin-when-cross-origin"
        assert response.header("strict-transport-security") == "max-age=31536000; includeSubDomains"
        assert response.header("cross-origin-opener-policy") == "same-origin"
        assert response.header("cache-control") == "no-store, no-cache, must-revalidate"
        assert response.header("pragma") == "no-cache"
        assert "camera=()" in response.header("permissions-policy")

    @pytest.mark.asyncio
    async def test_existing_headers_are_kept(self):
        handler = make_handler(headers={"Cache-Control": "public, max-age=60", "X-Frame-Options": "SAMEORIGIN"})
        response = await run_stage(SecurityHeadersStage(), make_request(), handler)
        assert response.header("cache-control") == "public, max-age=60"
        assert response.header("x-frame-options") == "SAMEORIGIN"

    @pytest.mark.asyncio
    async def test_overrides_replace_and_remove(self):
        stage = SecurityHeadersStage({"X-Frame-Options": "SAMEORIGIN", "Pragma": "", "x-custom": "1"})
        response = await run_stage(stage, make_request())
        assert response.header("x-frame-options") == "SAMEORIGIN"
        assert response.header("pragma") is None
        assert response.header("x-custom") == "1"

    def test_hsts_settings(self):
        stage = SecurityHeadersStage(hsts_max_age=600, hsts_preload=True)
        assert stage.headers["strict-transport-security"] == "max-age=600; includeSubDomains; preload"
        bare = SecurityHeadersStage(hsts_max_age=0, hsts_include_subdomains=False)
        assert bare.headers["strict-transport-security"] == "max-age=0"

    def test_negative_hsts_max_age_is_rejected(self):
        with pytest.raises(ValueError):
            SecurityHeadersStage(hsts_max_age=-1)

    @pytest.mark.asyncio
    async def test_permissions_policy_replaces_baseline(self):
        stage = SecurityHeadersStage(permissions_policy="geolocation=(self)")
        response = await run_stage(stage, make_request())
        assert response.header("permissions-policy") == "geolocation=(self)"

    def test_override_beats_hsts_settings(self):
        stage = SecurityHeadersStage(
            {"Strict-Transport-Security": "max-age=5"}, hsts_max_age=600, hsts_preload=True,
        )
        assert stage.headers["strict-transport-security"] == "max-age=5"

    def test_headers_property_is_a_copy(self):
        stage = SecurityHeadersStage()
        stage.headers["x-frame-options"] = "ALLOW"
        assert stage.headers["x-frame-options"] == "DENY"

    @pytest.mark.asyncio
    async def test_headers_added_to_error_responses(self):
        response = await run_stage(SecurityHeadersStage(), make_request(), make_handler(status=500))
        assert response.header("x-content-type-options") == "nosniff"
