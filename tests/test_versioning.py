"""
Tests for the API versioning stage (middleware_ext/versioning.py):
- Header, URL and Accept resolution
- Rejection of unsupported versions
- Deprecation and sunset headers
"""

import logging

import orjson
import pytest

from bastion.auth import Principal
from bastion.middleware import PathExclusionPolicy
from bastion.middleware_ext import API_VERSION_KEY, ApiVersionStage

from conftest import make_handler, make_request, run_stage


VERSIONS = {
    "v1": {"deprecated": True, "sunset_date": "2027-01-01"},
    "v2": {},
    "v3": {"deprecated": True},
}


# ============================================================================
# Resolution
# ============================================================================


class TestResolveVersion:

    def test_header_strategy(self):
        stage = ApiVersionStage(VERSIONS, "v2")
        assert stage.resolve_version(make_request(headers={"x-api-version": "v3"})) == "v3"
        assert stage.resolve_version(make_request(headers={"x-api-version": "  "})) == "v2"
        assert stage.resolve_version(make_request()) == "v2"

    def test_custom_header_name(self):
        stage = ApiVersionStage(VERSIONS, "v2", header_name="Api-Version")
        assert stage.resolve_version(make_request(headers={"api-version": "v1"})) == "v1"
        assert stage.resolve_version(make_request(headers={"x-api-version": "v1"})) == "v2"

    def test_url_strategy(self):
        stage = ApiVersionStage(VERSIONS, "v2", strategy="url")
        assert stage.resolve_version(make_request(path="/api/v1/users")) == "v1"
        assert stage.resolve_version(make_request(path="/api/v3")) == "v3"
        assert stage.resolve_version(make_request(path="/api/version/users")) == "v2"
        assert stage.resolve_version(make_request(path="/other/v1/users")) == "v2"

    def test_url_strategy_custom_base(self):
        stage = ApiVersionStage(VERSIONS, "v2", strategy="url", url_base="/service/", url_prefix="v")
        assert stage.resolve_version(make_request(path="/service/v1/items")) == "v1"
        assert stage.resolve_version(make_request(path="/api/v1/items")) == "v2"

    def test_accept_strategy(self):
        stage = ApiVersionStage(VERSIONS, "v2", strategy="accept")
        request = make_request(headers={"accept": "application/vnd.api.v3+json"})
        assert stage.resolve_version(request) == "v3"
        assert stage.resolve_version(make_request(headers={"accept": "application/json"})) == "v2"

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            ApiVersionStage(VERSIONS, strategy="query")
        with pytest.raises(ValueError):
            ApiVersionStage({})


# ============================================================================
# Stage
# ============================================================================


class TestApiVersionStage:

    @pytest.mark.asyncio
    async def test_supported_version_is_recorded_and_advertised(self):
        handler = make_handler()
        request = make_request(headers={"x-api-version": "v2"})
        response = await run_stage(ApiVersionStage(VERSIONS, "v2"), request, handler)

        assert response.status == 200
        assert handler.last_request.state[API_VERSION_KEY] == "v2"
        assert response.header("x-api-version") == "v2"
        assert response.header("x-api-version-deprecated") is None
        assert response.header("x-api-version-sunset") is None

    @pytest.mark.asyncio
    async def test_default_version_is_advertised(self):
        response = await run_stage(ApiVersionStage(VERSIONS, "v2"), make_request())
        assert response.header("x-api-version") == "v2"

    @pytest.mark.asyncio
    async def test_unsupported_version_is_400(self, caplog):
        handler = make_handler()
        request = make_request(headers={"x-api-version": "v9"})
        with caplog.at_level(logging.WARNING, logger="bastion.api"):
            response = await run_stage(ApiVersionStage(VERSIONS, "v2"), request, handler)

        assert response.status == 400
        assert orjson.loads(response.body) == {
            "message": "Invalid API version.",
            "code": "UNSUPPORTED_API_VERSION",
            "supported_versions": ["v1", "v2", "v3"],
            "current_version": "v2",
        }
        assert handler.calls == 0
        record = next(r for r in caplog.records if r.name == "bastion.api")
        assert record.context["requested_version"] == "v9"
        assert record.context["supported_versions"] == ["v1", "v2", "v3"]

    @pytest.mark.asyncio
    async def test_deprecated_version_with_sunset(self, caplog):
        request = make_request(headers={"x-api-version": "v1"})

        async def handler(req):
            req.principal = Principal("alice")
            return await make_handler()(req)

        with caplog.at_level(logging.WARNING, logger="bastion.api"):
            response = await ApiVersionStage(VERSIONS, "v2")(request, handler)

        assert response.header("x-api-version") == "v1"
        assert response.header("x-api-version-deprecated") == "true"
        assert response.header("x-api-version-sunset") == "2027-01-01"
        record = next(r for r in caplog.records if r.name == "bastion.api")
        assert record.getMessage() == "Deprecated API version used: v1"
        assert record.context["principal_id"] == "alice"

    @pytest.mark.asyncio
    async def test_deprecated_version_without_sunset(self):
        request = make_request(headers={"x-api-version": "v3"})
        response = await run_stage(ApiVersionStage(VERSIONS, "v2"), request)
        assert response.header("x-api-version-deprecated") == "true"
        assert response.header("x-api-version-sunset") is None

    @pytest.mark.asyncio
    async def test_error_responses_are_versioned_too(self):
        request = make_request(headers={"x-api-version": "v2"})
        response = await run_stage(ApiVersionStage(VERSIONS, "v2"), request, make_handler(status=404))
        assert response.status == 404
        assert response.header("x-api-version") == "v2"

    @pytest.mark.asyncio
    async def test_excluded_path_is_not_versioned(self):
        stage = ApiVersionStage(VERSIONS, "v2", exclusion=PathExclusionPolicy(["/health"]))
        handler = make_handler()
        request = make_request(path="/health", headers={"x-api-version": "v9"})
        response = await run_stage(stage, request, handler)
        assert response.status == 200
        assert response.header("x-api-version") is None
        assert API_VERSION_KEY not in handler.last_request.state
