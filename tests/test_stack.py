"""
Tests for the default stack builder and full-pipeline behaviour.
"""

import base64
import gzip
import logging

import orjson
import pytest

from bastion.auth import StaticAccessProvider
from bastion.config import DictConfigProvider, load_settings
from bastion.faults import ConfigInvalidFault
from bastion.response import Response
from bastion.stack import PRIORITIES, build_default_stack, build_guards

from conftest import FakeClock, make_handler, make_request


def settings_for(**sections):
    return load_settings(DictConfigProvider(sections))


async def json_handler(request):
    return Response.json({"path": request.path, "user": getattr(request.principal, "identifier", None)})


class TestBuildDefaultStack:

    def test_default_order(self, credential_store):
        pipeline = build_default_stack(settings_for(), credential_store=credential_store)
        assert pipeline.names == [
            "logging", "rate_limit", "csrf", "auth", "authz", "sqli", "xss",
            "sanitize", "security_headers", "cache", "compression", "timing",
        ]

    def test_api_version_slots_after_rate_limit(self, credential_store):
        pipeline = build_default_stack(
            settings_for(api_version={"enabled": True, "supported_versions": {"v1": {}}}),
            credential_store=credential_store,
        )
        assert pipeline.names[:3] == ["logging", "rate_limit", "api_version"]
        assert pipeline.names == sorted(PRIORITIES, key=PRIORITIES.get)

    def test_basic_guard_kind(self, credential_store):
        guards = build_guards(["basic"], credential_store, basic_realm="intranet")
        assert [guard.name for guard in guards] == ["basic"]
        assert guards[0].challenge == 'Basic realm="intranet"'

    def test_disabled_stages_are_omitted(self, credential_store):
        pipeline = build_default_stack(
            settings_for(
                csrf={"enabled": False},
                cache={"enabled": False},
                input_guard={"sanitize": False, "xss": False},
                logging={"access_log": False},
            ),
            credential_store=credential_store,
        )
        assert pipeline.names == [
            "rate_limit", "auth", "authz", "sqli", "security_headers", "compression", "timing",
        ]

    def test_unknown_guard_kind(self, credential_store):
        with pytest.raises(ValueError):
            build_guards(["session", "kerberos"], credential_store)

    def test_database_provider_needs_store(self, credential_store):
        with pytest.raises(ConfigInvalidFault):
            build_default_stack(
                settings_for(auth={"access_provider": "database"}),
                credential_store=credential_store,
            )


class TestFullPipeline:

    @pytest.mark.asyncio
    async def test_authenticated_get(self, credential_store, alice):
        token = await credential_store.issue_token("alice")
        chain = build_default_stack(settings_for(), credential_store=credential_store).build(json_handler)

        response = await chain(make_request(path="/items", headers={"authorization": f"Bearer {token}"}))

        assert response.status == 200
        assert orjson.loads(response.body) == {"path": "/items", "user": "alice"}
        assert response.header("x-request-id")
        assert response.header("x-response-time").endswith(" ms")
        assert response.header("x-ratelimit-limit") == "60"
        assert response.header("x-cache") == "MISS"
        assert response.header("cache-control") == "public, max-age=3600"
        assert response.header("x-frame-options") == "DENY"
        assert response.header("x-xss-protection") == "1; mode=block"

    @pytest.mark.asyncio
    async def test_anonymous_request_is_401(self, credential_store):
        handler = make_handler()
        chain = build_default_stack(settings_for(), credential_store=credential_store).build(handler)
        response = await chain(make_request(path="/items"))
        assert response.status == 401
        assert response.header("x-ratelimit-remaining") == "59"
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_excluded_auth_path_is_public(self, credential_store):
        chain = build_default_stack(settings_for(), credential_store=credential_store).build(json_handler)
        response = await chain(make_request(path="/health"))
        assert response.status == 200

    @pytest.mark.asyncio
    async def test_sql_injection_blocked_after_auth(self, credential_store, alice):
        token = await credential_store.issue_token("alice")
        handler = make_handler()
        chain = build_default_stack(settings_for(), credential_store=credential_store).build(handler)
        response = await chain(make_request(
            path="/search",
            query={"q": "1 UNION SELECT password FROM users"},
            headers={"authorization": f"Bearer {token}"},
        ))
        assert response.status == 400
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_input_is_sanitized_before_handler(self, credential_store, alice):
        token = await credential_store.issue_token("alice")
        handler = make_handler()
        chain = build_default_stack(
            settings_for(csrf={"enabled": False}), credential_store=credential_store
        ).build(handler)
        await chain(make_request(
            method="POST",
            path="/comments",
            body={"text": "Tom & <b>Jerry</b>", "password": "p<ss"},
            headers={"authorization": f"Bearer {token}"},
        ))
        assert handler.last_request.body == {"text": "Tom &amp; &lt;b&gt;Jerry&lt;/b&gt;", "password": "p<ss"}

    @pytest.mark.asyncio
    async def test_rate_limit_short_circuits_before_auth(self, credential_store):
        clock = FakeClock()
        chain = build_default_stack(
            settings_for(rate_limit={"max_attempts": 2}),
            credential_store=credential_store,
            clock=clock,
        ).build(json_handler)
        statuses = [(await chain(make_request(path="/items"))).status for _ in range(3)]
        assert statuses == [401, 401, 429]

    @pytest.mark.asyncio
    async def test_authorization_rules_apply(self, credential_store, alice):
        token = await credential_store.issue_token("alice")
        provider = StaticAccessProvider({"admin": ["users.manage"], "editor": []})
        chain = build_default_stack(
            settings_for(auth={"rules": [{"path": "/admin/*", "roles": ["admin"]}]}),
            credential_store=credential_store,
            access_provider=provider,
        ).build(json_handler)
        headers = {"authorization": f"Bearer {token}"}

        assert (await chain(make_request(path="/admin/users", headers=headers))).status == 403
        await provider.assign_role("alice", "admin")
        assert (await chain(make_request(path="/admin/users", headers=headers))).status == 200

    @pytest.mark.asyncio
    async def test_gzip_variant_is_cached_separately(self, credential_store):
        big = {"rows": ["x" * 50] * 100}

        async def handler(request):
            handler.calls += 1
            return Response.json(big)
        handler.calls = 0

        chain = build_default_stack(
            settings_for(auth={"enabled": False}), credential_store=credential_store
        ).build(handler)

        first = await chain(make_request(path="/rows", headers={"accept-encoding": "gzip"}))
        second = await chain(make_request(path="/rows", headers={"accept-encoding": "gzip"}))
        plain = await chain(make_request(path="/rows"))

        assert first.header("content-encoding") == "gzip"
        assert second.header("x-cache") == "HIT"
        assert orjson.loads(gzip.decompress(second.body)) == big
        assert plain.header("content-encoding") is None
        assert orjson.loads(plain.body) == big
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_cache_hit_and_rejections_are_timed(self, credential_store):
        chain = build_default_stack(
            settings_for(auth={"enabled": False}, csrf={"enabled": False}, rate_limit={"enabled": False}),
            credential_store=credential_store,
        ).build(json_handler)

        miss = await chain(make_request(path="/items"))
        hit = await chain(make_request(path="/items"))
        blocked = await chain(make_request(path="/search", query={"q": "1; DROP TABLE users"}))

        assert miss.header("x-cache") == "MISS"
        assert hit.header("x-cache") == "HIT"
        assert blocked.status == 400
        for response in (miss, hit, blocked):
            assert response.header("x-response-time").endswith(" ms")

    @pytest.mark.asyncio
    async def test_anonymous_rejection_is_timed(self, credential_store):
        chain = build_default_stack(settings_for(), credential_store=credential_store).build(json_handler)
        response = await chain(make_request(path="/items"))
        assert response.status == 401
        assert response.header("x-response-time").endswith(" ms")

    @pytest.mark.asyncio
    async def test_query_credentials_never_reach_logs(self, credential_store, caplog):
        chain = build_default_stack(settings_for(), credential_store=credential_store).build(json_handler)
        with caplog.at_level(logging.DEBUG, logger="bastion"):
            response = await chain(make_request(path="/items", query={"api_key": "sk-live-SECRET"}))

        assert response.status == 401
        assert caplog.records
        for record in caplog.records:
            assert "sk-live-SECRET" not in record.getMessage()
            assert "sk-live-SECRET" not in repr(getattr(record, "context", None))

    @pytest.mark.asyncio
    async def test_api_versions_are_resolved_and_cached_apart(self, credential_store):
        chain = build_default_stack(
            settings_for(
                auth={"enabled": False},
                api_version={
                    "enabled": True,
                    "default_version": "v2",
                    "supported_versions": {
                        "v1": {"deprecated": True, "sunset_date": "2027-01-01"},
                        "v2": {},
                    },
                },
            ),
            credential_store=credential_store,
        ).build(json_handler)

        old = await chain(make_request(path="/items", headers={"x-api-version": "v1"}))
        current = await chain(make_request(path="/items"))
        unknown = await chain(make_request(path="/items", headers={"x-api-version": "v9"}))

        assert old.header("x-api-version") == "v1"
        assert old.header("x-api-version-deprecated") == "true"
        assert old.header("x-api-version-sunset") == "2027-01-01"
        assert current.header("x-api-version") == "v2"
        assert current.header("x-cache") == "MISS"
        assert current.header("x-api-version-deprecated") is None
        assert unknown.status == 400
        assert orjson.loads(unknown.body)["supported_versions"] == ["v1", "v2"]
        assert unknown.header("x-response-time").endswith(" ms")

    @pytest.mark.asyncio
    async def test_basic_auth_and_optional_paths(self, credential_store, alice):
        await credential_store.set_password("alice", "s3cret")
        chain = build_default_stack(
            settings_for(
                auth={"guards": ["basic"], "optional_paths": ["/feed"]},
                cache={"enabled": False},
            ),
            credential_store=credential_store,
        ).build(json_handler)

        denied = await chain(make_request(path="/items"))
        anonymous_feed = await chain(make_request(path="/feed"))
        basic = "Basic " + base64.b64encode(b"alice:s3cret").decode()
        signed_in_feed = await chain(make_request(path="/feed", headers={"authorization": basic}))

        assert denied.status == 401
        assert denied.header("www-authenticate") == 'Basic realm="bastion"'
        assert orjson.loads(anonymous_feed.body)["user"] is None
        assert orjson.loads(signed_in_feed.body)["user"] == "alice"

    @pytest.mark.asyncio
    async def test_hsts_and_permissions_policy_from_settings(self, credential_store):
        chain = build_default_stack(
            settings_for(
                auth={"enabled": False},
                security_headers={
                    "hsts_max_age": 86400,
                    "hsts_include_subdomains": False,
                    "permissions_policy": "camera=()",
                },
            ),
            credential_store=credential_store,
        ).build(json_handler)

        response = await chain(make_request(path="/items"))

        assert response.header("strict-transport-security") == "max-age=86400"
        assert response.header("permissions-policy") == "camera=()"
