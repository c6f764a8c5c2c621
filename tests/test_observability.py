"""
Tests for request logging, response timing and structured log output.
"""

import io
import logging

import orjson
import pytest

from bastion.config import LoggingSettings
from bastion.middleware import PathExclusionPolicy
from bastion.middleware_ext import (
    RequestLoggerStage,
    ResponseTimeStage,
    StructuredLogFormatter,
    configure_logging,
)

from conftest import FakeClock, make_handler, make_request, run_stage


class SlowHandler:
    """Terminal handler that advances a FakeClock while 'working'."""

    def __init__(self, clock, seconds, status=200):
        self.clock = clock
        self.seconds = seconds
        self.inner = make_handler(status=status)

    async def __call__(self, request):
        self.clock.advance(self.seconds)
        return await self.inner(request)


# ============================================================================
# ResponseTimeStage
# ============================================================================


class TestResponseTimeStage:

    @pytest.mark.asyncio
    async def test_sets_header_and_state(self):
        clock = FakeClock(start=0.0)
        stage = ResponseTimeStage(clock=clock)
        request = make_request()
        response = await run_stage(stage, request, SlowHandler(clock, 0.0125))

        assert response.header("x-response-time") == "12.50 ms"
        assert request.state["duration_ms"] == pytest.approx(12.5)

    @pytest.mark.asyncio
    async def test_slow_request_warns(self, caplog):
        clock = FakeClock(start=0.0)
        stage = ResponseTimeStage(slow_threshold_ms=100, clock=clock)
        with caplog.at_level(logging.WARNING, logger="bastion.performance"):
            await run_stage(stage, make_request(path="/report"), SlowHandler(clock, 0.25))

        records = [r for r in caplog.records if r.name == "bastion.performance"]
        assert len(records) == 1
        assert "Slow request: GET /report took 250.0ms" == records[0].getMessage()
        assert records[0].context["status"] == 200

    @pytest.mark.asyncio
    async def test_fast_request_is_quiet(self, caplog):
        clock = FakeClock(start=0.0)
        stage = ResponseTimeStage(slow_threshold_ms=100, clock=clock)
        with caplog.at_level(logging.WARNING, logger="bastion.performance"):
            await run_stage(stage, make_request(), SlowHandler(clock, 0.05))
        assert not [r for r in caplog.records if r.name == "bastion.performance"]


# ============================================================================
# RequestLoggerStage
# ============================================================================


class TestRequestLoggerStage:

    @pytest.mark.asyncio
    async def test_generates_request_id(self):
        stage = RequestLoggerStage()
        request = make_request()
        response = await run_stage(stage, request)
        request_id = response.header("x-request-id")
        assert request_id == request.state["request_id"]
        assert len(request_id) == 32
        int(request_id, 16)

    @pytest.mark.asyncio
    async def test_reuses_inbound_request_id(self):
        stage = RequestLoggerStage()
        response = await run_stage(stage, make_request(headers={"x-request-id": "abc-123"}))
        assert response.header("x-request-id") == "abc-123"

    @pytest.mark.asyncio
    async def test_access_record_redacts_query(self, caplog):
        clock = FakeClock(start=0.0)
        stage = RequestLoggerStage(clock=clock)
        request = make_request(path="/search", query={"q": "shoes", "token": "s3cret"})
        with caplog.at_level(logging.INFO, logger="bastion.access"):
            await run_stage(stage, request, SlowHandler(clock, 0.002))

        record = next(r for r in caplog.records if r.name == "bastion.access")
        assert record.levelno == logging.INFO
        assert record.getMessage() == "GET /search - 200 (2.0ms)"
        assert record.context["query"]["q"] == "shoes"
        assert record.context["query"]["token"] != "s3cret"
        assert record.context["client_ip"] == "127.0.0.1"
        assert record.context["status"] == 200

    @pytest.mark.asyncio
    async def test_server_errors_log_at_error(self, caplog):
        stage = RequestLoggerStage()
        with caplog.at_level(logging.INFO, logger="bastion.access"):
            await run_stage(stage, make_request(), make_handler(status=503))
        record = next(r for r in caplog.records if r.name == "bastion.access")
        assert record.levelno == logging.ERROR

    @pytest.mark.asyncio
    async def test_exception_is_logged_and_reraised(self, caplog):
        async def handler(request):
            raise RuntimeError("down")

        stage = RequestLoggerStage()
        with caplog.at_level(logging.ERROR, logger="bastion.access"):
            with pytest.raises(RuntimeError):
                await run_stage(stage, make_request(), handler)
        assert any("EXCEPTION" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_excluded_path_not_logged(self, caplog):
        stage = RequestLoggerStage(exclusion=PathExclusionPolicy(["/health"]))
        with caplog.at_level(logging.INFO, logger="bastion.access"):
            response = await run_stage(stage, make_request(path="/health"))
        assert response.header("x-request-id") is None
        assert not [r for r in caplog.records if r.name == "bastion.access"]


# ============================================================================
# Structured output
# ============================================================================


class TestStructuredLogging:

    def test_formatter_emits_json_with_context(self):
        record = logging.LogRecord("bastion.security", logging.WARNING, __file__, 1,
                                   "Blocked %s", ("x",), None)
        record.context = {"ip": "10.0.0.1", "fields": {"a": 1}}
        payload = orjson.loads(StructuredLogFormatter().format(record))
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "bastion.security"
        assert payload["message"] == "Blocked x"
        assert payload["ip"] == "10.0.0.1"
        assert payload["fields"] == {"a": 1}
        assert "timestamp" in payload

    def test_configure_logging_replaces_its_handler(self):
        stream = io.StringIO()
        settings = LoggingSettings(level="DEBUG", structured=True)
        logger = configure_logging(settings, stream=stream)
        configure_logging(settings, stream=stream)
        try:
            installed = [h for h in logger.handlers if getattr(h, "_bastion_handler", False)]
            assert len(installed) == 1
            assert logger.level == logging.DEBUG

            logging.getLogger("bastion.audit").info("role assigned", extra={"context": {"role": "admin"}})
            line = stream.getvalue().strip().splitlines()[-1]
            assert orjson.loads(line)["role"] == "admin"
        finally:
            for handler in installed:
                logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
