"""
Request Logging - access log stage and structured log output.

Features:
- One access-log record per request on ``bastion.access`` (5xx at ERROR)
- X-Request-ID propagation (inbound id reused, else 16 random bytes hex)
- Query parameters redacted before they reach the log
- JSON formatter (orjson) rendering the ``context`` extra of every record
- configure_logging() wiring for the ``bastion`` logger tree
"""

from __future__ import annotations

import logging
import os
import sys
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

import orjson

from ..middleware import ExclusionPolicy, Handler, Stage
from ..patterns import redact
from ..request import Request
from ..response import Response

if TYPE_CHECKING:
    from ..config import LoggingSettings


# ─── Formatter ───────────────────────────────────────────────────────────────

class StructuredLogFormatter(logging.Formatter):
    """JSON-structured log output, one object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if isinstance(context, dict):
            payload.update(context)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode()


def configure_logging(settings: "LoggingSettings", stream: Any = None) -> logging.Logger:
    """
    Install a single stream handler on the ``bastion`` logger.

    Calling it again replaces the handler it installed before.
    """
    logger = logging.getLogger("bastion")
    logger.setLevel(getattr(logging, settings.level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_bastion_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    if settings.structured:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._bastion_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger


# ─── Access Logging Stage ────────────────────────────────────────────────────

class RequestLoggerStage(Stage):
    """
    HTTP access logging stage.

    Args:
        header_name: Request id header
        exclusion: Requests that are not logged (health checks etc.)
        clock: Monotonic clock in seconds
        logger: Logger (``bastion.access`` by default)
    """

    name = "logging"

    def __init__(
        self,
        *,
        header_name: str = "X-Request-ID",
        exclusion: Optional[ExclusionPolicy] = None,
        clock: Optional[Callable[[], float]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.header_name = header_name
        self._clock = clock or time.perf_counter
        self.logger = logger or logging.getLogger("bastion.access")

    def _request_id(self, request: Request) -> str:
        return request.header(self.header_name) or os.urandom(16).hex()

    def _context(self, request: Request, request_id: str, duration_ms: float) -> Dict[str, Any]:
        return {
            "request_id": request_id,
            "method": request.method,
            "path": request.path,
            "query": redact(request.query),
            "duration_ms": round(duration_ms, 2),
            "client_ip": request.client_ip(),
            "user_agent": request.user_agent() or "-",
        }

    async def process(self, request: Request, next_handler: Handler) -> Response:
        request_id = self._request_id(request)
        request.state["request_id"] = request_id
        start = self._clock()

        try:
            response = await next_handler(request)
        except Exception:
            duration_ms = (self._clock() - start) * 1000.0
            self.logger.error(
                "%s %s - EXCEPTION (%.1fms)",
                request.method, request.path, duration_ms,
                extra={"context": self._context(request, request_id, duration_ms)},
            )
            raise

        duration_ms = (self._clock() - start) * 1000.0
        response.set_header(self.header_name, request_id)

        context = self._context(request, request_id, duration_ms)
        context["status"] = response.status
        level = logging.ERROR if response.status >= 500 else logging.INFO
        self.logger.log(
            level,
            "%s %s - %d (%.1fms)",
            request.method, request.path, response.status, duration_ms,
            extra={"context": context},
        )
        return response


__all__ = [
    "RequestLoggerStage",
    "StructuredLogFormatter",
    "configure_logging",
]
