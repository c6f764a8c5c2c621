"""
Response Time Stage - measures handling time of the whole chain.

Attaches ``X-Response-Time: <ms> ms`` to every response and warns on the
``bastion.performance`` logger when a request exceeds the slow threshold.

The stage is an envelope: it keeps its last place in the configured order
but the pipeline wraps it around every other stage, so cache hits and
rejections from the security stages are timed as well.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ..middleware import ExclusionPolicy, Handler, Stage
from ..request import Request
from ..response import Response


class ResponseTimeStage(Stage):
    """
    Args:
        slow_threshold_ms: Duration above which a warning is logged
        clock: Monotonic clock in seconds (``time.perf_counter`` by default)
        exclusion: Requests that are not timed
        logger: Logger (``bastion.performance`` by default)
    """

    name = "timing"
    envelope = True

    def __init__(
        self,
        slow_threshold_ms: float = 1000.0,
        *,
        clock: Optional[Callable[[], float]] = None,
        exclusion: Optional[ExclusionPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        self.slow_threshold_ms = slow_threshold_ms
        self._clock = clock or time.perf_counter
        self.logger = logger or logging.getLogger("bastion.performance")

    async def process(self, request: Request, next_handler: Handler) -> Response:
        start = self._clock()
        response = await next_handler(request)
        duration_ms = (self._clock() - start) * 1000.0

        response.set_header("x-response-time", f"{duration_ms:.2f} ms")
        request.state["duration_ms"] = duration_ms

        if duration_ms > self.slow_threshold_ms:
            self.logger.warning(
                "Slow request: %s %s took %.1fms",
                request.method, request.path, duration_ms,
                extra={"context": {
                    "method": request.method,
                    "path": request.path,
                    "duration_ms": round(duration_ms, 2),
                    "status": response.status,
                }},
            )
        return response


__all__ = ["ResponseTimeStage"]
