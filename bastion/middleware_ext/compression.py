"""
Compression Stage - gzip response bodies for clients that accept it.

A response is compressed only when:
- the client accepts ``gzip`` with a non-zero q-value
- it carries no ``Content-Encoding`` yet
- it is not a 204/304 (no body by definition)
- the body is larger than ``min_size`` bytes
"""

from __future__ import annotations

import gzip
from typing import Optional

from ..middleware import ExclusionPolicy, Handler, Stage
from ..request import Request
from ..response import Response

_BODYLESS_STATUSES = frozenset({204, 304})


class CompressionStage(Stage):
    """
    Gzip compression stage.

    Args:
        min_size: Bodies of this size or smaller are sent as-is
        level: gzip compression level (1-9)
        exclusion: Requests whose responses are never compressed
    """

    name = "compression"

    def __init__(
        self,
        min_size: int = 1024,
        level: int = 6,
        *,
        exclusion: Optional[ExclusionPolicy] = None,
    ):
        super().__init__(exclusion=exclusion)
        if not 1 <= level <= 9:
            raise ValueError("level must be between 1 and 9")
        self.min_size = min_size
        self.level = level

    def should_compress(self, request: Request, response: Response) -> bool:
        if response.status in _BODYLESS_STATUSES:
            return False
        if response.header("content-encoding"):
            return False
        if len(response.body) <= self.min_size:
            return False
        return request.accepts_encoding("gzip")

    async def process(self, request: Request, next_handler: Handler) -> Response:
        response = await next_handler(request)
        if not self.should_compress(request, response):
            return response

        response.body = gzip.compress(response.body, compresslevel=self.level)
        response.set_header("content-encoding", "gzip")
        response.set_header("content-length", str(len(response.body)))
        response.append_vary("Accept-Encoding")
        return response


__all__ = ["CompressionStage"]
