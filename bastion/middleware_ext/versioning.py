"""
API Versioning Stage - resolves, validates and advertises the API version.

Resolution strategies:
- ``header``: a custom header (``X-API-Version: v2``)
- ``url``: the path segment after ``url_base`` (``/api/v2/users``)
- ``accept``: a vendor media type (``Accept: application/vnd.api.v2+json``)

Requests without a version use ``default_version``. Unsupported versions are
rejected with 400; deprecated versions pass but are logged and flagged with
``X-API-Version-Deprecated`` / ``X-API-Version-Sunset``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

from ..faults import UnsupportedApiVersionFault
from ..middleware import ExclusionPolicy, Handler, Stage
from ..request import Request
from ..response import Response

API_VERSION_KEY = "api_version"

_ACCEPT_VERSION = re.compile(r"application/vnd\.api\.v(\d+)\+json", re.IGNORECASE)


class ApiVersionStage(Stage):
    """
    Args:
        supported_versions: ``{version: {"deprecated": bool, "sunset_date": str}}``
        default_version: Version used when the request names none
        strategy: ``header``, ``url`` or ``accept``
        header_name: Header read by the ``header`` strategy
        url_base: Path prefix in front of the version segment (``url``)
        url_prefix: Version segment prefix (``v`` in ``/api/v2``)
        exclusion: Requests that are not versioned
        logger: Logger (``bastion.api`` by default)
    """

    name = "api_version"

    def __init__(
        self,
        supported_versions: Mapping[str, Mapping[str, Any]],
        default_version: str = "v1",
        *,
        strategy: str = "header",
        header_name: str = "X-API-Version",
        url_base: str = "/api",
        url_prefix: str = "v",
        exclusion: Optional[ExclusionPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        if strategy not in ("header", "url", "accept"):
            raise ValueError(f"Unknown versioning strategy {strategy!r}")
        if not supported_versions:
            raise ValueError("supported_versions must not be empty")
        self.supported_versions = {
            version: dict(options or {}) for version, options in supported_versions.items()
        }
        self.default_version = default_version
        self.strategy = strategy
        self.header_name = header_name
        self.url_prefix = url_prefix
        base = re.escape(url_base.rstrip("/"))
        self._url_version = re.compile(rf"^{base}/({re.escape(url_prefix)}\d+)(?:/|$)")
        self.logger = logger or logging.getLogger("bastion.api")

    def resolve_version(self, request: Request) -> str:
        if self.strategy == "header":
            return (request.header(self.header_name) or "").strip() or self.default_version
        if self.strategy == "url":
            match = self._url_version.match(request.path)
            return match.group(1) if match else self.default_version
        match = _ACCEPT_VERSION.search(request.header("accept") or "")
        return f"v{match.group(1)}" if match else self.default_version

    def is_deprecated(self, version: str) -> bool:
        return bool(self.supported_versions.get(version, {}).get("deprecated"))

    def sunset_date(self, version: str) -> Optional[str]:
        return self.supported_versions.get(version, {}).get("sunset_date")

    async def process(self, request: Request, next_handler: Handler) -> Response:
        version = self.resolve_version(request)

        if version not in self.supported_versions:
            self.logger.warning(
                "Invalid API version requested: %s",
                version,
                extra={"context": {
                    **request.context(),
                    "requested_version": version,
                    "supported_versions": sorted(self.supported_versions),
                }},
            )
            return Response.from_fault(UnsupportedApiVersionFault(
                version, sorted(self.supported_versions), self.default_version,
            ))

        request.state[API_VERSION_KEY] = version
        response = await next_handler(request)
        response.set_header("x-api-version", version)

        if self.is_deprecated(version):
            principal = request.principal
            self.logger.warning(
                "Deprecated API version used: %s",
                version,
                extra={"context": {
                    **request.context(),
                    "version": version,
                    "principal_id": principal.identifier if principal else None,
                }},
            )
            response.set_header("x-api-version-deprecated", "true")
            sunset = self.sunset_date(version)
            if sunset:
                response.set_header("x-api-version-sunset", sunset)
        return response


__all__ = ["API_VERSION_KEY", "ApiVersionStage"]
