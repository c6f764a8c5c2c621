"""
ASGI adapter - Bridges the ASGI protocol to Bastion's Request/Response.

Provides:
- BastionASGI: reads the request body, decodes form-encoded and JSON
  payloads, binds a cookie-backed session, drives the pipeline and sends
  the response
- serve(): runs an app on uvicorn

The composed pipeline handler is built once, on first use.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import orjson
import uvicorn

from .faults import InvalidInputFault
from .middleware import Handler, Pipeline
from .request import Request
from .response import Response
from .sessions import MemorySessionStore, Session

Receive = Callable[[], Awaitable[Dict[str, Any]]]
Send = Callable[[Dict[str, Any]], Awaitable[None]]
RouteResolver = Callable[[str, str], Optional[str]]

logger = logging.getLogger("bastion.asgi")


def _parse_pairs(raw: str) -> Dict[str, Any]:
    """Parse ``a=1&b=2&b=3`` into ``{"a": "1", "b": ["2", "3"]}``."""
    parsed = parse_qs(raw, keep_blank_values=True)
    return {key: values[0] if len(values) == 1 else values for key, values in parsed.items()}


class BastionASGI:
    """
    ASGI application running a Pipeline in front of a terminal handler.

    Args:
        pipeline: Stage pipeline
        handler: Terminal handler (``async (request) -> Response``)
        session_store: Session storage; sessions are disabled when None
        session_cookie: Name of the session id cookie
        trust_proxy: Honour forwarded-for headers for the client IP
        route_resolver: Optional ``(method, path) -> route name`` lookup
    """

    def __init__(
        self,
        pipeline: Pipeline,
        handler: Handler,
        *,
        session_store: Optional[MemorySessionStore] = None,
        session_cookie: str = "bastion_session",
        trust_proxy: bool = False,
        route_resolver: Optional[RouteResolver] = None,
    ):
        self.pipeline = pipeline
        self.handler = handler
        self.session_store = session_store
        self.session_cookie = session_cookie
        self.trust_proxy = trust_proxy
        self.route_resolver = route_resolver
        self._chain: Optional[Handler] = None

    @property
    def chain(self) -> Handler:
        if self._chain is None:
            self._chain = self.pipeline.build(self.handler)
        return self._chain

    # ------------------------------------------------------------------
    # ASGI entry point
    # ------------------------------------------------------------------

    async def __call__(self, scope: Dict[str, Any], receive: Receive, send: Send) -> None:
        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)

    async def handle_http(self, scope: Dict[str, Any], receive: Receive, send: Send) -> None:
        body = await self._read_body(receive)
        request = self._build_request(scope)

        try:
            self._decode_payload(request, body)
        except InvalidInputFault as fault:
            logger.warning(
                "Rejected undecodable request body",
                extra={"context": {**request.context(), "fault": fault.code}},
            )
            await self._send(send, Response.from_fault(fault))
            return

        session, is_new = await self._load_session(request)
        request.session = session

        response = await self.chain(request)

        if session is not None and self.session_store is not None:
            if is_new or session.is_dirty:
                await self.session_store.save(session)
            if is_new:
                response.set_cookie(
                    self.session_cookie,
                    session.id,
                    secure=request.scheme == "https",
                    httponly=True,
                    samesite="Lax",
                )

        await self._send(send, response)

    async def handle_lifespan(self, scope: Dict[str, Any], receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                logger.debug("Pipeline ready: %s", self.pipeline.names)
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                break

    # ------------------------------------------------------------------
    # Request translation
    # ------------------------------------------------------------------

    @staticmethod
    async def _read_body(receive: Receive) -> bytes:
        chunks: List[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    def _build_request(self, scope: Dict[str, Any]) -> Request:
        method = scope.get("method", "GET")
        path = scope.get("path", "/")
        query_string = scope.get("query_string", b"").decode("latin-1")
        client: Optional[Tuple[str, int]] = None
        if scope.get("client"):
            client = (scope["client"][0], scope["client"][1])
        route_name = self.route_resolver(method, path) if self.route_resolver else None
        return Request(
            method=method,
            path=path,
            headers=scope.get("headers", []),
            query=_parse_pairs(query_string),
            client=client,
            route_name=route_name,
            scheme=scope.get("scheme", "http"),
            trust_proxy=self.trust_proxy,
        )

    @staticmethod
    def _decode_payload(request: Request, body: bytes) -> None:
        if not body:
            return
        content_type = (request.header("content-type") or "").split(";")[0].strip().lower()
        if content_type == "application/x-www-form-urlencoded":
            request.body = _parse_pairs(body.decode("utf-8", errors="replace"))
        elif content_type == "application/json" or content_type.endswith("+json"):
            try:
                request.json = orjson.loads(body)
            except orjson.JSONDecodeError as exc:
                raise InvalidInputFault(message="Malformed JSON body.") from exc

    async def _load_session(self, request: Request) -> Tuple[Optional[Session], bool]:
        if self.session_store is None:
            return None, False
        session_id = request.cookies().get(self.session_cookie)
        if session_id:
            session = await self.session_store.load(session_id)
            if session is not None:
                return session, False
        return Session(), True

    @staticmethod
    async def _send(send: Send, response: Response) -> None:
        await send({
            "type": "http.response.start",
            "status": response.status,
            "headers": response.prepare_headers(),
        })
        await send({"type": "http.response.body", "body": response.body})


def serve(app: BastionASGI, host: str = "127.0.0.1", port: int = 8000, **options: Any) -> None:
    """Run ``app`` on uvicorn (blocking)."""
    uvicorn.run(app, host=host, port=port, **options)


__all__ = ["BastionASGI", "serve"]
