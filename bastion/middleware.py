"""
Pipeline - Ordered, composable request-processing stages with a fault boundary.

Provides:
- Stage protocol and a Stage base class with exclusion support
- Pipeline: folds an ordered stage list into one async handler at build time
- Fault boundary: no exception ever escapes a built pipeline
- ExclusionPolicy implementations (path globs, route names, never)
- FunctionStage for ad-hoc function stages
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    Any, Awaitable, Callable, Iterable, List, Optional, Protocol, Sequence,
    runtime_checkable,
)

from .faults import Fault, InternalStageFault
from .request import Request
from .response import Response

Handler = Callable[[Request], Awaitable[Response]]
StageFn = Callable[[Request, Handler], Awaitable[Response]]

FAILED_STAGE_KEY = "bastion.failed_stage"


# ============================================================================
# Exclusion policies
# ============================================================================

@runtime_checkable
class ExclusionPolicy(Protocol):
    """Decides whether a stage should be a pure pass-through for a request."""

    def is_excluded(self, request: Request) -> bool: ...


class NeverExclude:
    """Policy that never excludes."""

    def is_excluded(self, request: Request) -> bool:
        return False


class PathExclusionPolicy:
    """
    Exclude requests by path or route name.

    Patterns are exact paths (``/health``) or prefix globs ending with ``*``
    (``/static/*``).

    Args:
        patterns: Path patterns
        route_names: Route names to exclude
    """

    def __init__(self, patterns: Iterable[str] = (), route_names: Iterable[str] = ()):
        self.exact = set()
        self.prefixes: List[str] = []
        for pattern in patterns:
            if pattern.endswith("*"):
                self.prefixes.append(pattern[:-1])
            else:
                self.exact.add(pattern)
        self.route_names = frozenset(route_names)

    def is_excluded(self, request: Request) -> bool:
        if request.path in self.exact:
            return True
        if request.route_name and request.route_name in self.route_names:
            return True
        return any(request.path.startswith(prefix) for prefix in self.prefixes)

    def __repr__(self) -> str:
        return f"PathExclusionPolicy(exact={sorted(self.exact)}, prefixes={self.prefixes})"


# ============================================================================
# Stages
# ============================================================================

@runtime_checkable
class StageProtocol(Protocol):
    name: str

    async def __call__(self, request: Request, next_handler: Handler) -> Response: ...


class Stage:
    """
    Base class for pipeline stages.

    Subclasses implement ``process``; ``__call__`` short-circuits to
    ``next_handler`` for excluded requests so an excluded request observes
    no mutation from the stage at all.

    Stages with ``envelope = True`` keep their place in the configured order
    but are applied around the whole chain when the pipeline is built, so
    they observe every response, including short-circuits from outer stages.
    """

    name = "stage"
    envelope = False

    def __init__(self, *, exclusion: Optional[ExclusionPolicy] = None, name: Optional[str] = None):
        self.exclusion: ExclusionPolicy = exclusion or NeverExclude()
        if name:
            self.name = name

    def is_excluded(self, request: Request) -> bool:
        return self.exclusion.is_excluded(request)

    async def __call__(self, request: Request, next_handler: Handler) -> Response:
        if self.is_excluded(request):
            return await next_handler(request)
        return await self.process(request, next_handler)

    async def process(self, request: Request, next_handler: Handler) -> Response:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class FunctionStage:
    """Wrap an ``async fn(request, next_handler)`` as a named stage."""

    def __init__(self, fn: StageFn, name: Optional[str] = None):
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "function")

    async def __call__(self, request: Request, next_handler: Handler) -> Response:
        return await self.fn(request, next_handler)


@dataclass
class StageDescriptor:
    """Descriptor for stage registration."""
    stage: Any
    priority: int
    name: str


# ============================================================================
# Pipeline
# ============================================================================

class Pipeline:
    """
    Composes stages around a terminal handler.

    Stages run in ascending priority; equal priorities keep insertion order.
    ``build`` wraps last-to-first so the first stage is outermost, and puts
    the whole chain behind a boundary that converts raised faults and
    unexpected exceptions into responses. Envelope stages are then wrapped
    around that boundary (first envelope outermost) behind a second one.

    Args:
        stages: Initial stages, in order
        logger: Logger used at the boundary (``bastion.pipeline`` by default)
    """

    def __init__(
        self,
        stages: Optional[Sequence[Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger("bastion.pipeline")
        self.stages: List[StageDescriptor] = []
        for stage in stages or ():
            self.add(stage, priority=getattr(stage, "priority", 50))

    def add(self, stage: Any, priority: int = 50, name: Optional[str] = None) -> "Pipeline":
        """Register a stage."""
        if name is None:
            name = getattr(stage, "name", None) or getattr(stage, "__name__", "stage")
        self.stages.append(StageDescriptor(stage=stage, priority=priority, name=name))
        return self

    @property
    def names(self) -> List[str]:
        return [desc.name for desc in self._ordered()]

    def _ordered(self) -> List[StageDescriptor]:
        return sorted(self.stages, key=lambda desc: desc.priority)

    def build(self, handler: Handler) -> Handler:
        """Build the composed handler for ``handler``."""
        ordered = self._ordered()
        envelopes = [desc for desc in ordered if getattr(desc.stage, "envelope", False)]
        inner = [desc for desc in ordered if not getattr(desc.stage, "envelope", False)]

        chain = self._wrap_stage(_HandlerStage(handler), "handler", None)
        for desc in reversed(inner):
            chain = self._wrap_stage(desc.stage, desc.name, chain)
        chain = self._boundary(chain)
        if not envelopes:
            return chain

        for desc in reversed(envelopes):
            chain = self._wrap_stage(desc.stage, desc.name, chain)
        return self._boundary(chain)

    def _wrap_stage(self, stage: Any, name: str, next_handler: Optional[Handler]) -> Handler:
        async def wrapped(request: Request) -> Response:
            try:
                return await stage(request, next_handler)
            except Exception:
                request.state.setdefault(FAILED_STAGE_KEY, name)
                raise

        return wrapped

    def _boundary(self, chain: Handler) -> Handler:
        logger = self.logger

        async def handle(request: Request) -> Response:
            try:
                response = await chain(request)
                if not isinstance(response, Response):
                    raise TypeError(
                        f"Stage returned {type(response).__name__}, expected Response"
                    )
                return response
            except Fault as fault:
                stage = request.state.get(FAILED_STAGE_KEY, "unknown")
                if fault.public:
                    logger.warning(
                        "Fault %s raised by stage %s",
                        fault.code,
                        stage,
                        extra={"context": {**request.context(), "stage": stage, "fault": fault.code}},
                    )
                    return Response.from_fault(fault)
                logger.error(
                    "Internal fault %s raised by stage %s: %s",
                    fault.code,
                    stage,
                    fault.message,
                    exc_info=True,
                    extra={"context": {**request.context(), "stage": stage, "fault": fault.code}},
                )
                return Response.from_fault(InternalStageFault(stage, fault.code))
            except Exception as exc:
                stage = request.state.get(FAILED_STAGE_KEY, "unknown")
                logger.exception(
                    "Unhandled exception in stage %s",
                    stage,
                    extra={"context": {**request.context(), "stage": stage, "error": type(exc).__name__}},
                )
                return Response.from_fault(InternalStageFault(stage, type(exc).__name__))

        return handle

    def __len__(self) -> int:
        return len(self.stages)

    def __repr__(self) -> str:
        return f"Pipeline({self.names})"


class _HandlerStage:
    """Adapts the terminal handler to the stage calling convention."""

    def __init__(self, handler: Handler):
        self.handler = handler

    async def __call__(self, request: Request, next_handler: Optional[Handler]) -> Response:
        return await self.handler(request)


__all__ = [
    "Handler",
    "ExclusionPolicy",
    "NeverExclude",
    "PathExclusionPolicy",
    "StageProtocol",
    "Stage",
    "FunctionStage",
    "StageDescriptor",
    "Pipeline",
]
