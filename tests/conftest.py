"""
Shared test fixtures and helpers for the Bastion test suite.
"""

import pytest
import pytest_asyncio
from typing import Any, Dict, Optional

from bastion.auth import MemoryCredentialStore, Principal, TokenHasher
from bastion.request import Request
from bastion.response import Response
from bastion.sessions import Session


# ============================================================================
# Request / Handler Helpers
# ============================================================================


def make_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[Dict[str, str]] = None,
    query: Optional[Dict[str, Any]] = None,
    body: Optional[Dict[str, Any]] = None,
    json: Any = None,
    client: tuple = ("127.0.0.1", 50000),
    **kwargs: Any,
) -> Request:
    """Build a Request with sensible defaults."""
    return Request(
        method=method,
        path=path,
        headers=headers or {},
        query=query,
        body=body,
        json=json,
        client=client,
        **kwargs,
    )


def make_handler(status=200, body: Any = b"OK", headers=None, media_type=None):
    """Create a terminal handler returning a fixed Response and counting calls."""
    async def handler(request, next_handler=None):
        handler.calls += 1
        handler.last_request = request
        return Response(body, status=status, headers=headers or {}, media_type=media_type)
    handler.calls = 0
    handler.last_request = None
    return handler


async def run_stage(stage, request, handler=None):
    """Invoke a stage with a terminal handler (``make_handler()`` by default)."""
    handler = handler or make_handler()

    async def next_handler(req):
        return await handler(req)

    return await stage(request, next_handler)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticExclusion:
    """ExclusionPolicy fake with a fixed answer."""

    def __init__(self, excluded: bool):
        self.excluded = excluded

    def is_excluded(self, request) -> bool:
        return self.excluded


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hasher():
    # Cheap Argon2 parameters keep the suite fast.
    return TokenHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def credential_store(hasher):
    return MemoryCredentialStore(hasher)


@pytest_asyncio.fixture
async def alice(credential_store):
    return await credential_store.add_principal(
        Principal("alice", roles={"editor"}, permissions={"reports.export"})
    )


@pytest.fixture
def session():
    return Session()
