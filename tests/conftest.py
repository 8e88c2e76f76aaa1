"""Shared fixtures for polycrud tests."""

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from polycrud.adapters import MemoryAdapter
from polycrud.audit import AuditContext
from polycrud.registry import ProviderRegistry


SEED = {
    "items": [
        {"id": 1, "name": "a", "qty": 5},
        {"id": 2, "name": "b", "qty": 10},
        {"id": 3, "name": "c", "qty": 15},
    ]
}


class RecordingHandler:
    """httpx MockTransport handler that records requests and replays canned responses."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def json_response(body: Any, status: int = 200, headers: Dict[str, str] = None) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(body).encode(), headers={
        "Content-Type": "application/json", **(headers or {})
    })


def body_of(request: httpx.Request) -> Any:
    return json.loads(request.content.decode())


@pytest.fixture(autouse=True)
def clean_context():
    """Reset audit context and custom registrations around each test."""
    AuditContext.clear()
    ProviderRegistry.clear()
    yield
    AuditContext.clear()
    ProviderRegistry.clear()


@pytest.fixture
def memory_provider():
    return MemoryAdapter(SEED)
