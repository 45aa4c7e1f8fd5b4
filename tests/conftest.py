"""Pytest configuration and fixtures for tests."""

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from planka_mcp.planka_client import PlankaClient

PLANKA_URL = "https://planka.example.com"


class FakePlanka:
    """In-memory stand-in for the Planka HTTP API, served through httpx.MockTransport."""

    def __init__(self, login_delay: float = 0.0) -> None:
        self.requests: list[httpx.Request] = []
        self.logins = 0
        self.login_status = 200
        self.login_delay = login_delay
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def route(self, method: str, path: str, *responses: Any) -> None:
        """Queue responses for ``method path``; the last one repeats."""
        self._routes[(method, path)] = list(responses)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == "/api/access-tokens":
            self.logins += 1
            if self.login_delay:
                await asyncio.sleep(self.login_delay)
            if self.login_status != 200:
                return httpx.Response(self.login_status, json={"message": "Invalid credentials"})
            return httpx.Response(200, json={"item": f"token-{self.logins}"})

        queued = self._routes.get((request.method, request.url.path))
        if not queued:
            return httpx.Response(404, json={"message": "Route not found"})
        response = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        status, body = response
        return httpx.Response(status, json=body)


@pytest.fixture
def fake_planka() -> FakePlanka:
    return FakePlanka()


@pytest.fixture
def make_client() -> Callable[[FakePlanka], PlankaClient]:
    def factory(fake: FakePlanka, **kwargs: Any) -> PlankaClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
        return PlankaClient(PLANKA_URL, "user@example.com", "secret", http_client=http_client, **kwargs)

    return factory


@pytest.fixture
def slow_planka() -> FakePlanka:
    """Fake whose logins take long enough for concurrent callers to overlap."""
    return FakePlanka(login_delay=0.01)
