"""Unit tests for the session registry."""

import itertools
import json
from collections.abc import Callable
from typing import Any

import pytest
from anyio.abc import TaskGroup

from planka_mcp.sessions import SessionRegistry, generate_session_id


class FakeHandler:
    """Session handler that answers every request itself."""

    def __init__(self, session_id: str, *, initializes: bool = True) -> None:
        self.session_id = session_id
        self.initializes = initializes
        self.requests: list[dict[str, Any]] = []
        self.started = False
        self.terminated = False
        self.on_close: Callable[[Any], None] | None = None

    async def start(self, task_group: TaskGroup, on_close: Callable[[Any], None]) -> None:
        self.started = True
        self.on_close = on_close

    async def handle_request(self, scope: Any, receive: Any, send: Any) -> None:
        self.requests.append(scope)
        if self.initializes:
            headers = [(b"mcp-session-id", self.session_id.encode())]
            await send({"type": "http.response.start", "status": 200, "headers": headers})
        else:
            await send({"type": "http.response.start", "status": 400, "headers": []})
        await send({"type": "http.response.body", "body": b"{}"})

    async def terminate(self) -> None:
        self.terminated = True

    def close(self) -> None:
        assert self.on_close is not None
        self.on_close(self)


class HandlerFactory:
    def __init__(self, initializes: bool = True) -> None:
        self.initializes = initializes
        self.created: list[FakeHandler] = []

    def __call__(self, session_id: str) -> FakeHandler:
        handler = FakeHandler(session_id, initializes=self.initializes)
        self.created.append(handler)
        return handler


async def asgi_request(
    app: Any, method: str, session_id: str | None = None
) -> tuple[int, dict[str, str], bytes]:
    headers = [(b"content-type", b"application/json")]
    if session_id is not None:
        headers.append((b"mcp-session-id", session_id.encode()))
    scope = {
        "type": "http",
        "method": method,
        "path": "/mcp",
        "query_string": b"",
        "headers": headers,
    }
    messages: list[dict[str, Any]] = []

    async def receive() -> dict[str, Any]:
        return {"type": "http.request", "body": b"{}", "more_body": False}

    async def send(message: dict[str, Any]) -> None:
        messages.append(message)

    await app(scope, receive, send)

    start = messages[0]
    response_headers = {k.decode(): v.decode() for k, v in start.get("headers", [])}
    body = b"".join(m.get("body", b"") for m in messages[1:])
    return start["status"], response_headers, body


@pytest.fixture
def factory() -> HandlerFactory:
    return HandlerFactory()


@pytest.fixture
def registry(factory: HandlerFactory) -> SessionRegistry:
    ids = itertools.count(1)
    return SessionRegistry(factory, id_generator=lambda: f"session-{next(ids)}")


class TestGenerateSessionId:
    def test_unique(self) -> None:
        assert generate_session_id() != generate_session_id()


class TestRouting:
    @pytest.mark.asyncio
    async def test_get_without_session_is_rejected(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            status, _, body = await asgi_request(registry, "GET")

        assert status == 405
        assert json.loads(body) == {"error": "Method not allowed for new sessions"}
        assert factory.created == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_get_with_unknown_session_is_rejected(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            status, _, _ = await asgi_request(registry, "GET", "stale")

        assert status == 405
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_initializing_post_registers_one_session(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            status, headers, _ = await asgi_request(registry, "POST")

            assert status == 200
            assert headers["mcp-session-id"] == "session-1"
            assert len(registry) == 1
            assert "session-1" in registry
            (handler,) = factory.created
            assert handler.started
            assert not handler.terminated

    @pytest.mark.asyncio
    async def test_failed_initialization_is_discarded(self) -> None:
        factory = HandlerFactory(initializes=False)
        registry = SessionRegistry(factory, id_generator=lambda: "doomed")

        async with registry.run():
            status, _, _ = await asgi_request(registry, "POST")

            assert status == 400
            assert "doomed" not in registry
            assert len(registry) == 0
            assert factory.created[0].terminated

    @pytest.mark.asyncio
    async def test_known_session_is_forwarded(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            await asgi_request(registry, "POST")
            await asgi_request(registry, "GET", "session-1")
            await asgi_request(registry, "POST", "session-1")

            assert len(factory.created) == 1
            assert [scope["method"] for scope in factory.created[0].requests] == [
                "POST",
                "GET",
                "POST",
            ]

    @pytest.mark.asyncio
    async def test_sessions_are_independent(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            await asgi_request(registry, "POST")
            await asgi_request(registry, "POST")
            await asgi_request(registry, "GET", "session-2")

            assert len(registry) == 2
            first, second = factory.created
            assert len(first.requests) == 1
            assert len(second.requests) == 2

    @pytest.mark.asyncio
    async def test_closed_session_is_removed(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            await asgi_request(registry, "POST")
            factory.created[0].close()

            assert "session-1" not in registry
            status, _, _ = await asgi_request(registry, "GET", "session-1")
            assert status == 405

    @pytest.mark.asyncio
    async def test_route_requires_run(self, registry: SessionRegistry) -> None:
        with pytest.raises(RuntimeError):
            await asgi_request(registry, "POST")

    @pytest.mark.asyncio
    async def test_run_cannot_be_nested(self, registry: SessionRegistry) -> None:
        async with registry.run():
            with pytest.raises(RuntimeError):
                async with registry.run():
                    pass

    @pytest.mark.asyncio
    async def test_shutdown_clears_sessions(self, registry: SessionRegistry) -> None:
        async with registry.run():
            await asgi_request(registry, "POST")
            assert len(registry) == 1

        assert len(registry) == 0


class TestTermination:
    @pytest.mark.asyncio
    async def test_delete_known_session(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            await asgi_request(registry, "POST")

            status, _, body = await asgi_request(registry, "DELETE", "session-1")

            assert status == 200
            assert json.loads(body) == {"message": "Session terminated"}
            assert factory.created[0].terminated
            assert "session-1" not in registry

            status, _, _ = await asgi_request(registry, "GET", "session-1")
            assert status == 405

    @pytest.mark.asyncio
    async def test_delete_unknown_session(self, registry: SessionRegistry) -> None:
        async with registry.run():
            status, _, body = await asgi_request(registry, "DELETE", "nope")

        assert status == 404
        assert json.loads(body) == {"error": "Session not found"}

    @pytest.mark.asyncio
    async def test_delete_without_header(self, registry: SessionRegistry) -> None:
        async with registry.run():
            status, _, _ = await asgi_request(registry, "DELETE")

        assert status == 404

    @pytest.mark.asyncio
    async def test_terminate_returns_false_for_unknown(self, registry: SessionRegistry) -> None:
        assert await registry.terminate("nope") is False

    @pytest.mark.asyncio
    async def test_close_after_terminate_is_harmless(
        self, registry: SessionRegistry, factory: HandlerFactory
    ) -> None:
        async with registry.run():
            await asgi_request(registry, "POST")
            await registry.terminate("session-1")
            factory.created[0].close()

            assert len(registry) == 0
