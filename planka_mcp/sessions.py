"""
Session multiplexing for the streamable HTTP ``/mcp`` endpoint.

Each MCP session is served by one long-lived handler. The registry owns the
map from ``mcp-session-id`` to handler, creates handlers for initializing
POSTs, and drops them again when they close or are terminated.
"""

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Protocol

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from mcp.server.transport_security import TransportSecuritySettings
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

INITIALIZING_METHOD = "POST"


class SessionHandler(Protocol):
    """One protocol session behind the multiplexed endpoint."""

    session_id: str

    async def start(self, task_group: TaskGroup, on_close: Callable[["SessionHandler"], None]) -> None:
        """Start serving in ``task_group``; call ``on_close`` once the session ends."""
        ...

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None: ...

    async def terminate(self) -> None: ...


HandlerFactory = Callable[[str], SessionHandler]


def generate_session_id() -> str:
    return str(uuid.uuid4())


class McpSessionHandler:
    """Runs the MCP server over a dedicated streamable HTTP transport."""

    def __init__(
        self,
        server: Server,
        session_id: str,
        *,
        json_response: bool = False,
        security_settings: TransportSecuritySettings | None = None,
        idle_timeout: float | None = None,
    ):
        self.session_id = session_id
        self.server = server
        self.idle_timeout = idle_timeout
        self.transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
            event_store=None,
            security_settings=security_settings,
        )
        self._last_activity = 0.0
        self._in_flight = 0

    async def start(self, task_group: TaskGroup, on_close: Callable[[SessionHandler], None]) -> None:
        self._last_activity = anyio.current_time()

        async def run_server(*, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
            try:
                async with self.transport.connect() as (read_stream, write_stream):
                    task_status.started()
                    async with anyio.create_task_group() as session_tasks:
                        if self.idle_timeout:
                            session_tasks.start_soon(self._close_when_idle)
                        await self.server.run(
                            read_stream,
                            write_stream,
                            self.server.create_initialization_options(),
                            stateless=False,
                        )
                        session_tasks.cancel_scope.cancel()
            except Exception:
                # A crashed session must not take the shared task group down.
                logger.exception(f"Session {self.session_id} crashed")
            finally:
                logger.info(f"Session {self.session_id} closed")
                on_close(self)

        await task_group.start(run_server)

    async def _close_when_idle(self) -> None:
        assert self.idle_timeout is not None
        while True:
            if self._in_flight:
                # Open requests and SSE streams keep the session alive.
                await anyio.sleep(self.idle_timeout)
                continue
            remaining = self._last_activity + self.idle_timeout - anyio.current_time()
            if remaining <= 0:
                logger.info(f"Session {self.session_id} idle for {self.idle_timeout}s, closing")
                await self.transport.terminate()
                return
            await anyio.sleep(remaining)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        self._in_flight += 1
        self._last_activity = anyio.current_time()
        try:
            await self.transport.handle_request(scope, receive, send)
        finally:
            self._in_flight -= 1
            self._last_activity = anyio.current_time()

    async def terminate(self) -> None:
        await self.transport.terminate()


class SessionRegistry:
    """Routes ``/mcp`` requests to the session named by the ``mcp-session-id`` header.

    Only ``route`` and ``terminate`` touch the session map. New handlers are
    inserted at the moment they answer their initializing request with a
    session id, so a handler whose initialization fails is never reachable.
    """

    def __init__(
        self,
        handler_factory: HandlerFactory,
        id_generator: Callable[[], str] = generate_session_id,
    ):
        self._handler_factory = handler_factory
        self._id_generator = id_generator
        self._sessions: dict[str, SessionHandler] = {}
        self._task_group: TaskGroup | None = None

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """Own the task group every session runs in; closes all sessions on exit."""
        if self._task_group is not None:
            raise RuntimeError("SessionRegistry.run() is already active")

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("Session registry started")
            try:
                yield
            finally:
                logger.info(f"Session registry shutting down ({len(self._sessions)} open sessions)")
                tg.cancel_scope.cancel()
                self._task_group = None
                self._sessions.clear()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        if request.method == "DELETE":
            session_id = request.headers.get(MCP_SESSION_ID_HEADER)
            if session_id and await self.terminate(session_id):
                response = JSONResponse({"message": "Session terminated"})
            else:
                response = JSONResponse({"error": "Session not found"}, status_code=404)
            await response(scope, receive, send)
            return

        await self.route(scope, receive, send)

    async def route(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")

        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        handler = self._sessions.get(session_id) if session_id else None
        if handler is not None:
            await handler.handle_request(scope, receive, send)
            return

        if request.method != INITIALIZING_METHOD:
            logger.warning(f"Rejected {request.method} for unknown session {session_id!r}")
            response = JSONResponse(
                {"error": "Method not allowed for new sessions"}, status_code=405
            )
            await response(scope, receive, send)
            return

        await self._open_session(scope, receive, send)

    async def _open_session(self, scope: Scope, receive: Receive, send: Send) -> None:
        assert self._task_group is not None
        new_id = self._id_generator()
        handler = self._handler_factory(new_id)
        registered = False

        async def send_and_register(message: Message) -> None:
            nonlocal registered
            if message["type"] == "http.response.start" and not registered:
                status = message.get("status", 500)
                headers = {k.decode().lower(): v.decode() for k, v in message.get("headers", [])}
                if 200 <= status < 300 and headers.get(MCP_SESSION_ID_HEADER) == new_id:
                    self._sessions[new_id] = handler
                    registered = True
                    logger.info(f"Session {new_id} initialized ({len(self._sessions)} active)")
            await send(message)

        await handler.start(self._task_group, self._forget)
        try:
            await handler.handle_request(scope, receive, send_and_register)
        finally:
            if not registered:
                logger.info(f"Session {new_id} did not initialize, discarding")
                await handler.terminate()

    def _forget(self, handler: SessionHandler) -> None:
        if self._sessions.get(handler.session_id) is handler:
            del self._sessions[handler.session_id]
            logger.info(f"Session {handler.session_id} removed ({len(self._sessions)} active)")

    async def terminate(self, session_id: str) -> bool:
        handler = self._sessions.pop(session_id, None)
        if handler is None:
            return False
        logger.info(f"Terminating session {session_id}")
        await handler.terminate()
        return True
