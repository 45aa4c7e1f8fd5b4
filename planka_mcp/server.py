import contextlib
import dataclasses
import logging
import sys
from collections.abc import AsyncIterator, Callable
from typing import Any

import click
from mcp.server.lowlevel import Server
from mcp.server.transport_security import TransportSecuritySettings
from mcp.types import TextContent, Tool
from starlette.applications import Starlette
from starlette.datastructures import UploadFile
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from . import __version__
from .config import Settings, load_settings
from .exceptions import ConfigurationError, PlankaError
from .planka_client import PlankaClient
from .sessions import McpSessionHandler, SessionRegistry
from .tools import TOOLS, call_tool

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class NormalizePathMiddleware:
    """ASGI middleware to normalize paths so /mcp and /mcp/ work identically.

    Strips trailing slashes from all paths (except root) before routing.
    """

    def __init__(self, app: Any) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Any, send: Any) -> Any:
        if scope["type"] == "http":
            path = scope.get("path", "/")
            if path != "/" and path.endswith("/"):
                scope = dict(scope)
                scope["path"] = path.rstrip("/")
        await self.app(scope, receive, send)


def create_logging_middleware(app: Any) -> Callable[[dict[str, Any], Any, Any], Any]:
    """Create ASGI middleware logging each request with its MCP session and status.

    Uses raw ASGI so SSE responses stream through untouched.
    """

    async def middleware(scope: dict[str, Any], receive: Any, send: Any) -> Any:
        if scope["type"] != "http":
            await app(scope, receive, send)
            return

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")
        headers = {k.decode().lower(): v.decode() for k, v in scope.get("headers", [])}
        session_id = headers.get("mcp-session-id", "-")

        if logger.isEnabledFor(logging.DEBUG):
            for name, value in headers.items():
                # Never log credentials
                shown = "***" if name in ("authorization", "cookie") else value
                logger.debug(f"  {name}: {shown}")

        async def send_wrapper(message: dict[str, Any]) -> Any:
            if message["type"] == "http.response.start":
                status = message.get("status")
                log = logger.warning if status and status >= 400 else logger.info
                log(f"{method} {path} session={session_id} -> {status}")
            await send(message)

        await app(scope, receive, send_wrapper)

    return middleware


def create_mcp_server(client: PlankaClient) -> Server:
    """Build the MCP server advertising every entry of the tool table."""
    server: Server = Server(
        "mcp-planka",
        version=__version__,
        instructions="Manage Planka projects, boards, lists, cards and their details",
    )

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return [definition.to_tool() for definition in TOOLS]

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        return await call_tool(client, name, arguments)

    return server


def create_app(settings: Settings, client: PlankaClient | None = None) -> Starlette:
    """
    Create the HTTP application.

    Routes:
        /mcp     MCP streamable HTTP endpoint, multiplexed by session
        /upload  multipart upload forwarded to a card's attachments
        /health  liveness probe

    Args:
        settings: Loaded configuration
        client: Planka client to use; one is built from ``settings`` when omitted
    """
    if client is None:
        client = PlankaClient(
            settings.planka_url,
            settings.planka_email,
            settings.planka_password,
            timeout=settings.request_timeout,
        )
    planka = client

    mcp_server = create_mcp_server(planka)

    security_settings = None
    if settings.allowed_hosts:
        security_settings = TransportSecuritySettings(allowed_hosts=list(settings.allowed_hosts))

    def new_session(session_id: str) -> McpSessionHandler:
        return McpSessionHandler(
            mcp_server,
            session_id,
            json_response=settings.json_response,
            security_settings=security_settings,
            idle_timeout=settings.session_idle_timeout,
        )

    registry = SessionRegistry(new_session)

    async def upload_attachment(request: Request) -> JSONResponse:
        async with request.form() as form:
            card_id = form.get("cardId") or request.query_params.get("cardId")
            if not card_id:
                return JSONResponse(
                    {"error": "cardId is required (form field or query param)"}, status_code=400
                )

            upload = form.get("file")
            if not isinstance(upload, UploadFile):
                return JSONResponse({"error": "file is required"}, status_code=400)

            filename = form.get("filename") or upload.filename or "upload"
            content = await upload.read()

        try:
            attachment = await planka.upload_attachment_buffer(
                str(card_id), content, str(filename), upload.content_type
            )
        except PlankaError as e:
            logger.error(f"Upload error: {e}", exc_info=True)
            return JSONResponse({"error": "Upload failed"}, status_code=500)

        return JSONResponse(attachment)

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "plankaUrl": settings.planka_url})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        try:
            await planka.authenticate()
        except PlankaError as e:
            logger.error(f"Failed to authenticate with Planka: {e}")
            raise
        logger.info(f"Connected to Planka at {settings.planka_url}")

        try:
            async with registry.run():
                yield
        finally:
            await planka.aclose()

    app = Starlette(
        routes=[
            Route("/mcp", endpoint=registry),
            Route("/upload", upload_attachment, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "DELETE"],
                allow_headers=["*"],
                expose_headers=["Mcp-Session-Id"],
            )
        ],
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.planka_client = planka
    return app


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)

    # Also configure uvicorn loggers to use the same format
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        uv_logger = logging.getLogger(logger_name)
        uv_logger.handlers = []
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        uv_logger.addHandler(handler)


@click.command()
@click.option("--port", type=int, default=None, help="Port to listen on (default: $PORT or 3000)")
@click.option("--host", default=None, help="Interface to bind (default: $HOST or 0.0.0.0)")
@click.option(
    "--json-response",
    is_flag=True,
    default=None,
    help="Answer MCP requests with plain JSON instead of SSE streams",
)
@click.option("--log-level", default=None, help="Logging level (default: $LOG_LEVEL or INFO)")
def main(
    port: int | None = None,
    host: str | None = None,
    json_response: bool | None = None,
    log_level: str | None = None,
) -> None:
    """Run the Planka MCP server.

    Connection settings come from PLANKA_URL, PLANKA_EMAIL and PLANKA_PASSWORD
    (environment or .env file).
    """
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging("INFO")
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    overrides: dict[str, Any] = {}
    if port is not None:
        overrides["port"] = port
    if host is not None:
        overrides["host"] = host
    if json_response:
        overrides["json_response"] = True
    if log_level is not None:
        overrides["log_level"] = log_level.upper()
    settings = dataclasses.replace(settings, **overrides)

    configure_logging(settings.log_level)

    app = create_app(settings)

    logger.info("=" * 60)
    logger.info(f"MCP Planka server running on port {settings.port}")
    logger.info(f"Planka backend: {settings.planka_url}")
    logger.info(f"MCP endpoint: http://localhost:{settings.port}/mcp")
    logger.info("=" * 60)

    import uvicorn

    # Wrap app with middleware so /mcp and /mcp/ work identically
    uvicorn.run(
        NormalizePathMiddleware(create_logging_middleware(app)),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
    logger.info("Server stopped")


if __name__ == "__main__":
    main()
