import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from pricecheck.config import Settings, load_settings
from pricecheck.server import rpc
from pricecheck.server.dispatcher import (
    SERVER_NAME,
    SERVER_VERSION,
    McpDispatcher,
    build_dispatcher,
    negotiate_protocol_version,
)
from pricecheck.server.tools import TOOLS
from pricecheck.session_client import SessionClient

logger = logging.getLogger(__name__)

SESSION_HEADER = "mcp-session-id"
PROTOCOL_HEADER = "mcp-protocol-version"
STREAM_HEADER = "mcp-stream"


def wants_stream(request: Request) -> bool:
    """The caller asked for SSE via Accept, ?stream=true or the mcp-stream header."""
    if "text/event-stream" in request.headers.get("accept", ""):
        return True
    if request.query_params.get("stream", "").lower() == "true":
        return True
    return request.headers.get(STREAM_HEADER, "").lower() == "true"


async def sse_frames(frames: AsyncIterator[dict]) -> AsyncIterator[str]:
    async for frame in frames:
        yield f"data: {rpc.encode(frame)}\n\n"


def create_app(settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Build the HTTP transport. ``http_client`` overrides the backend client (tests)."""
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or SessionClient.create_http_client(
            settings.api_base_url, settings.backend_timeout_seconds
        )
        app.state.dispatcher = build_dispatcher(
            settings,
            client,
            transport_name="http",
            budget_seconds=settings.http_poll_budget_seconds,
        )
        logger.info(f"HTTP transport ready, backend at {settings.api_base_url}")
        try:
            yield
        finally:
            if http_client is None:
                await client.aclose()

    app = FastAPI(
        title="Flight Price Check MCP",
        description="MCP server comparing the price of a specific flight across booking sources",
        version=SERVER_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER, PROTOCOL_HEADER],
    )

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "server": SERVER_NAME, "version": SERVER_VERSION}

    @app.get("/mcp")
    async def server_metadata(request: Request):
        """Describe the server for clients probing the endpoint."""
        return {
            "name": SERVER_NAME,
            "version": SERVER_VERSION,
            "protocolVersion": negotiate_protocol_version(request.headers.get(PROTOCOL_HEADER)),
            "transport": "http",
            "tools": [
                spec.descriptor().model_dump(mode="json", by_alias=True, exclude_none=True)
                for spec in TOOLS.values()
            ],
        }

    @app.post("/mcp")
    async def mcp_endpoint(request: Request):
        """JSON-RPC over HTTP, answered as one JSON document or as an SSE stream."""
        dispatcher: McpDispatcher = request.app.state.dispatcher
        session_id = request.headers.get(SESSION_HEADER) or str(uuid.uuid4())
        headers = {
            SESSION_HEADER: session_id,
            PROTOCOL_HEADER: negotiate_protocol_version(request.headers.get(PROTOCOL_HEADER)),
        }

        body = await request.body()
        try:
            message = rpc.decode_message(body)
        except rpc.EnvelopeError as e:
            logger.warning(f"[{session_id}] Rejected request: {e.message}")
            return JSONResponse(
                rpc.error_response(e.request_id, e.code, e.message), status_code=400, headers=headers
            )

        frames = dispatcher.stream(message, session_id)

        if message.is_notification:
            async for _ in frames:
                pass
            return Response(status_code=202, headers=headers)

        if wants_stream(request):
            logger.info(f"[{session_id}] Streaming {message.method} over SSE")
            return StreamingResponse(
                sse_frames(frames),
                media_type="text/event-stream",
                headers={**headers, "Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

        final = None
        async for frame in frames:
            if "method" in frame:
                logger.info(f"[{session_id}] Not streaming {frame['method']}, client did not ask for SSE")
                continue
            final = frame
        return JSONResponse(final, headers=headers)

    return app
