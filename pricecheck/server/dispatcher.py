"""Transport-independent MCP method dispatch.

``McpDispatcher.stream`` turns one incoming JSON-RPC message into the frames
that must be written back: zero or more progress notifications followed by
the final response. The stdio and HTTP transports both consume this one
generator and differ only in how they write the frames.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Union

from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    Implementation,
    InitializeResult,
    ListResourcesResult,
    ListToolsResult,
    ResourcesCapability,
    ServerCapabilities,
    ToolsCapability,
)
import httpx
from pydantic import BaseModel, ValidationError

from pricecheck.config import Settings
from pricecheck.errors import PriceCheckError, ProtocolError
from pricecheck.formatter import ItineraryFormatter
from pricecheck.models.session import ProgressEvent
from pricecheck.polling import PollingOrchestrator, ProgressChannel
from pricecheck.results_store import ResultsStore
from pricecheck.server import rpc
from pricecheck.server.tools import TOOLS, ToolContext, ToolSpec, failure_payload, lookup_tool, tool_result
from pricecheck.server.widget import read_widget, widget_resource
from pricecheck.session_client import SessionClient

logger = logging.getLogger(__name__)

SERVER_NAME = "flight-pricecheck-mcp"
SERVER_VERSION = "0.1.0"

SERVER_INSTRUCTIONS = (
    "Use format_flight_pricecheck_request to turn a flight description into flightData, "
    "then flight_pricecheck to compare its price across booking sources."
)

_INITIALIZED_NOTIFICATIONS = ("notifications/initialized", "initialized")


def negotiate_protocol_version(requested: Any) -> str:
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return LATEST_PROTOCOL_VERSION


class McpDispatcher:
    def __init__(self, context: ToolContext, transport_name: str, widget_base_url: str):
        self.context = context
        self.transport_name = transport_name
        self.widget_base_url = widget_base_url.rstrip("/")
        self._methods = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "resources/list": self._list_resources,
            "resources/read": self._read_resource,
        }

    async def stream(
        self, raw: Union[str, bytes, dict, rpc.RpcMessage], session_id: Optional[str] = None
    ) -> AsyncIterator[dict]:
        if isinstance(raw, rpc.RpcMessage):
            message = raw
        else:
            try:
                message = rpc.decode_message(raw)
            except rpc.EnvelopeError as e:
                logger.warning(f"[{session_id or '-'}] Rejected message: {e.message}")
                yield rpc.error_response(e.request_id, e.code, e.message)
                return

        if message.is_notification:
            self._handle_notification(message, session_id)
            return

        logger.info(f"[{session_id or '-'}] {message.method} (id={message.id})")
        try:
            if message.method == "tools/call":
                async for frame in self._call_tool(message):
                    yield frame
                return

            handler = self._methods.get(message.method)
            if handler is None:
                raise ProtocolError(METHOD_NOT_FOUND, f"Method not found: {message.method}")
            result = await handler(message)
        except ProtocolError as e:
            logger.warning(f"{message.method} failed with {e.code}: {e.message}")
            yield rpc.error_response(message.id, e.code, e.message, e.data)
        except Exception as e:
            logger.error(f"Unexpected error handling {message.method}: {e}", exc_info=True)
            yield rpc.error_response(message.id, INTERNAL_ERROR, "Internal error", str(e))
        else:
            yield rpc.success_response(message.id, result)

    def _handle_notification(self, message: rpc.RpcMessage, session_id: Optional[str]) -> None:
        if message.method in _INITIALIZED_NOTIFICATIONS:
            logger.info(f"[{session_id or '-'}] Client initialized")
        else:
            logger.debug(f"Ignoring notification {message.method}")

    async def _initialize(self, message: rpc.RpcMessage) -> dict:
        client_info = message.params.get("clientInfo") or {}
        logger.info(f"Initialize from {client_info.get('name', 'unknown client')}")
        result = InitializeResult(
            protocolVersion=negotiate_protocol_version(message.params.get("protocolVersion")),
            capabilities=ServerCapabilities(
                tools=ToolsCapability(listChanged=False),
                resources=ResourcesCapability(subscribe=False, listChanged=False),
            ),
            serverInfo=Implementation(name=SERVER_NAME, version=SERVER_VERSION),
            instructions=SERVER_INSTRUCTIONS,
        )
        return _dump(result)

    async def _ping(self, message: rpc.RpcMessage) -> dict:
        return {}

    async def _list_tools(self, message: rpc.RpcMessage) -> dict:
        return _dump(ListToolsResult(tools=[spec.descriptor() for spec in TOOLS.values()]))

    async def _list_resources(self, message: rpc.RpcMessage) -> dict:
        return _dump(ListResourcesResult(resources=[widget_resource()]))

    async def _read_resource(self, message: rpc.RpcMessage) -> dict:
        uri = message.params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise ProtocolError(INVALID_PARAMS, "Invalid params: uri is required")
        return read_widget(uri, self.context.results_store, self.widget_base_url)

    async def _call_tool(self, message: rpc.RpcMessage) -> AsyncIterator[dict]:
        name = message.params.get("name")
        if not isinstance(name, str) or not name:
            raise ProtocolError(INVALID_PARAMS, "Invalid params: tool name is required")
        spec = lookup_tool(name)

        arguments = message.params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ProtocolError(INVALID_PARAMS, f"Invalid params: arguments of {name} must be an object")
        try:
            args = spec.arguments.model_validate(arguments)
        except ValidationError as e:
            raise ProtocolError(INVALID_PARAMS, f"Invalid arguments for {name}", _describe(e)) from None

        logger.info(f"Calling tool {name}")
        channel = ProgressChannel()
        task = asyncio.create_task(self._run_tool(spec, args, channel))
        try:
            sequence = 0
            async for event in channel:
                sequence += 1
                for frame in self._progress_frames(event, message.progress_token, sequence):
                    yield frame
            result = await task
        finally:
            # Reached on early close too, e.g. the client went away mid-call
            if not task.done():
                logger.info(f"Cancelling tool {name}: caller is gone")
                task.cancel()
        yield rpc.success_response(message.id, result)

    async def _run_tool(self, spec: ToolSpec, args: BaseModel, channel: ProgressChannel) -> dict:
        try:
            payload = await spec.handler(self.context, args, channel)
            return tool_result(payload)
        except PriceCheckError as e:
            logger.warning(f"Tool {spec.name.value} failed: {e}")
            return tool_result(failure_payload(str(e)), is_error=True)
        finally:
            channel.close()

    def _progress_frames(self, event: ProgressEvent, progress_token: Any, sequence: int) -> list[dict]:
        frames = [
            rpc.notification(
                "notifications/message",
                {
                    "level": "info",
                    "logger": self.transport_name,
                    "data": {
                        "message": event.message,
                        "results": event.snapshot.to_payload(),
                        "resultCount": event.result_count,
                        "status": event.status.value,
                    },
                },
            )
        ]
        if progress_token is not None:
            frames.append(
                rpc.notification(
                    "notifications/progress",
                    {"progressToken": progress_token, "progress": sequence, "message": event.message},
                )
            )
        return frames


def build_dispatcher(
    settings: Settings,
    http_client: httpx.AsyncClient,
    transport_name: str,
    budget_seconds: float,
    results_store: Optional[ResultsStore] = None,
) -> McpDispatcher:
    """Wire the collaborators of one transport around a shared HTTP client."""
    results_store = results_store or ResultsStore(settings.results_ttl_seconds)
    session_client = SessionClient(http_client)
    context = ToolContext(
        session_client=session_client,
        orchestrator=PollingOrchestrator(
            session_client,
            budget_seconds=budget_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
            results_store=results_store,
        ),
        formatter=ItineraryFormatter(
            api_key=settings.openai_api_key,
            model_id=settings.formatter_model,
            timeout_seconds=settings.formatter_timeout_seconds,
        ),
        results_store=results_store,
    )
    return McpDispatcher(context, transport_name, settings.widget_base_url)


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}" for item in error.errors()
    )
