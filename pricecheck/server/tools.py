"""MCP tool surface of the price-check server.

Every tool the server answers is a member of ``ToolName`` and is bound, in
``TOOLS``, to the pydantic model its arguments must satisfy, the JSON schema
advertised in ``tools/list`` and the coroutine that runs it.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from mcp.types import METHOD_NOT_FOUND, CallToolResult, TextContent, Tool, ToolAnnotations
from pydantic import BaseModel, ConfigDict, Field

from pricecheck.errors import ProtocolError
from pricecheck.formatter import ItineraryFormatter
from pricecheck.models.itinerary import ItineraryRequest
from pricecheck.models.session import SessionSnapshot
from pricecheck.polling import PollingOrchestrator, ProgressChannel
from pricecheck.results_store import ResultsStore
from pricecheck.server.widget import widget_uri_for
from pricecheck.session_client import SessionClient
from pricecheck.validator import normalize

logger = logging.getLogger(__name__)

DEFAULT_TOOL_SOURCE = "MCP"


class ToolName(str, Enum):
    FLIGHT_PRICECHECK = "flight_pricecheck"
    FORMAT_FLIGHT_PRICECHECK_REQUEST = "format_flight_pricecheck_request"
    SEARCH_FLIGHTS = "search_flights"
    SUBMIT_SESSION = "submit_session"
    GET_SESSION_RESULTS = "get_session_results"


@dataclass
class ToolContext:
    """Collaborators shared by all tool calls on one transport."""

    session_client: SessionClient
    orchestrator: PollingOrchestrator
    formatter: ItineraryFormatter
    results_store: ResultsStore


class PriceCheckArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    flight_data: dict = Field(
        alias="flightData",
        description="Complete flight data payload: the flight the user found, its dates, times and the price they saw",
    )


class FormatRequestArgs(BaseModel):
    user_request: str = Field(
        min_length=1,
        description="Description of the flight the user found, or pasted extracted flight data",
    )


class ItineraryArgs(BaseModel):
    """Itinerary passed at the top level of the arguments (legacy tools)."""

    model_config = ConfigDict(extra="allow")

    trip: dict


class SessionResultsArgs(BaseModel):
    request_id: str = Field(min_length=1, description="Session identifier returned by submit_session")


ToolHandler = Callable[[ToolContext, Any, Optional[ProgressChannel]], Awaitable[dict]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    title: str
    description: str
    arguments: type[BaseModel]
    input_schema: dict
    handler: ToolHandler
    read_only: bool = False

    def descriptor(self) -> Tool:
        return Tool(
            name=self.name.value,
            description=self.description,
            inputSchema=self.input_schema,
            annotations=ToolAnnotations(
                title=self.title,
                readOnlyHint=self.read_only,
                destructiveHint=False,
            ),
        )


def lookup_tool(name: str) -> ToolSpec:
    try:
        return TOOLS[ToolName(name)]
    except ValueError:
        raise ProtocolError(METHOD_NOT_FOUND, f"Unknown tool: {name}") from None


def tool_result(payload: dict, is_error: bool = False) -> dict:
    result = CallToolResult(
        content=[TextContent(type="text", text=json.dumps(payload, indent=2, ensure_ascii=False))],
        isError=is_error,
    )
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


def failure_payload(reason: str) -> dict:
    return {"message": f"Flight search failed: {reason}", "error": reason}


def describe_offers(snapshot: SessionSnapshot) -> str:
    """Human-readable summary with each offer on its own line."""
    lines = [f"Flight price search completed! Found {snapshot.total_results} result(s):", ""]
    if not snapshot.results:
        lines.append("No results found.")
    for offer in snapshot.results:
        line = f"{offer.rank}. {offer.website or 'Unknown'} - {offer.price or 'N/A'} ({offer.fare_type.value})"
        if offer.booking_url:
            line += f"\n   🔗 {offer.booking_url}"
        lines.extend([line, ""])
    return "\n".join(lines).strip()


def price_check_payload(snapshot: SessionSnapshot) -> dict:
    return {
        "message": describe_offers(snapshot),
        "searchResult": snapshot.to_payload(),
        "status": snapshot.status.value,
        "widgetUri": widget_uri_for(snapshot.request_id),
    }


def _with_default_source(itinerary: dict) -> dict:
    itinerary = dict(itinerary)
    if "flightData" in itinerary and isinstance(itinerary["flightData"], dict):
        itinerary = dict(itinerary["flightData"])
    if not itinerary.get("source"):
        itinerary["source"] = DEFAULT_TOOL_SOURCE
    return itinerary


async def _check_price(ctx: ToolContext, itinerary: dict, progress: Optional[ProgressChannel]) -> dict:
    request = normalize(_with_default_source(itinerary))
    logger.info(f"Price check for {request.summary()}")
    snapshot = await ctx.orchestrator.run(request, progress)
    return price_check_payload(snapshot)


async def handle_flight_pricecheck(
    ctx: ToolContext, args: PriceCheckArgs, progress: Optional[ProgressChannel]
) -> dict:
    return await _check_price(ctx, args.flight_data, progress)


async def handle_search_flights(
    ctx: ToolContext, args: ItineraryArgs, progress: Optional[ProgressChannel]
) -> dict:
    return await _check_price(ctx, args.model_dump(), progress)


async def handle_format_request(
    ctx: ToolContext, args: FormatRequestArgs, progress: Optional[ProgressChannel]
) -> dict:
    outcome = await ctx.formatter.format(args.user_request)
    logger.info("Formatter result: " + ("needs more info" if outcome.needs_more_info else "ready for price check"))
    return outcome.to_payload()


async def handle_submit_session(
    ctx: ToolContext, args: ItineraryArgs, progress: Optional[ProgressChannel]
) -> dict:
    request = normalize(args.model_dump())
    request_id = await ctx.session_client.submit(request)
    return {
        "message": f"Price discovery session created. Call get_session_results with request_id {request_id}.",
        "request_id": request_id,
    }


async def handle_get_session_results(
    ctx: ToolContext, args: SessionResultsArgs, progress: Optional[ProgressChannel]
) -> dict:
    snapshot = await ctx.session_client.fetch_results(args.request_id)
    ctx.results_store.put(snapshot)
    return price_check_payload(snapshot)


def _itinerary_schema() -> dict:
    return ItineraryRequest.model_json_schema(by_alias=True)


def _wrapped_itinerary_schema() -> dict:
    schema = _itinerary_schema()
    defs = schema.pop("$defs", {})
    wrapped = {
        "type": "object",
        "properties": {"flightData": schema},
        "required": ["flightData"],
    }
    if defs:
        wrapped["$defs"] = defs
    return wrapped


TOOLS: dict[ToolName, ToolSpec] = {
    ToolName.FLIGHT_PRICECHECK: ToolSpec(
        name=ToolName.FLIGHT_PRICECHECK,
        title="Flight Price Check",
        description=(
            "Find a better price for a specific flight the user has already found. Searches "
            "multiple booking sources for the exact same flights and reports every offer found. "
            "Only round trips are supported."
        ),
        arguments=PriceCheckArgs,
        input_schema=_wrapped_itinerary_schema(),
        handler=handle_flight_pricecheck,
    ),
    ToolName.FORMAT_FLIGHT_PRICECHECK_REQUEST: ToolSpec(
        name=ToolName.FORMAT_FLIGHT_PRICECHECK_REQUEST,
        title="Format Flight Request",
        description=(
            "Parse flight details from natural language or extracted image data into the "
            "flightData expected by flight_pricecheck, asking follow-up questions if information "
            "is missing. This tool is stateless: when answering a needsMoreInfo response, include "
            "the complete previous flight details together with the missing information."
        ),
        arguments=FormatRequestArgs,
        input_schema=FormatRequestArgs.model_json_schema(),
        handler=handle_format_request,
        read_only=True,
    ),
    ToolName.SEARCH_FLIGHTS: ToolSpec(
        name=ToolName.SEARCH_FLIGHTS,
        title="Search Flight Prices",
        description=(
            "Search for flight prices across multiple booking sources, then poll for results. "
            "Takes the itinerary at the top level of the arguments."
        ),
        arguments=ItineraryArgs,
        input_schema=_itinerary_schema(),
        handler=handle_search_flights,
    ),
    ToolName.SUBMIT_SESSION: ToolSpec(
        name=ToolName.SUBMIT_SESSION,
        title="Submit Price Discovery Session",
        description="Create a price discovery session without waiting for results.",
        arguments=ItineraryArgs,
        input_schema=_itinerary_schema(),
        handler=handle_submit_session,
    ),
    ToolName.GET_SESSION_RESULTS: ToolSpec(
        name=ToolName.GET_SESSION_RESULTS,
        title="Get Session Results",
        description="Get the current status and results of a price discovery session.",
        arguments=SessionResultsArgs,
        input_schema=SessionResultsArgs.model_json_schema(),
        handler=handle_get_session_results,
        read_only=True,
    ),
}

_unbound = [name.value for name in ToolName if name not in TOOLS]
if _unbound:
    raise RuntimeError(f"Tools without a handler: {', '.join(_unbound)}")
