"""Natural-language itinerary formatter.

Turns a free-text flight description into the itinerary shape accepted by the
price-check tool, or into a follow-up question when details are missing. The
language model is an opaque collaborator: anything it gets wrong is caught by
the local completeness check here and by the validator afterwards.
"""

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from agno.agent import Agent
from agno.models.openai import OpenAIChat
from opentelemetry import trace as trace_api
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from pricecheck.observability import get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

with open(Path(__file__).parent / "prompts" / "agents.yaml", "r") as f:
    agents_config = yaml.safe_load(f)

STATELESS_NOTE = (
    " IMPORTANT: When providing the missing information, include the complete previous "
    "flight details (paste the full extracted data or previous request) along with the "
    "missing fields, as this tool does not retain context between calls."
)

ALL_FIELDS = [
    "departure airport",
    "arrival airport",
    "departure date",
    "return date",
    "departure time",
    "arrival time",
    "return departure time",
    "return arrival time",
    "airline code",
    "flight number",
]

_EXTRACTION_MARKERS = ("extracted", '{"tripType"', "outboundSegments")


class _DraftModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DraftSegment(_DraftModel):
    airline: Optional[str] = Field(None, description="2-character IATA airline code")
    flight_number: Optional[str] = Field(None, description="Flight number digits")
    departure_airport: Optional[str] = Field(None, description="3-letter IATA code")
    arrival_airport: Optional[str] = Field(None, description="3-letter IATA code")
    departure_date: Optional[str] = Field(None, description="YYYY-MM-DD")
    departure_time: Optional[str] = Field(None, description="HH:MM:SS")
    arrival_time: Optional[str] = Field(None, description="HH:MM:SS")
    plus_days: Optional[int] = Field(None, description="Days between departure and arrival")


class DraftLeg(_DraftModel):
    segments: list[DraftSegment] = Field(default_factory=list)


class DraftTrip(_DraftModel):
    legs: list[DraftLeg] = Field(default_factory=list)
    travel_class: Optional[str] = None
    adults: Optional[int] = None
    children: Optional[int] = None
    infants_in_seat: Optional[int] = None
    infants_on_lap: Optional[int] = None


class DraftItinerary(_DraftModel):
    trip: Optional[DraftTrip] = None
    price: Optional[str] = None
    currency: Optional[str] = None
    location: Optional[str] = None


class FormatterOutput(_DraftModel):
    """Structured answer expected from the formatter agent."""

    needs_more_info: bool = Field(False, description="True when required details are missing")
    message: Optional[str] = Field(None, description="Follow-up question for the user")
    missing_fields: list[str] = Field(default_factory=list)
    flight_data: Optional[DraftItinerary] = None


class FormatOutcome(BaseModel):
    needs_more_info: bool
    message: Optional[str] = None
    missing_fields: list[str] = Field(default_factory=list)
    flight_data: Optional[dict] = None

    def to_payload(self) -> dict:
        if self.needs_more_info:
            return {
                "message": (self.message or "") + STATELESS_NOTE,
                "needsMoreInfo": True,
                "missingFields": self.missing_fields,
            }
        return {
            "message": "Flight details parsed and formatted successfully! "
            "Use the flightData below to call flight_pricecheck.",
            "flightData": self.flight_data,
            "readyForPriceCheck": True,
        }


def detect_source(user_request: str) -> str:
    if any(marker in user_request for marker in _EXTRACTION_MARKERS):
        return "IMAGE_EXTRACTION"
    return "MCP"


def find_missing_fields(itinerary: Optional[DraftItinerary]) -> list[str]:
    """List the required details absent from a drafted itinerary."""
    if itinerary is None or itinerary.trip is None:
        return ["trip information"]

    trip = itinerary.trip
    missing = []
    if not trip.legs:
        missing.append("flight legs")
    for leg_number, leg in enumerate(trip.legs, 1):
        if not leg.segments:
            missing.append(f"segments for leg {leg_number}")
            continue
        for segment_number, segment in enumerate(leg.segments, 1):
            where = f"leg {leg_number}, segment {segment_number}"
            for label, value in (
                ("airline code", segment.airline),
                ("flight number", segment.flight_number),
                ("departure airport", segment.departure_airport),
                ("arrival airport", segment.arrival_airport),
                ("departure date", segment.departure_date),
                ("departure time", segment.departure_time),
                ("arrival time", segment.arrival_time),
            ):
                if not value:
                    missing.append(f"{label} for {where}")
    if not trip.adults:
        missing.append("number of adults")
    if not trip.travel_class:
        missing.append("travel class")
    return missing


def follow_up_question(missing: list[str]) -> str:
    question = "I need a bit more information to search for your flight. "
    if len(missing) == 1:
        return question + f"Could you please provide: {missing[0]}?"
    if len(missing) <= 3:
        return question + f"Could you please provide: {', '.join(missing[:-1])} and {missing[-1]}?"
    return question + (
        "Could you please provide more details about your flight? "
        f"I'm missing: {', '.join(missing[:3])} and {len(missing) - 3} other details."
    )


def fallback_outcome() -> FormatOutcome:
    return FormatOutcome(
        needs_more_info=True,
        message="I encountered an error parsing your request. Please provide: " + ", ".join(ALL_FIELDS) + ".",
        missing_fields=list(ALL_FIELDS),
    )


class ItineraryFormatter:
    """Formats free-text flight descriptions with an agno agent."""

    def __init__(
        self,
        api_key: Optional[str],
        model_id: str = "gpt-4o-mini",
        timeout_seconds: float = 45.0,
        agent_factory: Optional[Callable[[], Agent]] = None,
    ):
        self.api_key = api_key
        self.model_id = model_id
        self.timeout_seconds = timeout_seconds
        self._agent_factory = agent_factory or self._create_agent

    def _create_agent(self) -> Agent:
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")
        config = agents_config["itinerary_formatter"]
        return Agent(
            model=OpenAIChat(id=self.model_id, api_key=self.api_key),
            name=config["name"],
            role=config["role"],
            description=config["goal"],
            instructions=config["instructions"],
            response_model=FormatterOutput,
            markdown=False,
        )

    async def format(self, user_request: str, today: Optional[date] = None) -> FormatOutcome:
        with tracer.start_as_current_span("format_itinerary") as span:
            span.set_attribute("request.length", len(user_request))
            try:
                output = await self._run_agent(user_request, today or date.today())
            except asyncio.TimeoutError:
                logger.error(f"Formatter timed out after {self.timeout_seconds:.0f} seconds")
                span.set_status(trace_api.StatusCode.ERROR, "timeout")
                return fallback_outcome()
            except Exception as e:
                logger.error(f"Formatter failed: {e}", exc_info=True)
                span.set_status(trace_api.StatusCode.ERROR, str(e))
                return fallback_outcome()

            outcome = self._interpret(output, user_request)
            span.set_attribute("needs_more_info", outcome.needs_more_info)
            return outcome

    async def _run_agent(self, user_request: str, today: date) -> FormatterOutput:
        agent = self._agent_factory()
        prompt = f"Today's date is {today.isoformat()}.\n\nFlight description:\n{user_request}"
        response = await asyncio.wait_for(agent.arun(prompt), timeout=self.timeout_seconds)
        content = response.content if hasattr(response, "content") else response
        if isinstance(content, FormatterOutput):
            return content
        if isinstance(content, dict):
            return FormatterOutput.model_validate(content)
        if isinstance(content, str):
            return FormatterOutput.model_validate_json(_strip_code_fence(content))
        raise ValueError("Formatter agent did not return structured data")

    def _interpret(self, output: FormatterOutput, user_request: str) -> FormatOutcome:
        if output.needs_more_info:
            return FormatOutcome(
                needs_more_info=True,
                message=output.message or follow_up_question(output.missing_fields or ALL_FIELDS),
                missing_fields=output.missing_fields,
            )

        missing = find_missing_fields(output.flight_data)
        if missing:
            logger.info(f"Formatter output incomplete, missing: {', '.join(missing)}")
            return FormatOutcome(
                needs_more_info=True,
                message=follow_up_question(missing),
                missing_fields=missing,
            )

        flight_data: dict[str, Any] = output.flight_data.model_dump(by_alias=True, exclude_none=True)
        flight_data["source"] = detect_source(user_request)
        return FormatOutcome(needs_more_info=False, flight_data=flight_data)


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()
