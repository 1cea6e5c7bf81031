"""
Itinerary validation and normalization.

Callers (LLM agents, mostly) send loosely shaped itineraries: airline names
instead of codes, flight numbers with the carrier prefix still attached,
``HH:MM`` times, prices with currency symbols, and round trips flattened into
a single leg. ``normalize`` repairs what can be repaired and rejects the trip
shapes the backend cannot price (one-way, multi-city, open-jaw).

Everything here is pure: no I/O, and "today" can be injected for tests.
"""

import logging
import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError

from pricecheck.airports import airline_code_for_name, same_metro_area
from pricecheck.errors import ItineraryValidationError
from pricecheck.models.itinerary import ItineraryRequest, PriceSource

logger = logging.getLogger(__name__)

# The backend needs some 2-letter location; this is what it gets when the
# caller's location is not a country code.
DEFAULT_LOCATION = "VA"
DEFAULT_TIME = "00:00:00"

ONE_WAY_MESSAGE = (
    "One-way trips are not yet supported. Please provide a round-trip itinerary "
    "with both outbound and return flights."
)

_AIRLINE_CODE_RE = re.compile(r"^([A-Z][A-Z0-9]|[0-9][A-Z])$")
_PREFIXED_FLIGHT_RE = re.compile(r"^([A-Z0-9]{2})(\d+)$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_COMMA_DECIMAL_RE = re.compile(r"^\d+,\d{2}$")


def normalize(raw: Any, today: Optional[date] = None) -> ItineraryRequest:
    """
    Turn a caller-supplied itinerary into a backend-ready request.

    Args:
        raw: The tool arguments. Either the direct shape ({trip, price, ...}),
            wrapped in {"flightData": {...}}, or the flat single-segment shape.
        today: Reference date for past-date checks, defaults to the UTC date.

    Returns:
        ItineraryRequest: The validated, immutable request.

    Raises:
        ItineraryValidationError: With a message naming the rule that failed.
    """
    if today is None:
        today = datetime.now(timezone.utc).date()

    data = _unwrap(raw)
    trip = data.get("trip")
    if not isinstance(trip, dict):
        raise ItineraryValidationError("Invalid trip: missing trip object")
    raw_legs = trip.get("legs")
    if not isinstance(raw_legs, list):
        raise ItineraryValidationError("Invalid trip: missing legs array")

    # Shape rejections come first so the caller hears about the real problem
    check_leg_count(raw_legs)
    legs = [_normalize_leg(leg, index) for index, leg in enumerate(raw_legs)]
    legs = split_round_trip_legs(legs)
    check_trip_shape(legs)
    _check_dates(legs, today)

    payload = {
        "trip": {
            "legs": legs,
            "travelClass": _normalize_travel_class(trip.get("travelClass")),
            "adults": _count(trip.get("adults"), 1),
            "children": _count(trip.get("children"), 0),
            "infantsInSeat": _count(trip.get("infantsInSeat"), 0),
            "infantsOnLap": _count(trip.get("infantsOnLap"), 0),
        },
        "price": _normalize_price(data.get("price")),
        "currency": _normalize_currency(data.get("currency")),
        "source": _normalize_source(data.get("source")),
        "location": _normalize_location(data.get("location")),
    }

    try:
        request = ItineraryRequest.model_validate(payload)
    except ValidationError as e:
        raise ItineraryValidationError(_describe_validation_error(e)) from e

    logger.info(f"Normalized itinerary: {request.summary()}")
    return request


def split_round_trip_legs(legs: list[dict]) -> list[dict]:
    """
    Split legs that contain both the outbound and the return flights.

    A leg departing from X in which a later segment arrives back at X is cut at
    the first such segment: the segments before it become the outbound leg,
    that segment and the rest become the return leg.
    """
    normalized: list[dict] = []
    for leg in legs:
        segments = leg.get("segments") or []
        if len(segments) < 2:
            normalized.append(leg)
            continue

        origin = segments[0].get("departureAirport")
        split_at = None
        for index in range(1, len(segments)):
            if same_metro_area(segments[index].get("arrivalAirport"), origin):
                split_at = index
                break

        if split_at is None:
            normalized.append(leg)
            continue

        logger.info(
            f"Splitting round trip: first {split_at} segment(s) outbound, "
            f"remaining {len(segments) - split_at} return"
        )
        normalized.append({**leg, "segments": segments[:split_at]})
        normalized.append({**leg, "segments": segments[split_at:]})

    return normalized


def check_leg_count(raw_legs: list) -> None:
    """
    Reject one-way and multi-city trips from the raw leg count alone.

    Runs before any leg is looked at in detail. Splitting only ever adds legs,
    so more than two raw legs is always multi-city, and a single leg is one-way
    unless it holds at least two segment objects that could be split.
    """
    if not raw_legs:
        raise ItineraryValidationError("Invalid trip: at least one leg is required")
    if len(raw_legs) > 2:
        raise ItineraryValidationError(_multi_city_message(len(raw_legs)))
    if len(raw_legs) == 1 and not _could_split(raw_legs[0]):
        raise ItineraryValidationError(ONE_WAY_MESSAGE)


def check_trip_shape(legs: list[dict]) -> None:
    """Reject every trip shape other than a round trip returning to its origin."""
    if not legs:
        raise ItineraryValidationError("Invalid trip: at least one leg is required")
    if len(legs) == 1:
        raise ItineraryValidationError(ONE_WAY_MESSAGE)
    if len(legs) > 2:
        raise ItineraryValidationError(_multi_city_message(len(legs)))

    outbound, inbound = legs
    for number, leg in ((1, outbound), (2, inbound)):
        if not leg.get("segments"):
            raise ItineraryValidationError(f"Invalid trip: leg {number} has no segments")

    outbound_origin = outbound["segments"][0].get("departureAirport")
    outbound_destination = outbound["segments"][-1].get("arrivalAirport")
    return_origin = inbound["segments"][0].get("departureAirport")
    return_destination = inbound["segments"][-1].get("arrivalAirport")

    if not (
        same_metro_area(return_origin, outbound_destination)
        and same_metro_area(return_destination, outbound_origin)
    ):
        raise ItineraryValidationError(
            f"Open-jaw trips are not yet supported. The return flight must depart "
            f"from {outbound_destination} and arrive at {outbound_origin}. "
            f"Got: {return_origin} to {return_destination}."
        )


def pad_time(value: Any) -> Any:
    """'13:00' -> '13:00:00', empty -> '00:00:00', 'HH:MM:SS' unchanged."""
    if value is None:
        return DEFAULT_TIME
    text = str(value).strip()
    if not text:
        return DEFAULT_TIME
    match = _TIME_RE.match(text)
    if not match:
        # Left for the model validation to report
        return text
    hours, minutes, seconds = match.groups()
    return f"{int(hours):02d}:{minutes}:{seconds or '00'}"


def split_airline_and_flight_number(airline: Any, flight_number: Any) -> tuple[str, str]:
    """
    Separate the carrier code from the flight number.

    Examples:
        ("", "U2 3811") -> ("U2", "3811")
        ("LX", "LX1612") -> ("LX", "1612")
        ("easyJet", "2133") -> ("U2", "2133")
    """
    airline_text = _text(airline)
    compact = re.sub(r"[\s-]", "", _text(flight_number)).upper()

    code = airline_text.upper()
    if code and not _AIRLINE_CODE_RE.match(code):
        code = airline_code_for_name(airline_text) or code

    match = _PREFIXED_FLIGHT_RE.match(compact)
    if match and re.search(r"[A-Z]", match.group(1)):
        if not _AIRLINE_CODE_RE.match(code):
            code = match.group(1)
        number = match.group(2)
    else:
        digits = re.search(r"\d+", compact)
        number = digits.group(0) if digits else compact

    if len(code) > 2:
        code = code[:2]
    return code, number


def _unwrap(raw: Any) -> dict:
    if not isinstance(raw, dict):
        raise ItineraryValidationError("Invalid itinerary: expected a JSON object")
    if isinstance(raw.get("flightData"), dict):
        raw = raw["flightData"]
    if "trip" not in raw and ("departure" in raw or "flightNumber" in raw):
        return _from_flat_format(raw)
    return raw


def _from_flat_format(flat: dict) -> dict:
    """Expand the legacy single-flight shape into an outbound and a mirrored return leg."""
    outbound = {
        "airline": flat.get("airline"),
        "flightNumber": flat.get("flightNumber"),
        "departureAirport": flat.get("departure"),
        "arrivalAirport": flat.get("arrival"),
        "departureDate": flat.get("departureDate"),
        "departureTime": flat.get("departureTime"),
        "arrivalTime": flat.get("arrivalTime"),
        "plusDays": 0,
    }
    legs = [{"segments": [outbound]}]
    if flat.get("returnDate"):
        legs.append(
            {
                "segments": [
                    {
                        "airline": flat.get("returnAirline", flat.get("airline")),
                        "flightNumber": flat.get("returnFlightNumber", flat.get("flightNumber")),
                        "departureAirport": flat.get("arrival"),
                        "arrivalAirport": flat.get("departure"),
                        "departureDate": flat.get("returnDate"),
                        "departureTime": flat.get("returnDepartureTime"),
                        "arrivalTime": flat.get("returnArrivalTime"),
                        "plusDays": 0,
                    }
                ]
            }
        )
    return {
        "trip": {
            "legs": legs,
            "travelClass": flat.get("travelClass"),
            "adults": flat.get("adults"),
            "children": flat.get("children"),
            "infantsInSeat": flat.get("infantsInSeat"),
            "infantsOnLap": flat.get("infantsOnLap"),
        },
        "source": flat.get("source"),
        "price": flat.get("price"),
        "currency": flat.get("currency"),
        "location": flat.get("location"),
    }


def _multi_city_message(leg_count: int) -> str:
    return (
        f"Multi-city trips are not yet supported (got {leg_count} legs). Please "
        f"provide a round-trip itinerary with one outbound and one return leg."
    )


def _could_split(leg: Any) -> bool:
    if not isinstance(leg, dict):
        return False
    segments = leg.get("segments")
    return (
        isinstance(segments, list)
        and len(segments) >= 2
        and all(isinstance(segment, dict) for segment in segments)
    )


def _normalize_leg(leg: Any, index: int) -> dict:
    if not isinstance(leg, dict) or not isinstance(leg.get("segments", []), list):
        raise ItineraryValidationError(
            f"Invalid trip: leg {index + 1} must be an object with a segments array"
        )
    segments = []
    for position, segment in enumerate(leg.get("segments", [])):
        if not isinstance(segment, dict):
            raise ItineraryValidationError(
                f"Invalid trip: segment {position + 1} of leg {index + 1} must be an object"
            )
        segments.append(_normalize_segment(segment))
    return {"segments": segments}


def _normalize_segment(segment: dict) -> dict:
    airline, flight_number = split_airline_and_flight_number(
        segment.get("airline"), segment.get("flightNumber")
    )
    return {
        "airline": airline,
        "flightNumber": flight_number,
        "departureAirport": _text(segment.get("departureAirport")).upper(),
        "arrivalAirport": _text(segment.get("arrivalAirport")).upper(),
        "departureDate": _text(segment.get("departureDate")),
        "departureTime": pad_time(segment.get("departureTime")),
        "arrivalTime": pad_time(segment.get("arrivalTime")),
        "plusDays": _count(segment.get("plusDays"), 0),
    }


def _check_dates(legs: list[dict], today: date) -> None:
    leg_dates: list[list[date]] = []
    for leg_number, leg in enumerate(legs, 1):
        dates = []
        for segment_number, segment in enumerate(leg["segments"], 1):
            raw = segment["departureDate"]
            where = f"leg {leg_number}, segment {segment_number}"
            try:
                if not _DATE_RE.match(raw):
                    raise ValueError(raw)
                departure = datetime.strptime(raw, "%Y-%m-%d").date()
            except ValueError:
                raise ItineraryValidationError(
                    f"Invalid departure date {raw!r} for {where}: expected a valid YYYY-MM-DD date"
                ) from None
            if departure < today:
                raise ItineraryValidationError(
                    f"Departure date {raw} for {where} is in the past (today is {today.isoformat()})"
                )
            dates.append(departure)
        leg_dates.append(dates)

    latest_outbound = max(leg_dates[0])
    earliest_return = min(leg_dates[1])
    if earliest_return < latest_outbound:
        raise ItineraryValidationError(
            f"Return departure date {earliest_return.isoformat()} is before the outbound "
            f"departure date {latest_outbound.isoformat()}"
        )


def _normalize_travel_class(value: Any) -> Any:
    if value is None or value == "":
        return "ECONOMY"
    if isinstance(value, str):
        return re.sub(r"[\s-]+", "_", value.strip()).upper()
    return value


def _normalize_price(value: Any) -> str:
    if value is None or isinstance(value, bool):
        raise ItineraryValidationError("Missing reference price: provide the price you found, e.g. '84.00'")
    text = str(value).strip()
    if _COMMA_DECIMAL_RE.match(re.sub(r"[^0-9,]", "", text)) and "." not in text:
        text = text.replace(",", ".")
    cleaned = re.sub(r"[^0-9.]", "", text)
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ItineraryValidationError(
            f"Invalid reference price {value!r}: expected a number such as '84.00'"
        ) from None
    return f"{amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):.2f}"


def _normalize_currency(value: Any) -> str:
    currency = _text(value).upper()
    if not re.fullmatch(r"[A-Z]{3}", currency):
        raise ItineraryValidationError(
            f"Invalid currency {value!r}: expected a three-letter ISO code such as 'EUR'"
        )
    return currency


def _normalize_source(value: Any) -> str:
    source = _text(value).upper()
    if source in PriceSource.__members__:
        return source
    if source:
        logger.info(f"Unknown price source {value!r}, using {PriceSource.MANUAL.value}")
    return PriceSource.MANUAL.value


def _normalize_location(value: Any) -> str:
    location = _text(value).upper()
    if re.fullmatch(r"[A-Z]{2}", location):
        return location
    return DEFAULT_LOCATION


def _count(value: Any, default: int) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        path = ".".join(str(part) for part in item["loc"])
        problems.append(f"{path}: {item['msg']}")
    return "Invalid itinerary: " + "; ".join(problems)
