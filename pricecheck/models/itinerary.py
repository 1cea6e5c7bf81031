from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TravelClass(str, Enum):
    ECONOMY = "ECONOMY"
    PREMIUM_ECONOMY = "PREMIUM_ECONOMY"
    BUSINESS = "BUSINESS"
    FIRST = "FIRST"


class PriceSource(str, Enum):
    """Where the caller saw the reference price. The backend accepts only these."""

    MANUAL = "MANUAL"
    KAYAK = "KAYAK"
    GOOGLE_FLIGHTS = "GOOGLE_FLIGHTS"
    BOOKING = "BOOKING"
    MCP = "MCP"
    IMAGE_EXTRACTION = "IMAGE_EXTRACTION"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Segment(_WireModel):
    """One scheduled flight between two airports."""

    airline: str = Field(
        pattern=r"^([A-Z][A-Z0-9]|[0-9][A-Z])$",
        description="Two-character IATA airline code (e.g., 'LX', 'U2')",
    )
    flight_number: str = Field(
        pattern=r"^\d{1,5}$", description="Numeric flight number without airline prefix"
    )
    departure_airport: str = Field(pattern=r"^[A-Z]{3}$", description="IATA departure airport")
    arrival_airport: str = Field(pattern=r"^[A-Z]{3}$", description="IATA arrival airport")
    departure_date: date = Field(description="Departure date (YYYY-MM-DD)")
    departure_time: str = Field(
        pattern=r"^([01]\d|2[0-3]):[0-5]\d:[0-5]\d$", description="Departure time (HH:MM:SS)"
    )
    arrival_time: str = Field(
        pattern=r"^([01]\d|2[0-3]):[0-5]\d:[0-5]\d$", description="Arrival time (HH:MM:SS)"
    )
    plus_days: int = Field(0, ge=0, description="Days between departure and arrival date")


class Leg(_WireModel):
    """Segments flown consecutively in one direction."""

    segments: list[Segment] = Field(min_length=1)

    @property
    def origin(self) -> str:
        return self.segments[0].departure_airport

    @property
    def destination(self) -> str:
        return self.segments[-1].arrival_airport


class Trip(_WireModel):
    legs: list[Leg] = Field(min_length=1, max_length=2)
    travel_class: TravelClass = TravelClass.ECONOMY
    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)
    infants_in_seat: int = Field(0, ge=0)
    infants_on_lap: int = Field(0, ge=0)


class ItineraryRequest(_WireModel):
    """A validated price-check request, in the exact shape the backend expects."""

    trip: Trip
    price: str = Field(pattern=r"^\d+\.\d{2}$", description="Reference price, 2 decimal places")
    currency: str = Field(pattern=r"^[A-Z]{3}$")
    source: PriceSource = PriceSource.MANUAL
    location: str = Field(pattern=r"^[A-Z]{2}$")

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def summary(self) -> str:
        outbound = self.trip.legs[0]
        return (
            f"{outbound.origin} ⇄ {outbound.destination} on "
            f"{outbound.segments[0].departure_date.isoformat()}, "
            f"{self.trip.adults} adult(s), {self.trip.travel_class.value}, "
            f"{self.price} {self.currency}"
        )
