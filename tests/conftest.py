import json
from datetime import date, timedelta
from typing import Optional

import httpx
import pytest

from pricecheck.config import Settings
from pricecheck.results_store import ResultsStore

BASE_URL = "https://backend.test/api/v1/price-discovery/flights"


def future_date(days: int) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


def make_round_trip(**overrides) -> dict:
    """MXP -> FCO and back, one adult in economy, 84.00 EUR."""
    itinerary = {
        "trip": {
            "legs": [
                {
                    "segments": [
                        {
                            "airline": "AZ",
                            "flightNumber": "2133",
                            "departureAirport": "MXP",
                            "arrivalAirport": "FCO",
                            "departureDate": future_date(30),
                            "departureTime": "07:00",
                            "arrivalTime": "08:10",
                            "plusDays": 0,
                        }
                    ]
                },
                {
                    "segments": [
                        {
                            "airline": "AZ",
                            "flightNumber": "2134",
                            "departureAirport": "FCO",
                            "arrivalAirport": "MXP",
                            "departureDate": future_date(37),
                            "departureTime": "19:30",
                            "arrivalTime": "20:40",
                            "plusDays": 0,
                        }
                    ]
                },
            ],
            "travelClass": "ECONOMY",
            "adults": 1,
            "children": 0,
            "infantsInSeat": 0,
            "infantsOnLap": 0,
        },
        "source": "MCP",
        "price": "84.00",
        "currency": "EUR",
        "location": "IT",
    }
    itinerary.update(overrides)
    return itinerary


def make_offer_record(index: int, **overrides) -> dict:
    record = {
        "price": f"{80 + index}.00",
        "currency": "EUR",
        "source": f"Site {index}",
        "booking_URL": f"https://book.example/{index}",
        "private_fare": "false",
        "timestamp": "2025-01-01T10:00:00Z",
    }
    record.update(overrides)
    return record


class FakeBackend:
    """Scripted stand-in for the price-discovery API, served through httpx.MockTransport."""

    def __init__(self, request_id: str = "req-123"):
        self.request_id = request_id
        self.submit_response: httpx.Response = httpx.Response(200, json={"request_id": request_id})
        self.poll_responses: list = []
        self.submitted: list[dict] = []
        self.polls = 0

    def script_polls(self, *responses) -> None:
        """Queue poll answers: dicts become 200 JSON bodies, exceptions are raised, responses returned."""
        self.poll_responses.extend(responses)

    def session(self, status: str, results: Optional[list] = None) -> dict:
        return {"request_id": self.request_id, "status": status, "results": results or []}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path.endswith("/session"):
            self.submitted.append(json.loads(request.content))
            return self.submit_response
        if request.method == "GET" and "/session/" in path:
            self.polls += 1
            if not self.poll_responses:
                return httpx.Response(200, json=self.session("IN_PROGRESS"))
            answer = self.poll_responses.pop(0) if len(self.poll_responses) > 1 else self.poll_responses[0]
            if isinstance(answer, Exception):
                raise answer
            if isinstance(answer, httpx.Response):
                return answer
            return httpx.Response(200, json=answer)
        return httpx.Response(404, json={"message": "not found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=BASE_URL + "/",
            transport=httpx.MockTransport(self.handler),
        )


class FakeClock:
    """Monotonic clock that only advances when the code under test sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def round_trip():
    """A valid round-trip itinerary in the direct shape."""
    return make_round_trip()


@pytest.fixture
def backend():
    """Scripted price-discovery backend."""
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with fast polling for transport tests."""
    return Settings(
        api_base_url=BASE_URL,
        poll_interval_seconds=0.01,
        stdio_poll_budget_seconds=2.0,
        http_poll_budget_seconds=2.0,
        openai_api_key=None,
        widget_base_url="http://widget.test",
    )


@pytest.fixture
def results_store():
    return ResultsStore(ttl_seconds=60)


@pytest.fixture
def itinerary_factory():
    """Build round-trip itineraries with top-level overrides."""
    return make_round_trip


@pytest.fixture
def offer_record():
    """Build backend offer records."""
    return make_offer_record


@pytest.fixture
def days_ahead():
    """ISO date a number of days from today."""
    return future_date


@pytest.fixture
def make_backend():
    """Build independent scripted backends, one per transport under test."""
    return FakeBackend
