import pytest
from pydantic import ValidationError

from pricecheck.models.itinerary import ItineraryRequest, PriceSource, TravelClass
from pricecheck.models.session import FareType, Offer, ProgressEvent, SessionSnapshot, SessionStatus


def _segment(**overrides) -> dict:
    segment = {
        "airline": "AZ",
        "flightNumber": "2133",
        "departureAirport": "MXP",
        "arrivalAirport": "FCO",
        "departureDate": "2030-05-01",
        "departureTime": "07:00:00",
        "arrivalTime": "08:10:00",
    }
    segment.update(overrides)
    return segment


def _request(**overrides) -> dict:
    request = {
        "trip": {"legs": [{"segments": [_segment()]}, {"segments": [_segment(departureAirport="FCO", arrivalAirport="MXP")]}]},
        "price": "84.00",
        "currency": "EUR",
        "location": "IT",
    }
    request.update(overrides)
    return request


class TestItineraryRequest:
    """Test suite for the wire itinerary model."""

    def test_defaults(self):
        request = ItineraryRequest.model_validate(_request())
        assert request.source is PriceSource.MANUAL
        assert request.trip.travel_class is TravelClass.ECONOMY
        assert request.trip.adults == 1
        assert request.trip.legs[0].segments[0].plus_days == 0

    def test_payload_uses_camel_case(self):
        payload = ItineraryRequest.model_validate(_request()).to_payload()
        segment = payload["trip"]["legs"][0]["segments"][0]
        assert segment["flightNumber"] == "2133"
        assert segment["departureDate"] == "2030-05-01"
        assert payload["trip"]["travelClass"] == "ECONOMY"
        assert payload["trip"]["infantsOnLap"] == 0

    def test_leg_endpoints(self):
        request = ItineraryRequest.model_validate(_request())
        assert request.trip.legs[0].origin == "MXP"
        assert request.trip.legs[0].destination == "FCO"

    def test_summary(self):
        summary = ItineraryRequest.model_validate(_request()).summary()
        assert summary == "MXP ⇄ FCO on 2030-05-01, 1 adult(s), ECONOMY, 84.00 EUR"

    @pytest.mark.parametrize(
        "field, value",
        [
            ("price", "84"),
            ("currency", "eur"),
            ("location", "ITA"),
            ("source", "EMAIL"),
        ],
    )
    def test_rejects_bad_top_level_fields(self, field, value):
        with pytest.raises(ValidationError):
            ItineraryRequest.model_validate(_request(**{field: value}))

    def test_rejects_short_time(self):
        trip = {"legs": [{"segments": [_segment(departureTime="07:00")]}]}
        with pytest.raises(ValidationError):
            ItineraryRequest.model_validate(_request(trip=trip))

    def test_rejects_three_legs(self):
        leg = {"segments": [_segment()]}
        with pytest.raises(ValidationError):
            ItineraryRequest.model_validate(_request(trip={"legs": [leg, leg, leg]}))


class TestSessionModels:
    """Test suite for session snapshots and progress events."""

    def test_snapshot_payload(self):
        snapshot = SessionSnapshot(
            request_id="r1",
            status=SessionStatus.COMPLETED,
            results=[Offer(rank=1, price="81.00 EUR", website="Site", booking_url="https://b.example")],
        )
        payload = snapshot.to_payload()
        assert payload["totalResults"] == 1
        assert payload["status"] == "COMPLETED"
        assert payload["results"][0]["bookingUrl"] == "https://b.example"
        assert payload["results"][0]["fareType"] == "Standard Fare"
        assert "convertedPrice" not in payload["results"][0]

    @pytest.mark.parametrize(
        "status, terminal",
        [
            (SessionStatus.NEW, False),
            (SessionStatus.IN_PROGRESS, False),
            (SessionStatus.COMPLETED, True),
            (SessionStatus.FAILED, True),
        ],
    )
    def test_terminal_statuses(self, status, terminal):
        assert status.is_terminal is terminal

    def test_progress_message(self):
        snapshot = SessionSnapshot(
            request_id="r1",
            status=SessionStatus.IN_PROGRESS,
            results=[Offer(rank=1, price="1.00 EUR", fare_type=FareType.SPECIAL)],
        )
        event = ProgressEvent.from_snapshot(snapshot)
        assert event.result_count == 1
        assert event.message == "Flight search progress: Found 1 result (status: IN_PROGRESS)"
