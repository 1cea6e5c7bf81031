import json
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from pricecheck.errors import BackendError
from pricecheck.models.itinerary import ItineraryRequest
from pricecheck.models.session import FareType, Offer, SessionSnapshot, SessionStatus

logger = logging.getLogger(__name__)


class SessionClient:
    """Client for the price-discovery backend's session endpoints.

    Owns the backend's JSON shapes. Every failure surfaces as ``BackendError``;
    nothing is retried here.
    """

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    @classmethod
    def create_http_client(cls, base_url: str, timeout_seconds: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
        )

    async def submit(self, request: ItineraryRequest) -> str:
        """Create a price-discovery session and return its request_id."""
        payload = request.to_payload()
        logger.info(f"Submitting session: {request.summary()}")
        logger.debug(f"Submit payload: {json.dumps(payload)}")

        try:
            response = await self.http_client.post("session", json=payload)
        except httpx.HTTPError as e:
            raise BackendError(f"Could not reach the price-discovery API: {e}") from e

        logger.info(f"Submit response status: {response.status_code}")
        if response.is_error:
            raise BackendError(_describe_error_response(response))

        data = _parse_json_body(response)
        _raise_for_embedded_error(data, response.status_code)

        request_id = data.get("request_id") if isinstance(data, dict) else None
        if not request_id:
            raise BackendError("Price-discovery API returned no request_id for the new session")

        logger.info(f"Session created with ID: {request_id}")
        return str(request_id)

    async def fetch_results(self, request_id: str) -> SessionSnapshot:
        """Read the current status and results of a session."""
        try:
            response = await self.http_client.get(f"session/{quote(request_id, safe='')}")
        except httpx.HTTPError as e:
            raise BackendError(f"Could not reach the price-discovery API: {e}") from e

        if response.is_error:
            raise BackendError(_describe_error_response(response))

        data = _parse_json_body(response)
        _raise_for_embedded_error(data, response.status_code)
        if not isinstance(data, dict):
            raise BackendError("Price-discovery API returned an unexpected results payload")

        return parse_snapshot(data, request_id)


def parse_snapshot(data: dict, request_id: str) -> SessionSnapshot:
    """Map a backend session document into a SessionSnapshot."""
    records = data.get("results")
    if not isinstance(records, list):
        records = []

    offers = [_parse_offer(record, rank) for rank, record in enumerate(records, 1) if isinstance(record, dict)]
    return SessionSnapshot(
        request_id=str(data.get("request_id") or request_id),
        status=_parse_status(data.get("status")),
        results=offers,
    )


def _parse_offer(record: dict, rank: int) -> Offer:
    converted_price = None
    if record.get("convertedPrice"):
        converted_price = f"{record['convertedPrice']} {record.get('convertedCurrency', '')}".strip()

    private_fare = record.get("private_fare")
    is_private = private_fare is True or str(private_fare).lower() == "true"

    return Offer(
        rank=rank,
        price=f"{record.get('price')} {record.get('currency', '')}".strip(),
        converted_price=converted_price,
        website=record.get("source") or record.get("website_name"),
        booking_url=record.get("booking_URL") or record.get("booking_url"),
        fare_type=FareType.SPECIAL if is_private else FareType.STANDARD,
        timestamp=str(record["timestamp"]) if record.get("timestamp") else None,
    )


def _parse_status(value: Any) -> SessionStatus:
    try:
        return SessionStatus(str(value).upper())
    except ValueError:
        logger.warning(f"Unknown session status {value!r}, treating as IN_PROGRESS")
        return SessionStatus.IN_PROGRESS


def _parse_json_body(response: httpx.Response) -> Any:
    text = response.text
    if not text or not text.strip():
        raise BackendError(f"Price-discovery API returned an empty response body (status {response.status_code})")
    try:
        return json.loads(text)
    except ValueError:
        raise BackendError(
            f"Price-discovery API returned invalid JSON (status {response.status_code}): {text[:200]}"
        ) from None


def _is_error_payload(data: Any) -> bool:
    return isinstance(data, dict) and (bool(data.get("is_error")) or data.get("type") == "http_error")


def _raise_for_embedded_error(data: Any, status_code: int) -> None:
    # The backend sometimes reports failures inside a 200 body
    if _is_error_payload(data):
        code = data.get("code") or status_code
        message = data.get("message") or f"API error {status_code}"
        raise BackendError(f"Price-discovery API error {code}: {message}")


def _describe_error_response(response: httpx.Response) -> str:
    prefix = f"Price-discovery API error: {response.status_code} {response.reason_phrase}"
    text = response.text.strip() if response.text else ""
    if not text:
        return f"{prefix} (no error details)"

    detail: Optional[str] = text[:500]
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if _is_error_payload(data):
        detail = data.get("message") or f"API error {response.status_code}"
    return f"{prefix} - {detail}"
