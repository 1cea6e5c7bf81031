from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionStatus(str, Enum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class FareType(str, Enum):
    STANDARD = "Standard Fare"
    SPECIAL = "Special Fare"


class Offer(BaseModel):
    """One price found by the backend for the requested itinerary."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    rank: int = Field(description="1-based position in the backend's result list")
    price: str = Field(description="Price with currency (e.g., '84.00 EUR')")
    converted_price: Optional[str] = Field(None, alias="convertedPrice")
    website: Optional[str] = Field(None, description="Booking website name")
    booking_url: Optional[str] = Field(None, alias="bookingUrl")
    fare_type: FareType = Field(FareType.STANDARD, alias="fareType")
    timestamp: Optional[str] = None


class SessionSnapshot(BaseModel):
    """The backend's view of a price-discovery session at one poll."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str
    status: SessionStatus = SessionStatus.IN_PROGRESS
    results: list[Offer] = Field(default_factory=list)

    @property
    def total_results(self) -> int:
        return len(self.results)

    def to_payload(self) -> dict:
        payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload["totalResults"] = self.total_results
        return payload


class ProgressEvent(BaseModel):
    """Snapshot emitted when the visible result count grows or the search completes."""

    result_count: int
    status: SessionStatus
    snapshot: SessionSnapshot

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> "ProgressEvent":
        return cls(
            result_count=snapshot.total_results,
            status=snapshot.status,
            snapshot=snapshot,
        )

    @property
    def message(self) -> str:
        plural = "" if self.result_count == 1 else "s"
        return (
            f"Flight search progress: Found {self.result_count} result{plural} "
            f"(status: {self.status.value})"
        )
