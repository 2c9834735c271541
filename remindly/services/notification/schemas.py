"""Request/response schemas for the notification engine and its HTTP surface."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from remindly.services.notification.templates import TEMPLATES


class NotificationRequest(BaseModel):
    """Intent to notify one recipient about one business event.

    `kind` must name a registered template. `channel_preference` falls back to
    the configured per-kind order when omitted.
    """

    kind: str
    dedup_key: str = Field(min_length=1)
    phone: str | None = None
    email: str | None = None
    recipient_name: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    channel_preference: list[str] | None = None

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, value: str) -> str:
        if value not in TEMPLATES:
            raise ValueError(f"unknown notification kind: {value}")
        return value


class DeliveryOutcome(BaseModel):
    """Result reported back to the caller of `notify_now`."""

    status: Literal["SENT", "ALREADY_SENT", "FAILED"]
    dedup_key: str
    channel: str | None = None
    provider_message_id: str | None = None
    error: str | None = None
    final_state: str

    @property
    def delivered(self) -> bool:
        return self.status in ("SENT", "ALREADY_SENT")


class UsageSnapshot(BaseModel):
    """Quota usage for one channel in the current periods."""

    channel: str
    daily_period: str
    daily_count: int
    daily_cap: int
    monthly_period: str
    monthly_count: int
    monthly_cap: int
    estimated_cost: float


class DeliveryAttemptView(BaseModel):
    """Read model of one persisted delivery attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    dedup_key: str
    kind: str
    channel: str
    destination: str
    subject: str | None
    status: str
    provider_message_id: str | None
    error_reason: str | None
    provider_calls: int
    created_at: datetime


class Appointment(BaseModel):
    """Appointment as returned by the appointment store."""

    id: str
    customer_name: str
    phone: str | None = None
    email: str | None = None
    scheduled_at: datetime
    artist_name: str | None = None
    status: str = "scheduled"
    reminder_sent_at: datetime | None = None


class ScanReport(BaseModel):
    """Aggregate counts for one reminder scan."""

    window_start: datetime
    window_end: datetime
    selected: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    not_started: int = 0
