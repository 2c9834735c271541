"""Shared fixtures: in-memory database, fake providers, fake appointment store, fixed clock."""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from remindly.common.config import QuotaPolicy
from remindly.common.db import Base
from remindly.common.errors import DeliveryError
from remindly.services.notification import models  # noqa: F401  registers tables
from remindly.services.notification.history import DeliveryHistory
from remindly.services.notification.orchestrator import DeliveryOrchestrator
from remindly.services.notification.quota import QuotaTracker
from remindly.services.notification.retry import RetryPolicy
from remindly.services.notification.templates import SHAPE_EMAIL, SHAPE_SMS
from remindly.services.provider_adapter.base import ChannelAdapter


NOW = datetime(2024, 5, 5, 14, 30, tzinfo=timezone.utc)

CHANNEL_ORDER = {
    "appointment_confirmation": ["sms", "sms_backup", "email"],
    "appointment_reminder": ["sms", "sms_backup", "email"],
    "appointment_cancellation": ["sms", "email"],
    "payment_confirmation": ["email", "sms"],
    "payment_reminder": ["email", "sms"],
}


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordedSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeAdapter(ChannelAdapter):
    """Provider stand-in that replays a scripted list of outcomes.

    Each script entry is either a `DeliveryError` to raise or `None` for
    success; once the script runs out every call succeeds.
    """

    def __init__(self, name: str, shape: str, script: list | None = None, delay: float = 0.0) -> None:
        self.name = name
        self.shape = shape
        self.script = list(script or [])
        self.delay = delay
        self.sent: list[tuple[str, str | None, str]] = []
        self.calls = 0

    async def send(self, destination: str, subject: str | None, body: str) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.script.pop(0) if self.script else None
        if isinstance(outcome, DeliveryError):
            raise outcome
        self.sent.append((destination, subject, body))
        return f"{self.name}-msg-{len(self.sent)}"


class FakeAppointmentStore:
    def __init__(self, appointments=None, fail_mark_for: set[str] | None = None) -> None:
        self.appointments = list(appointments or [])
        self.fail_mark_for = fail_mark_for or set()
        self.marked: list[str] = []
        self.list_calls: list[tuple[datetime, datetime]] = []

    async def list_due_for_reminder(self, window_start, window_end):
        self.list_calls.append((window_start, window_end))
        return [a for a in self.appointments if a.reminder_sent_at is None]

    async def mark_reminder_sent(self, appointment_id: str) -> None:
        if appointment_id in self.fail_mark_for:
            raise RuntimeError(f"cannot flag appointment {appointment_id}")
        self.marked.append(appointment_id)
        for appointment in self.appointments:
            if appointment.id == appointment_id:
                appointment.reminder_sent_at = NOW


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordedSleep()


@pytest.fixture
def policies():
    return {
        "sms": QuotaPolicy(daily_cap=100, monthly_cap=500, cost_per_message=0.00645),
        "sms_backup": QuotaPolicy(daily_cap=50, monthly_cap=250, cost_per_message=0.003),
        "email": QuotaPolicy(daily_cap=300, monthly_cap=9000),
    }


@pytest.fixture
def history(session_factory):
    return DeliveryHistory(session_factory)


@pytest.fixture
def quota(session_factory, policies):
    return QuotaTracker(session_factory, policies)


@pytest.fixture
def channels():
    return {
        "sms": FakeAdapter("sms", SHAPE_SMS),
        "sms_backup": FakeAdapter("sms_backup", SHAPE_SMS),
        "email": FakeAdapter("email", SHAPE_EMAIL),
    }


@pytest.fixture
def make_orchestrator(history, quota, channels, clock, sleep):
    def _make(**overrides):
        kwargs = {
            "channel_order": CHANNEL_ORDER,
            "retry_policy": RetryPolicy(max_attempts=3, backoff_strategy="linear", backoff_base_seconds=1.0),
            "template_defaults": {"business_name": "Ink & Needle"},
            "clock": clock,
            "sleep": sleep,
        }
        kwargs.update(overrides)
        return DeliveryOrchestrator(
            kwargs.pop("history", history),
            kwargs.pop("quota", quota),
            kwargs.pop("channels", channels),
            **kwargs,
        )

    return _make
