"""Reminder scanner: finds appointments inside the reminder window and notifies them."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from remindly.common.logging import logger
from remindly.common.metrics import reminder_last_scan_timestamp, reminder_scan_items_total, reminder_scan_seconds
from remindly.services.notification.appointments import AppointmentStore
from remindly.services.notification.history import DeliveryHistory
from remindly.services.notification.orchestrator import DeliveryOrchestrator, utc_now
from remindly.services.notification.schemas import Appointment, NotificationRequest, ScanReport


INACTIVE_STATUSES = frozenset({"cancelled", "canceled", "completed"})
DEFAULT_ARTIST_NAME = "your artist"

SENT = "sent"
SKIPPED = "skipped"
NOT_STARTED = "not_started"
FAILED = "failed"


def reminder_dedup_key(appointment_id: str) -> str:
    return f"{appointment_id}:reminder"


def format_date(value: datetime) -> str:
    """`Monday, May 6, 2024`."""

    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def format_time(value: datetime) -> str:
    """`2:30 PM`."""

    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {'AM' if value.hour < 12 else 'PM'}"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ReminderScanner:
    """One pass over the appointment store for the current reminder window."""

    def __init__(
        self,
        store: AppointmentStore,
        orchestrator: DeliveryOrchestrator,
        history: DeliveryHistory,
        *,
        window_start: timedelta = timedelta(hours=23),
        window_end: timedelta = timedelta(hours=25),
        concurrency: int = 4,
        clock: Callable[[], datetime] = utc_now,
        timezone_name: str = "UTC",
        service_name: str = "remindly",
    ) -> None:
        if window_end <= window_start:
            raise ValueError("reminder window end must be after its start")
        if concurrency < 1:
            raise ValueError("scan concurrency must be at least 1")
        self.store = store
        self.orchestrator = orchestrator
        self.history = history
        self.window_start = window_start
        self.window_end = window_end
        self.concurrency = concurrency
        self.clock = clock
        self.tz = ZoneInfo(timezone_name)
        self.service_name = service_name

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        now = _as_utc(now)
        return now + self.window_start, now + self.window_end

    def is_due(self, appointment: Appointment, window_start: datetime, window_end: datetime) -> bool:
        if appointment.status.lower() in INACTIVE_STATUSES:
            return False
        return window_start <= _as_utc(appointment.scheduled_at) <= window_end

    def build_request(self, appointment: Appointment) -> NotificationRequest:
        local = _as_utc(appointment.scheduled_at).astimezone(self.tz)
        return NotificationRequest(
            kind="appointment_reminder",
            dedup_key=reminder_dedup_key(appointment.id),
            phone=appointment.phone,
            email=appointment.email,
            recipient_name=appointment.customer_name,
            payload={
                "customer_name": appointment.customer_name,
                "date": format_date(local),
                "time": format_time(local),
                "artist_name": appointment.artist_name or DEFAULT_ARTIST_NAME,
            },
        )

    async def _process(self, appointment: Appointment) -> str:
        if appointment.reminder_sent_at is not None:
            return SKIPPED

        dedup_key = reminder_dedup_key(appointment.id)
        if self.history.has_succeeded(dedup_key):
            # Sent on an earlier tick but the flag write was lost.
            logger.info("reminder already sent, re-marking appointment_id=%s", appointment.id)
            await self.store.mark_reminder_sent(appointment.id)
            return SKIPPED

        outcome = await self.orchestrator.deliver(self.build_request(appointment))
        if outcome.status == "FAILED":
            logger.warning(
                "reminder not delivered appointment_id=%s error=%s", appointment.id, outcome.error
            )
            return FAILED
        await self.store.mark_reminder_sent(appointment.id)
        return SENT if outcome.status == "SENT" else SKIPPED

    async def scan(self, stop_event: asyncio.Event | None = None) -> ScanReport:
        """Notify every due appointment; one failing item never aborts the rest."""

        started = time.perf_counter()
        window_start, window_end = self.window(self.clock())
        report = ScanReport(window_start=window_start, window_end=window_end)

        candidates = await self.store.list_due_for_reminder(window_start, window_end)
        due = [a for a in candidates if self.is_due(a, window_start, window_end)]
        report.selected = len(due)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(appointment: Appointment) -> str:
            async with semaphore:
                if stop_event is not None and stop_event.is_set():
                    return NOT_STARTED
                try:
                    return await self._process(appointment)
                except Exception:
                    logger.exception("reminder failed appointment_id=%s", appointment.id)
                    return FAILED

        results = await asyncio.gather(*(run_one(a) for a in due))
        for result in results:
            reminder_scan_items_total.labels(service=self.service_name, outcome=result).inc()
        report.sent = results.count(SENT)
        report.skipped = results.count(SKIPPED)
        report.not_started = results.count(NOT_STARTED)
        report.failed = results.count(FAILED)

        reminder_scan_seconds.labels(service=self.service_name).observe(time.perf_counter() - started)
        reminder_last_scan_timestamp.labels(service=self.service_name).set(time.time())
        logger.info(
            "reminder scan finished selected=%s sent=%s skipped=%s failed=%s not_started=%s",
            report.selected,
            report.sent,
            report.skipped,
            report.failed,
            report.not_started,
        )
        return report
