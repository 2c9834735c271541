"""Notification engine facade: wires stores, orchestrator, scanner and scheduler."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable

from remindly.common.config import QuotaPolicy, Settings, settings as default_settings
from remindly.common.errors import AllChannelsExhausted
from remindly.common.logging import logger
from remindly.services.notification.appointments import AppointmentStore
from remindly.services.notification.history import DeliveryHistory
from remindly.services.notification.models import DeliveryAttempt
from remindly.services.notification.orchestrator import DeliveryOrchestrator, utc_now
from remindly.services.notification.quota import QuotaTracker
from remindly.services.notification.retry import RetryPolicy, Sleep
from remindly.services.notification.scanner import ReminderScanner
from remindly.services.notification.scheduler import ReminderScheduler
from remindly.services.notification.schemas import DeliveryOutcome, NotificationRequest, ScanReport, UsageSnapshot


class NotificationEngine:
    """Entry point used by application code and the HTTP surface."""

    def __init__(
        self,
        session_factory,
        channels: dict,
        appointment_store: AppointmentStore,
        *,
        settings: Settings = default_settings,
        quota_policies: dict[str, QuotaPolicy] | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.channels = channels
        self.history = DeliveryHistory(session_factory)
        self.quota = QuotaTracker(
            session_factory,
            quota_policies if quota_policies is not None else settings.quota_policies(),
            timezone_name=settings.business_timezone,
        )
        self.orchestrator = DeliveryOrchestrator(
            self.history,
            self.quota,
            channels,
            channel_order=settings.channel_order,
            default_country_code=settings.default_country_code,
            retry_policy=RetryPolicy.from_settings(settings),
            template_defaults={"business_name": settings.business_name},
            clock=clock,
            sleep=sleep,
            service_name=settings.service_name,
        )
        self.scanner = ReminderScanner(
            appointment_store,
            self.orchestrator,
            self.history,
            window_start=timedelta(hours=settings.reminder_window_start_hours),
            window_end=timedelta(hours=settings.reminder_window_end_hours),
            concurrency=settings.scan_concurrency,
            clock=clock,
            timezone_name=settings.business_timezone,
            service_name=settings.service_name,
        )
        self.scheduler = ReminderScheduler(
            self.scanner,
            session_factory,
            interval_seconds=settings.scan_interval_seconds,
            service_name=settings.service_name,
        )

    async def notify_now(self, request: NotificationRequest) -> DeliveryOutcome:
        return await self.orchestrator.deliver(request)

    async def notify_now_or_raise(self, request: NotificationRequest) -> DeliveryOutcome:
        """Like `notify_now`, for flows that must abort when nobody was notified."""

        outcome = await self.orchestrator.deliver(request)
        if outcome.status == "FAILED":
            raise AllChannelsExhausted(request.dedup_key, outcome.error)
        return outcome

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        logger.info("notification engine stopped")

    async def scan_now(self) -> ScanReport | None:
        return await self.scheduler.tick()

    def usage(self, channel: str) -> UsageSnapshot:
        return self.quota.usage(channel, self.clock())

    def usage_all(self) -> list[UsageSnapshot]:
        now = self.clock()
        return [self.quota.usage(channel, now) for channel in sorted(self.quota.policies)]

    def attempts(self, dedup_key: str) -> list[DeliveryAttempt]:
        return self.history.attempts(dedup_key)

    def recent_attempts(self, limit: int = 50, channel: str | None = None) -> list[DeliveryAttempt]:
        return self.history.recent(limit=limit, channel=channel)
