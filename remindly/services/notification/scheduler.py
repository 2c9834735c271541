"""Fixed-interval background loop that drives the reminder scanner."""

import asyncio
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from remindly.common.errors import PersistenceUnavailable
from remindly.common.logging import logger
from remindly.services.notification.models import SchedulerState
from remindly.services.notification.scanner import ReminderScanner
from remindly.services.notification.schemas import ScanReport


LAST_CHECKED_AT = "last_checked_at"
LAST_SCAN_REPORT = "last_scan_report"


class ReminderScheduler:
    """Scans once on start, then every `interval_seconds` until stopped.

    `last_checked_at` is persisted for observability only; duplicate
    protection comes from delivery history.
    """

    def __init__(
        self,
        scanner: ReminderScanner,
        session_factory,
        *,
        interval_seconds: float = 3600.0,
        service_name: str = "remindly",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("scan interval must be positive")
        self.scanner = scanner
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.service_name = service_name
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="reminder-scheduler")
        logger.info("reminder scheduler started interval_seconds=%s", self.interval_seconds)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.tick(self._stop_event)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def tick(self, stop_event: asyncio.Event | None = None) -> ScanReport | None:
        """Run one scan; failures are logged and the loop carries on.

        Only the background loop passes its stop event; manual scans always run
        to completion.
        """

        async with self._tick_lock:
            try:
                report = await self.scanner.scan(stop_event)
            except Exception:
                logger.exception("reminder scan crashed")
                return None
            try:
                self._save_state(report)
            except PersistenceUnavailable:
                logger.exception("scheduler state not persisted")
            return report

    async def stop(self) -> None:
        """Cancel the timer wait and let an in-flight scan finish."""

        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("reminder scheduler stopped")

    def _save_state(self, report: ScanReport) -> None:
        values = {
            LAST_CHECKED_AT: self.scanner.clock().isoformat(),
            LAST_SCAN_REPORT: report.model_dump_json(),
        }
        try:
            with self.session_factory() as db:
                for key, value in values.items():
                    row = db.get(SchedulerState, key)
                    if row is None:
                        db.add(SchedulerState(key=key, value=value))
                    else:
                        row.value = value
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"scheduler state unavailable: {exc}") from exc

    def _load(self, key: str) -> str | None:
        try:
            with self.session_factory() as db:
                row = db.get(SchedulerState, key)
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"scheduler state unavailable: {exc}") from exc
        return row.value if row is not None else None

    def last_checked_at(self) -> datetime | None:
        value = self._load(LAST_CHECKED_AT)
        return datetime.fromisoformat(value) if value else None

    def last_report(self) -> ScanReport | None:
        value = self._load(LAST_SCAN_REPORT)
        return ScanReport.model_validate_json(value) if value else None
