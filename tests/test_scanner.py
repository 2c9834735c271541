"""Reminder scanner tests: window selection, dedup, isolation of failures."""

import asyncio
from datetime import datetime, timedelta, timezone

from remindly.common.errors import TransientDeliveryError
from remindly.services.notification.history import STATUS_SENT
from remindly.services.notification.models import DeliveryAttempt
from remindly.services.notification.scanner import ReminderScanner, format_date, format_time
from remindly.services.notification.schemas import Appointment

from conftest import NOW, FakeAppointmentStore


def appointment(appointment_id: str, hours_ahead: float, **overrides) -> Appointment:
    fields = {
        "id": appointment_id,
        "customer_name": f"Customer {appointment_id}",
        "phone": "555-123-4567",
        "scheduled_at": NOW + timedelta(hours=hours_ahead),
        "artist_name": "Sam",
    }
    fields.update(overrides)
    return Appointment(**fields)


def make_scanner(store, make_orchestrator, history, clock, **kwargs):
    return ReminderScanner(store, make_orchestrator(), history, clock=clock, **kwargs)


def test_date_and_time_formatting():
    value = datetime(2024, 5, 6, 14, 30)
    assert format_date(value) == "Monday, May 6, 2024"
    assert format_time(value) == "2:30 PM"
    assert format_time(datetime(2024, 5, 6, 0, 5)) == "12:05 AM"
    assert format_time(datetime(2024, 5, 6, 12, 0)) == "12:00 PM"


def test_only_appointments_inside_window_are_reminded(make_orchestrator, history, clock, channels):
    store = FakeAppointmentStore(
        [appointment("early", 22), appointment("due", 24), appointment("late", 26)]
    )

    report = asyncio.run(make_scanner(store, make_orchestrator, history, clock).scan())

    assert store.list_calls == [(NOW + timedelta(hours=23), NOW + timedelta(hours=25))]
    assert (report.selected, report.sent, report.failed) == (1, 1, 0)
    assert store.marked == ["due"]
    assert history.has_succeeded("due:reminder")
    assert not history.has_succeeded("early:reminder")
    assert "Monday, May 6, 2024" in channels["sms"].sent[0][2]


def test_cancelled_and_already_flagged_are_skipped(make_orchestrator, history, clock, channels):
    store = FakeAppointmentStore([appointment("gone", 24, status="Cancelled"), appointment("done", 24, status="completed")])
    flagged = appointment("flagged", 24, reminder_sent_at=NOW)

    async def _run():
        scanner = make_scanner(store, make_orchestrator, history, clock)
        store.list_due_for_reminder = _returning([*store.appointments, flagged])
        return await scanner.scan()

    report = asyncio.run(_run())

    assert report.selected == 1
    assert report.skipped == 1
    assert channels["sms"].calls == 0


def _returning(items):
    async def _list(window_start, window_end):
        return items

    return _list


def test_partial_failure_does_not_abort_batch(make_orchestrator, history, clock):
    store = FakeAppointmentStore(
        [
            appointment("a1", 23.5),
            appointment("a2", 24, phone="123", email=None),
            appointment("a3", 24.5),
        ]
    )

    report = asyncio.run(make_scanner(store, make_orchestrator, history, clock).scan())

    assert (report.selected, report.sent, report.skipped, report.failed) == (3, 2, 0, 1)
    assert sorted(store.marked) == ["a1", "a3"]
    assert not history.has_succeeded("a2:reminder")


def test_item_exception_is_isolated(make_orchestrator, history, clock):
    store = FakeAppointmentStore([appointment("a1", 24), appointment("a2", 24)], fail_mark_for={"a1"})

    report = asyncio.run(make_scanner(store, make_orchestrator, history, clock).scan())

    assert report.sent == 1
    assert report.failed == 1
    assert store.marked == ["a2"]
    # Delivered but unflagged; the next scan re-marks without sending again.
    assert history.has_succeeded("a1:reminder")


def test_history_success_remarks_without_sending(make_orchestrator, history, clock, channels):
    history.record(
        DeliveryAttempt(
            dedup_key="a1:reminder",
            kind="appointment_reminder",
            channel="sms",
            destination="+15551234567",
            rendered_body="hi",
            status=STATUS_SENT,
        )
    )
    store = FakeAppointmentStore([appointment("a1", 24)])

    report = asyncio.run(make_scanner(store, make_orchestrator, history, clock).scan())

    assert report.skipped == 1
    assert store.marked == ["a1"]
    assert channels["sms"].calls == 0


def test_rescan_is_idempotent(make_orchestrator, history, clock, channels):
    store = FakeAppointmentStore([appointment("a1", 24), appointment("a2", 24.2)])
    scanner = make_scanner(store, make_orchestrator, history, clock)

    async def _run():
        return await scanner.scan(), await scanner.scan()

    first, second = asyncio.run(_run())

    assert first.sent == 2
    assert second.selected == 0
    assert channels["sms"].calls == 2


def test_failed_reminder_retried_on_next_tick(make_orchestrator, history, clock, channels):
    channels["sms"].script = [TransientDeliveryError("down")] * 3
    channels["sms_backup"].script = [TransientDeliveryError("down")] * 3
    store = FakeAppointmentStore([appointment("a1", 24)])
    scanner = make_scanner(store, make_orchestrator, history, clock)

    async def _run():
        return await scanner.scan(), await scanner.scan()

    first, second = asyncio.run(_run())

    assert first.failed == 1
    assert second.sent == 1
    assert store.marked == ["a1"]


def test_stop_requested_leaves_items_not_started(make_orchestrator, history, clock, channels):
    store = FakeAppointmentStore([appointment(f"a{i}", 24) for i in range(3)])
    stop = asyncio.Event()
    stop.set()

    report = asyncio.run(make_scanner(store, make_orchestrator, history, clock, concurrency=1).scan(stop))

    assert report.selected == 3
    assert report.skipped == 0
    assert report.not_started == 3
    assert channels["sms"].calls == 0


def test_naive_and_local_times_are_compared_in_utc(make_orchestrator, history, clock, channels):
    naive_utc = (NOW + timedelta(hours=24)).replace(tzinfo=None)
    offset = (NOW + timedelta(hours=24)).astimezone(timezone(timedelta(hours=-4)))
    store = FakeAppointmentStore(
        [appointment("naive", 0, scheduled_at=naive_utc), appointment("offset", 0, scheduled_at=offset)]
    )

    report = asyncio.run(
        make_scanner(store, make_orchestrator, history, clock, timezone_name="America/New_York").scan()
    )

    assert report.sent == 2
    assert all("10:30 AM" in body for _, _, body in channels["sms"].sent)
