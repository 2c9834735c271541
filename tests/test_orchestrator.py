"""Delivery orchestrator tests: dedup, quota, fallback, retry accounting."""

import asyncio

import pytest

from remindly.common.config import QuotaPolicy
from remindly.common.errors import MissingField, PersistenceUnavailable, TerminalDeliveryError, TransientDeliveryError
from remindly.services.notification.history import STATUS_FAILED, STATUS_SENT, DeliveryHistory
from remindly.services.notification.quota import QuotaTracker
from remindly.services.notification.schemas import NotificationRequest
from remindly.services.notification.templates import SHAPE_EMAIL, SHAPE_SMS

from conftest import NOW, FakeAdapter


def reminder(dedup_key="a1:reminder", **overrides) -> NotificationRequest:
    fields = {
        "kind": "appointment_reminder",
        "dedup_key": dedup_key,
        "phone": "(555) 123-4567",
        "email": "jo@example.com",
        "recipient_name": "Jo",
        "payload": {"date": "Monday, May 6, 2024", "time": "2:30 PM", "artist_name": "Sam"},
    }
    fields.update(overrides)
    return NotificationRequest(**fields)


def test_first_channel_success(make_orchestrator, channels, history, quota):
    outcome = asyncio.run(make_orchestrator().deliver(reminder()))

    assert outcome.status == "SENT"
    assert outcome.channel == "sms"
    assert outcome.provider_message_id == "sms-msg-1"
    assert outcome.final_state == "SENT"
    destination, subject, body = channels["sms"].sent[0]
    assert destination == "+15551234567"
    assert subject is None
    assert "Hi Jo" in body and "Ink & Needle" in body
    assert [a.status for a in history.attempts("a1:reminder")] == [STATUS_SENT]
    assert quota.usage("sms", NOW).daily_count == 1


def test_same_dedup_key_sends_once(make_orchestrator, channels, history):
    orchestrator = make_orchestrator()

    first = asyncio.run(orchestrator.deliver(reminder()))
    second = asyncio.run(orchestrator.deliver(reminder()))

    assert first.status == "SENT"
    assert second.status == "ALREADY_SENT"
    assert second.delivered
    assert channels["sms"].calls == 1
    assert len(history.attempts("a1:reminder")) == 1


def test_concurrent_same_dedup_key_sends_once(make_orchestrator, history):
    slow_sms = FakeAdapter("sms", SHAPE_SMS, delay=0.01)
    orchestrator = make_orchestrator(channels={"sms": slow_sms})

    async def _run():
        return await asyncio.gather(*(orchestrator.deliver(reminder()) for _ in range(5)))

    outcomes = asyncio.run(_run())

    assert sorted(o.status for o in outcomes) == ["ALREADY_SENT"] * 4 + ["SENT"]
    assert slow_sms.calls == 1
    assert not orchestrator._key_locks


def test_terminal_sms_falls_back_to_email(make_orchestrator, channels, history):
    channels["sms"].script = [TerminalDeliveryError("invalid phone number format", 21211)] * 3

    async def _run():
        orchestrator = make_orchestrator(channel_order={"appointment_reminder": ["sms", "email"]})
        return [await orchestrator.deliver(reminder(f"a{i}:reminder")) for i in range(3)]

    outcomes = asyncio.run(_run())

    for i, outcome in enumerate(outcomes):
        assert outcome.status == "SENT"
        assert outcome.channel == "email"
        attempts = history.attempts(f"a{i}:reminder")
        assert [(a.channel, a.status) for a in attempts] == [("sms", STATUS_FAILED), ("email", STATUS_SENT)]
        assert attempts[0].error_reason == "invalid phone number format"
        assert attempts[1].subject == "Reminder: Your Appointment Tomorrow - Ink & Needle"


def test_transient_failures_retried_then_recorded_once(make_orchestrator, channels, history, sleep, quota):
    channels["sms"].script = [TransientDeliveryError("twilio 503")] * 3

    outcome = asyncio.run(make_orchestrator().deliver(reminder()))

    assert outcome.status == "SENT"
    assert outcome.channel == "sms_backup"
    assert channels["sms"].calls == 3
    assert sleep.delays == [1.0, 2.0]
    failed = history.attempts("a1:reminder")[0]
    assert failed.status == STATUS_FAILED
    assert failed.provider_calls == 3
    assert failed.error_reason == "retries exhausted after 3 attempts: twilio 503"
    assert quota.usage("sms", NOW).daily_count == 0


def test_daily_cap_of_two_scenario(session_factory, history, make_orchestrator, channels):
    quota = QuotaTracker(session_factory, {"sms": QuotaPolicy(daily_cap=2, monthly_cap=100)})
    orchestrator = make_orchestrator(quota=quota, channel_order={"appointment_reminder": ["sms"]})

    async def _run():
        return [await orchestrator.deliver(reminder(f"a{i}:reminder")) for i in range(3)]

    outcomes = asyncio.run(_run())

    assert [o.status for o in outcomes] == ["SENT", "SENT", "FAILED"]
    assert outcomes[2].error == "sms: quota exceeded"
    assert outcomes[2].final_state == "ALL_CHANNELS_EXHAUSTED"
    assert channels["sms"].calls == 2
    assert history.attempts("a2:reminder") == []
    assert quota.usage("sms", NOW).daily_count == 2


def test_concurrent_sends_never_exceed_cap(session_factory, history, make_orchestrator):
    sms = FakeAdapter("sms", SHAPE_SMS, delay=0.01)
    email = FakeAdapter("email", SHAPE_EMAIL, delay=0.01)
    quota = QuotaTracker(
        session_factory,
        {"sms": QuotaPolicy(daily_cap=3, monthly_cap=100), "email": QuotaPolicy(daily_cap=100, monthly_cap=100)},
    )
    orchestrator = make_orchestrator(
        quota=quota,
        channels={"sms": sms, "email": email},
        channel_order={"appointment_reminder": ["sms", "email"]},
    )

    async def _run():
        return await asyncio.gather(*(orchestrator.deliver(reminder(f"a{i}:reminder")) for i in range(10)))

    outcomes = asyncio.run(_run())

    by_channel = [o.channel for o in outcomes]
    assert by_channel.count("sms") == 3
    assert by_channel.count("email") == 7
    assert quota.usage("sms", NOW).daily_count == 3
    assert history.counts_by_status(channel="sms") == {STATUS_SENT: 3, STATUS_FAILED: 0}


def test_invalid_destination_skips_channel_without_record(make_orchestrator, channels, history):
    outcome = asyncio.run(make_orchestrator().deliver(reminder(phone="123")))

    assert outcome.channel == "email"
    assert channels["sms"].calls == 0
    assert channels["sms_backup"].calls == 0
    assert [a.channel for a in history.attempts("a1:reminder")] == ["email"]


def test_every_channel_failing_reports_last_error(make_orchestrator, channels):
    channels["sms"].script = [TerminalDeliveryError("opted out")]
    channels["sms_backup"].script = [TerminalDeliveryError("textbelt rejected message")]

    outcome = asyncio.run(make_orchestrator().deliver(reminder(email=None)))

    assert outcome.status == "FAILED"
    assert not outcome.delivered
    assert outcome.error.startswith("email: ")
    assert outcome.final_state == "ALL_CHANNELS_EXHAUSTED"


def test_missing_field_propagates_and_releases_hold(make_orchestrator, quota, history):
    request = reminder(payload={"date": "Monday, May 6, 2024"})

    with pytest.raises(MissingField) as excinfo:
        asyncio.run(make_orchestrator().deliver(request))

    assert excinfo.value.fields == ["artist_name", "time"]
    assert quota._holds == {}
    assert history.attempts("a1:reminder") == []


def test_explicit_channel_preference_and_unknown_channel(make_orchestrator, channels):
    outcome = asyncio.run(make_orchestrator().deliver(reminder(channel_preference=["fax", "email"])))

    assert outcome.channel == "email"
    assert channels["sms"].calls == 0


class CrashingAdapter(FakeAdapter):
    async def send(self, destination, subject, body):
        self.calls += 1
        raise RuntimeError("adapter bug")


def test_unexpected_adapter_exception_falls_back(make_orchestrator, channels, history):
    crashing = CrashingAdapter("sms", SHAPE_SMS)
    orchestrator = make_orchestrator(channels={**channels, "sms": crashing})

    outcome = asyncio.run(orchestrator.deliver(reminder()))

    assert outcome.status == "SENT"
    assert outcome.channel == "sms_backup"
    assert crashing.calls == 1
    failed = history.attempts("a1:reminder")[0]
    assert (failed.channel, failed.status) == ("sms", STATUS_FAILED)
    assert failed.error_reason == "unexpected RuntimeError: adapter bug"


def test_channel_without_quota_policy_is_skipped(session_factory, make_orchestrator, channels, history):
    quota = QuotaTracker(session_factory, {"email": QuotaPolicy(daily_cap=10, monthly_cap=10)})
    orchestrator = make_orchestrator(quota=quota, channel_order={"appointment_reminder": ["sms", "email"]})

    outcome = asyncio.run(orchestrator.deliver(reminder()))
    assert outcome.channel == "email"
    assert channels["sms"].calls == 0

    only_sms = asyncio.run(orchestrator.deliver(reminder("a2:reminder", channel_preference=["sms"])))
    assert only_sms.status == "FAILED"
    assert only_sms.error == "sms: no quota policy"


class SentRowLostHistory(DeliveryHistory):
    def record(self, attempt):
        if attempt.status == STATUS_SENT:
            raise PersistenceUnavailable("delivery history unavailable: disk full")
        return super().record(attempt)


def test_unrecorded_send_still_counts_against_quota(session_factory, make_orchestrator, quota, channels):
    orchestrator = make_orchestrator(history=SentRowLostHistory(session_factory))

    with pytest.raises(PersistenceUnavailable):
        asyncio.run(orchestrator.deliver(reminder()))

    assert channels["sms"].calls == 1
    assert quota.usage("sms", NOW).daily_count == 1
    assert quota._holds == {}
