"""Delivery orchestrator.

Walks a request through dedup check, per-channel normalization, quota check,
render and bounded-retry send, falling back channel by channel. Requests for
the same dedup key are serialized so the second caller re-checks history
after the first one has recorded its outcome.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable

from remindly.common.errors import InvalidDestination, PersistenceUnavailable
from remindly.common.logging import channel_ctx, dedup_key_ctx, logger
from remindly.common.metrics import (
    delivery_attempt_failures_total,
    duplicate_notifications_skipped_total,
    notifications_failed_total,
    notifications_requested_total,
    notifications_sent_total,
    quota_skips_total,
)
from remindly.common.state_machine import validate_transition
from remindly.common.tracing import tracer
from remindly.services.notification.history import STATUS_FAILED, STATUS_SENT, DeliveryHistory
from remindly.services.notification.models import DeliveryAttempt
from remindly.services.notification.normalizer import normalize_destination
from remindly.services.notification.quota import QuotaTracker
from remindly.services.notification.retry import RetryPolicy, Sleep, send_with_retry
from remindly.services.notification.schemas import DeliveryOutcome, NotificationRequest
from remindly.services.notification.templates import render


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryOrchestrator:
    """Owns the per-request delivery state machine."""

    def __init__(
        self,
        history: DeliveryHistory,
        quota: QuotaTracker,
        channels: dict,
        *,
        channel_order: dict[str, list[str]],
        default_country_code: str = "1",
        retry_policy: RetryPolicy | None = None,
        template_defaults: dict | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Sleep = asyncio.sleep,
        service_name: str = "remindly",
    ) -> None:
        self.history = history
        self.quota = quota
        self.channels = channels
        self.channel_order = channel_order
        self.default_country_code = default_country_code
        self.retry_policy = retry_policy or RetryPolicy()
        self.template_defaults = template_defaults or {}
        self.clock = clock
        self.sleep = sleep
        self.service_name = service_name
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._key_users: dict[str, int] = {}

    @asynccontextmanager
    async def _dedup_lock(self, dedup_key: str):
        """Serialize requests per dedup key; the lock is dropped once unused."""

        lock = self._key_locks.setdefault(dedup_key, asyncio.Lock())
        self._key_users[dedup_key] = self._key_users.get(dedup_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[dedup_key] -= 1
            if self._key_users[dedup_key] == 0:
                del self._key_users[dedup_key]
                del self._key_locks[dedup_key]

    def _advance(self, current: str, new: str) -> str:
        validate_transition(current, new)
        return new

    def channel_preference(self, request: NotificationRequest) -> list[str]:
        if request.channel_preference is not None:
            return request.channel_preference
        return self.channel_order.get(request.kind, [])

    async def deliver(self, request: NotificationRequest) -> DeliveryOutcome:
        """Deliver `request` at most once per dedup key."""

        notifications_requested_total.labels(service=self.service_name, kind=request.kind).inc()
        token = dedup_key_ctx.set(request.dedup_key)
        try:
            with tracer.start_as_current_span("notification.deliver") as span:
                span.set_attribute("notification.kind", request.kind)
                span.set_attribute("notification.dedup_key", request.dedup_key)
                async with self._dedup_lock(request.dedup_key):
                    outcome = await self._deliver_locked(request)
                span.set_attribute("notification.status", outcome.status)
                return outcome
        finally:
            dedup_key_ctx.reset(token)

    async def _deliver_locked(self, request: NotificationRequest) -> DeliveryOutcome:
        state = self._advance("INIT", "DEDUP_CHECK")
        if self.history.has_succeeded(request.dedup_key):
            state = self._advance(state, "ALREADY_SENT")
            logger.info("duplicate notification skipped kind=%s", request.kind)
            duplicate_notifications_skipped_total.labels(service=self.service_name, kind=request.kind).inc()
            return DeliveryOutcome(status="ALREADY_SENT", dedup_key=request.dedup_key, final_state=state)

        preference = self.channel_preference(request)
        last_error: str | None = None
        for index, name in enumerate(preference):
            skip_to = "NEXT_CHANNEL" if index < len(preference) - 1 else "ALL_CHANNELS_EXHAUSTED"
            token = channel_ctx.set(name)
            try:
                adapter = self.channels.get(name)
                if adapter is None:
                    last_error = f"{name}: unknown channel"
                    logger.warning("unknown channel in preference channel=%s", name)
                    state = self._advance(state, skip_to)
                    continue
                if not self.quota.has_policy(name):
                    last_error = f"{name}: no quota policy"
                    logger.error("channel has no quota policy, skipped channel=%s", name)
                    state = self._advance(state, skip_to)
                    continue

                try:
                    destination = normalize_destination(adapter.shape, request, self.default_country_code)
                except InvalidDestination as exc:
                    last_error = f"{name}: {exc}"
                    logger.info("channel skipped, invalid destination reason=%s", exc)
                    state = self._advance(state, skip_to)
                    continue

                state = self._advance(state, "QUOTA_CHECK")
                now = self.clock()
                if not self.quota.reserve(name, now):
                    last_error = f"{name}: quota exceeded"
                    quota_skips_total.labels(service=self.service_name, channel=name).inc()
                    state = self._advance(state, "QUOTA_EXCEEDED")
                    state = self._advance(state, skip_to)
                    continue

                state = self._advance(state, "ATTEMPTING")
                outcome, error = await self._attempt(request, adapter, destination, now)
                if outcome is not None:
                    outcome.final_state = self._advance(state, "SENT")
                    return outcome
                last_error = f"{name}: {error}"
                state = self._advance(state, skip_to)
            finally:
                channel_ctx.reset(token)

        if state != "ALL_CHANNELS_EXHAUSTED":
            state = self._advance(state, "ALL_CHANNELS_EXHAUSTED")
        notifications_failed_total.labels(service=self.service_name, kind=request.kind).inc()
        logger.warning("notification failed on every channel kind=%s last_error=%s", request.kind, last_error)
        return DeliveryOutcome(
            status="FAILED",
            dedup_key=request.dedup_key,
            error=last_error or "no channel available",
            final_state=state,
        )

    def _commit_quota(self, channel: str, now: datetime) -> None:
        try:
            self.quota.commit(channel, now)
        except PersistenceUnavailable:
            logger.exception("quota commit failed after a confirmed send channel=%s", channel)

    async def _attempt(
        self, request: NotificationRequest, adapter, destination: str, now: datetime
    ) -> tuple[DeliveryOutcome | None, str | None]:
        """Render and send on one reserved channel; the quota hold is always settled."""

        hold_settled = False
        try:
            defaults = dict(self.template_defaults)
            if request.recipient_name:
                defaults.setdefault("customer_name", request.recipient_name)
            message = render(request.kind, adapter.shape, request.payload, defaults)
            result = await send_with_retry(
                adapter,
                destination,
                message.subject,
                message.body,
                self.retry_policy,
                sleep=self.sleep,
                service_name=self.service_name,
            )
            attempt = DeliveryAttempt(
                dedup_key=request.dedup_key,
                kind=request.kind,
                channel=adapter.name,
                destination=destination,
                subject=message.subject,
                rendered_body=message.body,
                provider_calls=result.calls,
                created_at=self.clock(),
            )
            if not result.ok:
                reason = result.error.reason
                if result.error.retryable:
                    reason = f"retries exhausted after {result.calls} attempts: {reason}"
                attempt.status = STATUS_FAILED
                attempt.error_reason = reason
                self.history.record(attempt)
                delivery_attempt_failures_total.labels(
                    service=self.service_name,
                    channel=adapter.name,
                    error_type=result.error.error_type,
                ).inc()
                logger.warning("channel attempt failed reason=%s calls=%s", reason, result.calls)
                return None, reason

            attempt.status = STATUS_SENT
            attempt.provider_message_id = result.provider_message_id
            try:
                self.history.record(attempt)
            except PersistenceUnavailable:
                # The provider accepted the message; count it before surfacing the error.
                logger.error(
                    "sent message not recorded, reconcile manually provider_message_id=%s destination=%s",
                    result.provider_message_id,
                    destination,
                )
                hold_settled = True
                self._commit_quota(adapter.name, now)
                raise
            # commit settles the hold itself, even when the counter write fails.
            hold_settled = True
            self._commit_quota(adapter.name, now)
            notifications_sent_total.labels(
                service=self.service_name, kind=request.kind, channel=adapter.name
            ).inc()
            logger.info("notification sent provider_message_id=%s", result.provider_message_id)
            return (
                DeliveryOutcome(
                    status="SENT",
                    dedup_key=request.dedup_key,
                    channel=adapter.name,
                    provider_message_id=result.provider_message_id,
                    final_state="ATTEMPTING",
                ),
                None,
            )
        finally:
            if not hold_settled:
                self.quota.release(adapter.name, now)
