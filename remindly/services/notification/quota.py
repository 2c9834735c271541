"""Per-channel daily/monthly send caps backed by persisted counters.

`reserve` is a check that never touches persisted counters; it places an
in-process hold so two concurrent senders cannot both see "under cap" and
jointly overshoot. `commit` is the only mutator of persisted counters and is
called after a confirmed send; `release` drops the hold after a failed one.
"""

import threading
from collections import defaultdict
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from remindly.common.config import QuotaPolicy
from remindly.common.errors import PersistenceUnavailable
from remindly.common.logging import logger
from remindly.services.notification.models import QuotaCounter
from remindly.services.notification.schemas import UsageSnapshot


DAILY = "DAILY"
MONTHLY = "MONTHLY"


class QuotaTracker:
    """Enforces send caps per channel for the current day and month."""

    def __init__(self, session_factory, policies: dict[str, QuotaPolicy], timezone_name: str = "UTC") -> None:
        self.session_factory = session_factory
        self.policies = dict(policies)
        self.tz = ZoneInfo(timezone_name)
        self._registry_lock = threading.Lock()
        self._channel_locks: dict[str, threading.Lock] = {}
        self._holds: dict[tuple[str, str, str], int] = defaultdict(int)

    def _lock_for(self, channel: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._channel_locks.get(channel)
            if lock is None:
                lock = self._channel_locks[channel] = threading.Lock()
            return lock

    def has_policy(self, channel: str) -> bool:
        return channel in self.policies

    def _policy(self, channel: str) -> QuotaPolicy:
        policy = self.policies.get(channel)
        if policy is None:
            raise KeyError(f"no quota policy configured for channel={channel}")
        return policy

    def period_keys(self, now: datetime) -> tuple[str, str]:
        """Return `(daily_key, monthly_key)` for `now` in the business timezone."""

        local = now.astimezone(self.tz)
        return local.strftime("%Y-%m-%d"), local.strftime("%Y-%m")

    def _load_counts(self, channel: str, daily_key: str, monthly_key: str) -> tuple[int, int]:
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    select(QuotaCounter.period_kind, QuotaCounter.count).where(
                        QuotaCounter.channel == channel,
                        (
                            ((QuotaCounter.period_kind == DAILY) & (QuotaCounter.period_key == daily_key))
                            | ((QuotaCounter.period_kind == MONTHLY) & (QuotaCounter.period_key == monthly_key))
                        ),
                    )
                ).all()
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"quota store unavailable: {exc}") from exc
        counts = {row.period_kind: row.count for row in rows}
        return counts.get(DAILY, 0), counts.get(MONTHLY, 0)

    def reserve(self, channel: str, now: datetime) -> bool:
        """Return False when either period is at its cap; otherwise hold one slot."""

        policy = self._policy(channel)
        daily_key, monthly_key = self.period_keys(now)
        daily_hold = (channel, DAILY, daily_key)
        monthly_hold = (channel, MONTHLY, monthly_key)
        with self._lock_for(channel):
            daily_count, monthly_count = self._load_counts(channel, daily_key, monthly_key)
            if daily_count + self._holds.get(daily_hold, 0) >= policy.daily_cap:
                logger.warning(
                    "daily cap reached channel=%s period=%s count=%s cap=%s",
                    channel,
                    daily_key,
                    daily_count,
                    policy.daily_cap,
                )
                return False
            if monthly_count + self._holds.get(monthly_hold, 0) >= policy.monthly_cap:
                logger.warning(
                    "monthly cap reached channel=%s period=%s count=%s cap=%s",
                    channel,
                    monthly_key,
                    monthly_count,
                    policy.monthly_cap,
                )
                return False
            self._holds[daily_hold] += 1
            self._holds[monthly_hold] += 1
            return True

    def _drop_holds(self, channel: str, daily_key: str, monthly_key: str) -> None:
        for hold in ((channel, DAILY, daily_key), (channel, MONTHLY, monthly_key)):
            remaining = self._holds.get(hold, 0) - 1
            if remaining > 0:
                self._holds[hold] = remaining
            else:
                self._holds.pop(hold, None)

    def _increment(self, db, channel: str, period_kind: str, period_key: str) -> None:
        result = db.execute(
            update(QuotaCounter)
            .where(
                QuotaCounter.channel == channel,
                QuotaCounter.period_kind == period_kind,
                QuotaCounter.period_key == period_key,
            )
            .values(count=QuotaCounter.count + 1)
        )
        if result.rowcount == 0:
            db.add(QuotaCounter(channel=channel, period_kind=period_kind, period_key=period_key, count=1))

    def commit(self, channel: str, now: datetime) -> None:
        """Count one confirmed send against both periods and drop its hold.

        `now` must be the same instant that was passed to `reserve`.
        """

        daily_key, monthly_key = self.period_keys(now)
        with self._lock_for(channel):
            try:
                with self.session_factory() as db:
                    self._increment(db, channel, DAILY, daily_key)
                    self._increment(db, channel, MONTHLY, monthly_key)
                    db.commit()
            except SQLAlchemyError as exc:
                raise PersistenceUnavailable(f"quota store unavailable: {exc}") from exc
            finally:
                self._drop_holds(channel, daily_key, monthly_key)

    def release(self, channel: str, now: datetime) -> None:
        """Drop the hold placed by `reserve` without consuming quota."""

        daily_key, monthly_key = self.period_keys(now)
        with self._lock_for(channel):
            self._drop_holds(channel, daily_key, monthly_key)

    def usage(self, channel: str, now: datetime) -> UsageSnapshot:
        """Current counters, caps and estimated monthly cost for one channel."""

        policy = self._policy(channel)
        daily_key, monthly_key = self.period_keys(now)
        daily_count, monthly_count = self._load_counts(channel, daily_key, monthly_key)
        return UsageSnapshot(
            channel=channel,
            daily_period=daily_key,
            daily_count=daily_count,
            daily_cap=policy.daily_cap,
            monthly_period=monthly_key,
            monthly_count=monthly_count,
            monthly_cap=policy.monthly_cap,
            estimated_cost=round(monthly_count * policy.cost_per_message, 5),
        )
