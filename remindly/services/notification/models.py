"""Notification persistence models (delivery history, quota counters, scheduler state)."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from remindly.common.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryAttempt(Base):
    """Append-only record of one channel step for one notification request."""

    __tablename__ = "delivery_attempts"
    __table_args__ = (
        # At most one SENT row may exist per business event.
        Index(
            "uq_delivery_attempts_sent_dedup_key",
            "dedup_key",
            unique=True,
            postgresql_where=text("status = 'SENT'"),
            sqlite_where=text("status = 'SENT'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    dedup_key: Mapped[str] = mapped_column(String, index=True)
    kind: Mapped[str] = mapped_column(String)
    channel: Mapped[str] = mapped_column(String, index=True)
    destination: Mapped[str] = mapped_column(String)
    subject: Mapped[str | None] = mapped_column(String, nullable=True)
    rendered_body: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String, index=True)
    provider_message_id: Mapped[str | None] = mapped_column(String, nullable=True)
    error_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_calls: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class QuotaCounter(Base):
    """Successful sends for one channel within one daily or monthly period."""

    __tablename__ = "quota_counters"
    __table_args__ = (
        UniqueConstraint("channel", "period_kind", "period_key", name="uq_quota_counter_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel: Mapped[str] = mapped_column(String)
    period_kind: Mapped[str] = mapped_column(String)
    period_key: Mapped[str] = mapped_column(String)
    count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class SchedulerState(Base):
    """Advisory key/value state written by the reminder scheduler."""

    __tablename__ = "scheduler_state"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
