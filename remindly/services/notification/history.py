"""Append-only delivery history used for dedup, diagnostics and statistics."""

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from remindly.common.errors import PersistenceUnavailable
from remindly.services.notification.models import DeliveryAttempt


STATUS_SENT = "SENT"
STATUS_FAILED = "FAILED"


class DeliveryHistory:
    """Reads and appends `delivery_attempts` rows; never updates or deletes."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def has_succeeded(self, dedup_key: str) -> bool:
        try:
            with self.session_factory() as db:
                found = db.execute(
                    select(DeliveryAttempt.id)
                    .where(DeliveryAttempt.dedup_key == dedup_key, DeliveryAttempt.status == STATUS_SENT)
                    .limit(1)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"delivery history unavailable: {exc}") from exc
        return found is not None

    def record(self, attempt: DeliveryAttempt) -> DeliveryAttempt:
        """Persist one attempt row and return it with its assigned id."""

        try:
            with self.session_factory() as db:
                db.add(attempt)
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"delivery history unavailable: {exc}") from exc
        return attempt

    def attempts(self, dedup_key: str) -> list[DeliveryAttempt]:
        try:
            with self.session_factory() as db:
                return list(
                    db.execute(
                        select(DeliveryAttempt)
                        .where(DeliveryAttempt.dedup_key == dedup_key)
                        .order_by(DeliveryAttempt.id.asc())
                    ).scalars()
                )
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"delivery history unavailable: {exc}") from exc

    def recent(self, limit: int = 50, channel: str | None = None) -> list[DeliveryAttempt]:
        """Newest attempts first, optionally for one channel."""

        query = select(DeliveryAttempt).order_by(DeliveryAttempt.id.desc()).limit(limit)
        if channel is not None:
            query = query.where(DeliveryAttempt.channel == channel)
        try:
            with self.session_factory() as db:
                return list(db.execute(query).scalars())
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"delivery history unavailable: {exc}") from exc

    def counts_by_status(self, channel: str | None = None) -> dict[str, int]:
        query = select(DeliveryAttempt.status, func.count()).group_by(DeliveryAttempt.status)
        if channel is not None:
            query = query.where(DeliveryAttempt.channel == channel)
        try:
            with self.session_factory() as db:
                rows = db.execute(query).all()
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(f"delivery history unavailable: {exc}") from exc
        counts = {STATUS_SENT: 0, STATUS_FAILED: 0}
        counts.update({status: count for status, count in rows})
        return counts
