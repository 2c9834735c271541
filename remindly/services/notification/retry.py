"""Bounded retry of provider sends on transient failures."""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from remindly.common.config import Settings
from remindly.common.errors import DeliveryError, TerminalDeliveryError
from remindly.common.logging import logger
from remindly.common.metrics import provider_send_seconds, retries_total


BACKOFF_STRATEGIES = ("none", "fixed", "linear", "exponential")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for one channel step."""

    max_attempts: int = 3
    backoff_strategy: str = "linear"
    backoff_base_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.backoff_strategy not in BACKOFF_STRATEGIES:
            raise ValueError("backoff_strategy must be valid.")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be >= 0.")

    @staticmethod
    def from_settings(settings: Settings) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            backoff_strategy=settings.retry_backoff_strategy,
            backoff_base_seconds=settings.retry_backoff_base_seconds,
        )

    def delay_seconds(self, retry_count: int) -> float:
        """Delay before retry number `retry_count` (1-based)."""

        if retry_count <= 0:
            raise ValueError("retry_count must be >= 1.")
        if self.backoff_strategy == "none":
            return 0.0
        if self.backoff_strategy == "fixed":
            return self.backoff_base_seconds
        if self.backoff_strategy == "linear":
            return self.backoff_base_seconds * retry_count
        return self.backoff_base_seconds * (2 ** (retry_count - 1))


@dataclass
class SendResult:
    provider_message_id: str | None
    error: DeliveryError | None
    calls: int

    @property
    def ok(self) -> bool:
        return self.error is None


async def send_with_retry(
    adapter,
    destination: str,
    subject: str | None,
    body: str,
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    service_name: str = "remindly",
) -> SendResult:
    """Call `adapter.send`, retrying transient errors up to the policy budget.

    Terminal errors return immediately; the last transient error is returned
    once the budget is spent.
    """

    last_error: DeliveryError | None = None
    for attempt in range(1, policy.max_attempts + 1):
        start = time.perf_counter()
        try:
            message_id = await adapter.send(destination, subject, body)
            return SendResult(provider_message_id=message_id, error=None, calls=attempt)
        except DeliveryError as exc:
            last_error = exc
            if not exc.retryable:
                return SendResult(provider_message_id=None, error=exc, calls=attempt)
        except Exception as exc:
            # Adapter bug or unmapped client error: fail this channel only.
            logger.exception("provider send raised unexpectedly channel=%s", adapter.name)
            error = TerminalDeliveryError(f"unexpected {type(exc).__name__}: {exc}")
            return SendResult(provider_message_id=None, error=error, calls=attempt)
        finally:
            provider_send_seconds.labels(service=service_name, channel=adapter.name).observe(
                max(0.0, time.perf_counter() - start)
            )

        if attempt == policy.max_attempts:
            break
        retries_total.labels(service=service_name, dependency=adapter.name).inc()
        backoff_seconds = policy.delay_seconds(attempt)
        logger.warning(
            "provider transient failure channel=%s attempt=%s backoff_s=%s reason=%s",
            adapter.name,
            attempt,
            backoff_seconds,
            last_error.reason,
        )
        await sleep(backoff_seconds)

    return SendResult(provider_message_id=None, error=last_error, calls=policy.max_attempts)
