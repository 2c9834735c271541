"""Startup-time helpers for safe config logging."""

import os

from remindly.common.config import Settings
from remindly.common.logging import logger


SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "SID")


def _safe_env(name: str) -> str:
    """Return env value with simple redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>"
    return value


def effective_limits(settings: Settings) -> dict:
    """Caps, costs, reminder window and fallback order the engine will enforce."""

    return {
        "quota": {
            channel: {
                "daily_cap": policy.daily_cap,
                "monthly_cap": policy.monthly_cap,
                "cost_per_message": policy.cost_per_message,
            }
            for channel, policy in settings.quota_policies().items()
        },
        "channel_order": settings.channel_order,
        "reminder_window_hours": [settings.reminder_window_start_hours, settings.reminder_window_end_hours],
        "scan_interval_seconds": settings.scan_interval_seconds,
        "timezone": settings.business_timezone,
    }


def log_startup_config(settings: Settings, keys: list[str]) -> dict:
    """Log redacted env keys plus the effective limits; returns what was logged."""

    config = {"service": settings.service_name, "limits": effective_limits(settings)}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)
    return config
