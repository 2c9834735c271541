"""Destination validation and canonicalization for SMS and email channels."""

import re

from remindly.common.errors import InvalidDestination
from remindly.services.notification.schemas import NotificationRequest
from remindly.services.notification.templates import SHAPE_EMAIL, SHAPE_SMS


_PHONE_PUNCTUATION = re.compile(r"[\s\-().]")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_phone(raw: str | None, default_country_code: str = "1") -> str:
    """Return the E.164 form of `raw` or raise `InvalidDestination`."""

    if not raw or not raw.strip():
        raise InvalidDestination("phone number is required")
    cleaned = _PHONE_PUNCTUATION.sub("", raw.strip())
    country_code = default_country_code.lstrip("+")

    if cleaned.startswith("+"):
        digits = cleaned[1:]
        if digits.isdigit() and 10 <= len(digits) <= 15:
            return f"+{digits}"
        raise InvalidDestination(f"invalid international phone number: {raw}")

    if not cleaned.isdigit():
        raise InvalidDestination(f"invalid phone number: {raw}")
    if len(cleaned) == 10:
        return f"+{country_code}{cleaned}"
    if len(cleaned) == 10 + len(country_code) and cleaned.startswith(country_code):
        return f"+{cleaned}"
    raise InvalidDestination(f"phone number needs a +country code prefix: {raw}")


def normalize_email(raw: str | None) -> str:
    """Return a trimmed email address or raise `InvalidDestination`."""

    if not raw or not raw.strip():
        raise InvalidDestination("email address is required")
    candidate = raw.strip()
    if not _EMAIL_PATTERN.match(candidate):
        raise InvalidDestination(f"invalid email address: {raw}")
    return candidate


def normalize_destination(shape: str, request: NotificationRequest, default_country_code: str = "1") -> str:
    """Pick and normalize the request destination matching a channel shape."""

    if shape == SHAPE_SMS:
        return normalize_phone(request.phone, default_country_code)
    if shape == SHAPE_EMAIL:
        return normalize_email(request.email)
    raise InvalidDestination(f"unsupported channel shape: {shape}")
