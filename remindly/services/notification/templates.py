"""Static message templates and the renderer that fills them.

Templates are plain data: a new notification kind is added with
`register_template`, never by branching in callers. Placeholders use
`str.format` named fields; the fields a template needs are read from its own
placeholders, so a payload that lacks one fails fast with `MissingField`.
"""

import html
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from string import Formatter
from typing import Any

from remindly.common.errors import MissingField


SHAPE_SMS = "SMS"
SHAPE_EMAIL = "EMAIL"

MONEY_FIELDS = frozenset({"amount", "price", "deposit", "remaining"})


@dataclass(frozen=True)
class Template:
    """Channel-specific variants of one notification kind."""

    sms_body: str
    email_subject: str
    email_body: str


@dataclass(frozen=True)
class RenderedMessage:
    subject: str | None
    body: str


_EMAIL_FRAME = (
    '<html><body style="font-family: sans-serif; line-height: 1.6; color: #333;">'
    "<h2>{business_name}</h2>{content}</body></html>"
)


def _email(content: str) -> str:
    return _EMAIL_FRAME.replace("{content}", content)


TEMPLATES: dict[str, Template] = {
    "appointment_confirmation": Template(
        sms_body=(
            "Hi {customer_name}! Your appointment at {business_name} is confirmed.\n"
            "Date: {date}\nTime: {time}\nArtist: {artist_name}\n"
            "Please arrive 10 minutes early. Reply STOP to opt out."
        ),
        email_subject="Appointment Confirmation - {business_name}",
        email_body=_email(
            "<p>Dear {customer_name},</p><p>Your appointment has been confirmed!</p>"
            "<p><strong>Date:</strong> {date}<br><strong>Time:</strong> {time}<br>"
            "<strong>Artist:</strong> {artist_name}</p>"
            "<p>Please arrive 5-10 minutes early.</p>"
        ),
    ),
    "appointment_reminder": Template(
        sms_body=(
            "Reminder from {business_name}: Hi {customer_name}, your appointment is tomorrow.\n"
            "Date: {date}\nTime: {time}\nArtist: {artist_name}\n"
            "Need to reschedule? Call us ASAP. Reply STOP to opt out."
        ),
        email_subject="Reminder: Your Appointment Tomorrow - {business_name}",
        email_body=_email(
            "<p>Hello {customer_name},</p>"
            "<p>This is a friendly reminder about your upcoming appointment.</p>"
            "<p><strong>Date:</strong> {date}<br><strong>Time:</strong> {time}<br>"
            "<strong>Artist:</strong> {artist_name}</p><p>See you soon!</p>"
        ),
    ),
    "appointment_cancellation": Template(
        sms_body=(
            "Hi {customer_name}, your appointment at {business_name} on {date} at {time} "
            "has been cancelled. Contact us to reschedule."
        ),
        email_subject="Appointment Cancelled - {business_name}",
        email_body=_email(
            "<p>Hello {customer_name},</p>"
            "<p>Your appointment on <strong>{date}</strong> at <strong>{time}</strong> "
            "has been cancelled.</p><p>Contact us any time to reschedule.</p>"
        ),
    ),
    "payment_confirmation": Template(
        sms_body=(
            "Hi {customer_name}! Payment received - thank you!\n"
            "Amount: ${amount} on {date}\n- {business_name}"
        ),
        email_subject="Payment Confirmation - {business_name}",
        email_body=_email(
            "<p>Dear {customer_name},</p><p>Thank you for your payment!</p>"
            "<p><strong>Amount:</strong> ${amount}<br><strong>Date:</strong> {date}</p>"
        ),
    ),
    "payment_reminder": Template(
        sms_body=(
            "Hi {customer_name}, a friendly reminder from {business_name}: "
            "your remaining balance is ${amount} (artist: {artist_name})."
        ),
        email_subject="Payment Reminder - {business_name}",
        email_body=_email(
            "<p>Hello {customer_name},</p><p>We wanted to remind you about your remaining balance.</p>"
            "<p><strong>Remaining Amount:</strong> ${amount}<br>"
            "<strong>Artist:</strong> {artist_name}</p>"
        ),
    ),
}


def register_template(kind: str, template: Template) -> None:
    TEMPLATES[kind] = template


def template_fields(text: str) -> set[str]:
    """Named placeholders referenced by one template string."""

    return {field for _, field, _, _ in Formatter().parse(text) if field}


def _format_value(name: str, value: Any) -> str:
    if name in MONEY_FIELDS:
        try:
            return f"{Decimal(str(value)):.2f}"
        except InvalidOperation:
            return str(value)
    return str(value)


def render(
    kind: str,
    shape: str,
    payload: dict[str, Any],
    defaults: dict[str, Any] | None = None,
) -> RenderedMessage:
    """Render `kind` for a channel shape, failing fast on missing payload fields."""

    template = TEMPLATES.get(kind)
    if template is None:
        raise KeyError(f"no template registered for kind={kind}")

    if shape == SHAPE_SMS:
        parts = {"body": template.sms_body}
    elif shape == SHAPE_EMAIL:
        parts = {"subject": template.email_subject, "body": template.email_body}
    else:
        raise ValueError(f"unsupported channel shape: {shape}")

    values = {**(defaults or {}), **payload}
    required = set().union(*(template_fields(text) for text in parts.values()))
    missing = sorted(name for name in required if values.get(name) in (None, ""))
    if missing:
        raise MissingField(kind, missing)

    formatted = {name: _format_value(name, values[name]) for name in required}
    if shape == SHAPE_EMAIL:
        escaped = {name: html.escape(value) for name, value in formatted.items()}
        return RenderedMessage(
            subject=parts["subject"].format(**formatted),
            body=parts["body"].format(**escaped),
        )
    return RenderedMessage(subject=None, body=parts["body"].format(**formatted))
