"""Template rendering tests."""

import pytest

from remindly.common.errors import MissingField
from remindly.services.notification.templates import (
    SHAPE_EMAIL,
    SHAPE_SMS,
    TEMPLATES,
    Template,
    register_template,
    render,
)


PAYLOAD = {
    "customer_name": "Jo",
    "date": "Monday, May 6, 2024",
    "time": "2:30 PM",
    "artist_name": "Sam",
}


def test_sms_variant_has_no_subject():
    message = render("appointment_reminder", SHAPE_SMS, PAYLOAD, {"business_name": "Ink"})
    assert message.subject is None
    assert "Hi Jo" in message.body
    assert "Monday, May 6, 2024" in message.body
    assert "Reminder from Ink" in message.body


def test_email_variant_has_subject_and_escaped_html():
    payload = dict(PAYLOAD, customer_name="Jo <script>")
    message = render("appointment_confirmation", SHAPE_EMAIL, payload, {"business_name": "Ink & Needle"})
    assert message.subject == "Appointment Confirmation - Ink & Needle"
    assert "Jo &lt;script&gt;" in message.body
    assert "<h2>Ink &amp; Needle</h2>" in message.body


def test_money_fields_get_two_decimals():
    message = render(
        "payment_confirmation",
        SHAPE_SMS,
        {"customer_name": "Jo", "amount": 50, "date": "May 6"},
        {"business_name": "Ink"},
    )
    assert "$50.00" in message.body


def test_missing_fields_are_named():
    with pytest.raises(MissingField) as excinfo:
        render("appointment_reminder", SHAPE_SMS, {"customer_name": "Jo", "date": ""}, {"business_name": "Ink"})
    assert excinfo.value.fields == ["artist_name", "date", "time"]


def test_payload_overrides_defaults():
    message = render("appointment_cancellation", SHAPE_SMS, dict(PAYLOAD, business_name="Other"), {"business_name": "Ink"})
    assert "at Other" in message.body


def test_unknown_kind_and_shape():
    with pytest.raises(KeyError):
        render("nope", SHAPE_SMS, PAYLOAD)
    with pytest.raises(ValueError):
        render("appointment_reminder", "PUSH", PAYLOAD, {"business_name": "Ink"})


def test_registered_template_is_renderable():
    register_template("deposit_due", Template("Deposit ${deposit} due", "Deposit due", "<p>${deposit}</p>"))
    try:
        assert render("deposit_due", SHAPE_SMS, {"deposit": "20"}).body == "Deposit $20.00 due"
    finally:
        TEMPLATES.pop("deposit_due")
