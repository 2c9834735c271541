"""Builds the configured channel adapters keyed by channel name."""

import httpx

from remindly.common.config import Settings
from remindly.common.logging import logger
from remindly.services.provider_adapter.base import ChannelAdapter
from remindly.services.provider_adapter.brevo import BrevoEmailAdapter
from remindly.services.provider_adapter.textbelt import TextbeltSmsAdapter
from remindly.services.provider_adapter.twilio import TwilioSmsAdapter


def build_channels(settings: Settings, client: httpx.AsyncClient | None = None) -> dict[str, ChannelAdapter]:
    """Return every provider adapter; unconfigured ones fail terminally on send."""

    channels: list[ChannelAdapter] = [
        TwilioSmsAdapter(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            messaging_service_sid=settings.twilio_messaging_service_sid,
            from_number=settings.twilio_from_number,
            api_url=settings.twilio_api_url,
            timeout=settings.provider_timeout_seconds,
            client=client,
        ),
        TextbeltSmsAdapter(
            api_key=settings.textbelt_api_key,
            url=settings.textbelt_url,
            timeout=settings.provider_timeout_seconds,
            client=client,
        ),
        BrevoEmailAdapter(
            api_key=settings.brevo_api_key,
            sender_email=settings.brevo_sender_email,
            sender_name=settings.brevo_sender_name,
            api_url=settings.brevo_api_url,
            timeout=settings.provider_timeout_seconds,
            client=client,
        ),
    ]
    by_name = {adapter.name: adapter for adapter in channels}
    logger.info("channels configured names=%s", sorted(by_name))
    return by_name
