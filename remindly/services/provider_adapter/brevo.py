"""Brevo transactional email adapter."""

import httpx

from remindly.common.errors import TerminalDeliveryError
from remindly.services.notification.templates import SHAPE_EMAIL
from remindly.services.provider_adapter.base import HttpChannelAdapter, classify_http_failure, response_json


class BrevoEmailAdapter(HttpChannelAdapter):
    """Sends HTML email through the Brevo SMTP API."""

    shape = SHAPE_EMAIL

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str = "Appointments",
        api_url: str = "https://api.brevo.com/v3/smtp/email",
        name: str = "email",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(name=name, timeout=timeout, client=client)
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.api_url = api_url

    async def send(self, destination: str, subject: str | None, body: str) -> str:
        if not self.api_key or not self.sender_email:
            raise TerminalDeliveryError("brevo not configured")

        resp = await self._post(
            self.api_url,
            headers={"api-key": self.api_key, "accept": "application/json"},
            json={
                "sender": {"name": self.sender_name, "email": self.sender_email},
                "to": [{"email": destination}],
                "subject": subject or "",
                "htmlContent": body,
            },
        )
        data = response_json(resp)
        if resp.is_success:
            return str(data.get("messageId", ""))
        reason = data.get("message") or f"brevo rejected message (status={resp.status_code})"
        raise classify_http_failure(resp.status_code, reason, data.get("code"))
