"""Twilio Programmable Messaging adapter (primary SMS provider)."""

import httpx

from remindly.common.errors import TerminalDeliveryError
from remindly.common.logging import logger
from remindly.services.notification.templates import SHAPE_SMS
from remindly.services.provider_adapter.base import HttpChannelAdapter, classify_http_failure, response_json


# Twilio error codes that will never succeed on retry.
TERMINAL_ERROR_CODES: dict[int, str] = {
    21408: "SMS not enabled for this destination region",
    21211: "invalid phone number format",
    21614: "phone number is not a mobile number",
    21610: "recipient has opted out of messages",
}


class TwilioSmsAdapter(HttpChannelAdapter):
    """Sends SMS through the Twilio REST API using basic auth."""

    shape = SHAPE_SMS

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        messaging_service_sid: str = "",
        from_number: str = "",
        api_url: str = "https://api.twilio.com/2010-04-01",
        name: str = "sms",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(name=name, timeout=timeout, client=client)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.messaging_service_sid = messaging_service_sid
        self.from_number = from_number
        self.api_url = api_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and (self.messaging_service_sid or self.from_number))

    async def send(self, destination: str, subject: str | None, body: str) -> str:
        if not self.is_configured:
            raise TerminalDeliveryError("twilio not configured")

        form = {"To": destination, "Body": body}
        if self.messaging_service_sid:
            form["MessagingServiceSid"] = self.messaging_service_sid
        else:
            form["From"] = self.from_number

        resp = await self._post(
            f"{self.api_url}/Accounts/{self.account_sid}/Messages.json",
            data=form,
            auth=(self.account_sid, self.auth_token),
        )
        data = response_json(resp)
        if resp.is_success:
            logger.info("twilio accepted message sid=%s status=%s", data.get("sid"), data.get("status"))
            return str(data.get("sid", ""))

        code = data.get("code")
        if code in TERMINAL_ERROR_CODES:
            raise TerminalDeliveryError(TERMINAL_ERROR_CODES[code], code)
        reason = data.get("message") or f"twilio rejected message (status={resp.status_code})"
        raise classify_http_failure(resp.status_code, reason, code)
