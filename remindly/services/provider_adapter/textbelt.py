"""Textbelt adapter (backup SMS provider)."""

import httpx

from remindly.common.errors import TerminalDeliveryError
from remindly.services.notification.templates import SHAPE_SMS
from remindly.services.provider_adapter.base import HttpChannelAdapter, classify_http_failure, response_json


class TextbeltSmsAdapter(HttpChannelAdapter):
    """Sends SMS through Textbelt's JSON endpoint."""

    shape = SHAPE_SMS

    def __init__(
        self,
        api_key: str,
        url: str = "https://textbelt.com/text",
        name: str = "sms_backup",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(name=name, timeout=timeout, client=client)
        self.api_key = api_key
        self.url = url

    async def send(self, destination: str, subject: str | None, body: str) -> str:
        if not self.api_key:
            raise TerminalDeliveryError("textbelt not configured")

        resp = await self._post(self.url, json={"phone": destination, "message": body, "key": self.api_key})
        data = response_json(resp)
        if not resp.is_success:
            raise classify_http_failure(
                resp.status_code,
                data.get("error") or f"textbelt rejected message (status={resp.status_code})",
            )
        # Textbelt reports rejections (bad number, out of quota) with HTTP 200.
        if not data.get("success"):
            raise TerminalDeliveryError(data.get("error") or "textbelt rejected message")
        return str(data.get("textId", ""))
