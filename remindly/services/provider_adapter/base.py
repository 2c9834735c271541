"""Uniform channel adapter interface and shared HTTP error classification."""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from remindly.common.errors import TerminalDeliveryError, TransientDeliveryError


class ChannelAdapter(ABC):
    """One outbound provider. `shape` selects destination and template variant."""

    name: str
    shape: str

    @abstractmethod
    async def send(self, destination: str, subject: str | None, body: str) -> str:
        """Deliver one message and return the provider message id."""


class HttpChannelAdapter(ChannelAdapter):
    """Base for providers reached over HTTPS with httpx."""

    def __init__(self, name: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self.name = name
        self.timeout = timeout
        self._client = client

    async def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        """POST with transport failures mapped to transient errors, other client errors to terminal."""

        try:
            if self._client is not None:
                return await self._client.post(url, **kwargs)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientDeliveryError(f"{self.name} provider timeout") from exc
        except httpx.TransportError as exc:
            raise TransientDeliveryError(f"{self.name} transport error: {exc}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TerminalDeliveryError(f"{self.name} http client error: {exc}") from exc


def response_json(resp: httpx.Response) -> dict:
    try:
        payload = resp.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def classify_http_failure(status_code: int, reason: str, code: str | int | None = None):
    """Map a non-2xx provider status to a transient or terminal error."""

    if status_code == 429 or status_code >= 500:
        return TransientDeliveryError(reason, code)
    return TerminalDeliveryError(reason, code)
