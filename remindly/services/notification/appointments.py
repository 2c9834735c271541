"""Appointment store collaborator: the protocol the scanner consumes and its HTTP client."""

from datetime import datetime
from typing import Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from remindly.common.config import Settings
from remindly.common.errors import AppointmentStoreUnavailable
from remindly.services.notification.schemas import Appointment


_appointment_list = TypeAdapter(list[Appointment])


class AppointmentStore(Protocol):
    async def list_due_for_reminder(self, window_start: datetime, window_end: datetime) -> list[Appointment]:
        ...

    async def mark_reminder_sent(self, appointment_id: str) -> None:
        ...


class HttpAppointmentStore:
    """Reads due appointments from, and flags reminders on, the appointment service."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {"x-api-key": api_key} if api_key else {}
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpAppointmentStore":
        return cls(
            settings.appointments_api_url,
            api_key=settings.appointments_api_key,
            timeout=settings.provider_timeout_seconds,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                resp = await self._client.request(method, url, headers=self._headers, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise AppointmentStoreUnavailable(f"appointment service unreachable: {exc}") from exc
        if resp.status_code >= 400:
            raise AppointmentStoreUnavailable(
                f"appointment service error (status={resp.status_code}) for {method} {path}"
            )
        return resp

    async def list_due_for_reminder(self, window_start: datetime, window_end: datetime) -> list[Appointment]:
        resp = await self._request(
            "GET",
            "/appointments/due-for-reminder",
            params={"window_start": window_start.isoformat(), "window_end": window_end.isoformat()},
        )
        try:
            return _appointment_list.validate_python(resp.json())
        except (ValueError, ValidationError) as exc:
            raise AppointmentStoreUnavailable(f"appointment list response malformed: {exc}") from exc

    async def mark_reminder_sent(self, appointment_id: str) -> None:
        """Set the reminder flag; repeating the call is harmless."""

        await self._request("POST", f"/appointments/{appointment_id}/reminder-sent")
