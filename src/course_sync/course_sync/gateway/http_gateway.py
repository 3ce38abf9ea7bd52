from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from ..core.constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from ..core.exceptions import NotFoundError, TransientExternalError, ValidationError
from .client import CalendarGateway
from .model import CalendarEvent, ScheduleParams

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"

# Retrying is the job queue's concern; the gateway only classifies.
TRANSIENT_STATUS_CODES = {408, 429}


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("msg", "message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return " ".join(value.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


class HttpCalendarGateway(CalendarGateway):
    def __init__(
        self,
        *,
        base_url: str,
        token: str = "",
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._token = token

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def create_schedule(self, params: ScheduleParams, *, idempotency_key: str) -> CalendarEvent:
        payload = await self._request_json(
            "POST",
            f"/calendars/{quote(params.calendar_id, safe='')}/events",
            json_body=params.to_request_body(),
            extra_headers={IDEMPOTENCY_HEADER: idempotency_key},
        )
        event = CalendarEvent.from_response(params.calendar_id, payload.get("data", payload))
        if not event.event_id:
            raise TransientExternalError("Calendar API returned an event without id")
        return event

    async def delete_schedule(self, calendar_id: str, event_id: str) -> None:
        await self._request_json(
            "DELETE",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
        )

    async def list_schedules(self, calendar_id: str, start: str, end: str) -> list[CalendarEvent]:
        payload = await self._request_json(
            "GET",
            f"/calendars/{quote(calendar_id, safe='')}/events",
            params={"start_time": start, "end_time": end},
        )
        data = payload.get("data", payload)
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        return [CalendarEvent.from_response(calendar_id, item) for item in items if isinstance(item, dict)]

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        headers: Dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if extra_headers:
            headers.update(extra_headers)

        try:
            response = await self._http_client.request(method, path, params=params, json=json_body, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientExternalError(f"Calendar request timed out: {method} {path}") from exc
        except httpx.TransportError as exc:
            raise TransientExternalError(f"Calendar request failed: {exc}") from exc

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"Calendar object not found: {path}")
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            logger.warning("Calendar API %s %s returned %s", method, path, status)
            raise TransientExternalError(f"Calendar API error {status}: {_error_message(response)}")
        if status >= 400:
            raise ValidationError(f"Calendar API rejected request ({status}): {_error_message(response)}")

        if status == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientExternalError("Calendar API returned invalid JSON for a successful response") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Calendar API returned an unexpected JSON payload shape")
        return payload
