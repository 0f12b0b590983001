from __future__ import annotations

import html
import logging

import httpx

from normalize.models import FeedSource, RawIncident
from normalize.normalize import subtype_label


logger = logging.getLogger(__name__)

NOTIFY_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0)

DEFAULT_SLUG = "road_incident"

SOURCE_SLUGS: dict[str, str] = {
    "west": "West_Region",
    "thomson": "Thompson_Road",
}


class NotifyError(Exception):
    """A notification could not be delivered.

    ``kind`` is one of ``network``, ``http_status`` or ``unauthorized``.
    """

    def __init__(self, kind: str, *, status: int | None = None, detail: str = "") -> None:
        self.kind = kind
        self.status = status
        self.detail = detail
        super().__init__(f"{kind}:{status}" if status is not None else f"{kind}:{detail}")


def slug_for_source(source_id: str) -> str:
    return SOURCE_SLUGS.get(source_id, DEFAULT_SLUG)


def detail_url(frontend_url: str, incident: RawIncident, source: FeedSource) -> str:
    return f"{frontend_url.rstrip('/')}/#/detail/{incident.id}?source={source.id}"


def format_message(incident: RawIncident, source: FeedSource, *, frontend_url: str) -> str:
    label = subtype_label(incident.subcategory, incident.category)
    street = incident.street or "Unknown Street"
    city = incident.city or "Unknown City"
    link = html.escape(detail_url(frontend_url, incident, source), quote=True)
    return (
        f"⚠️ <b>{html.escape(label)}</b>\n\n"
        f"Detected on {html.escape(street)}, {html.escape(city)}.\n"
        f"Source: {html.escape(source.name)}\n"
        f'<a href="{link}">View Details</a>'
    )


def build_payload(incident: RawIncident, source: FeedSource, *, frontend_url: str) -> dict:
    return {
        "alertSlug": slug_for_source(source.id),
        "message": format_message(incident, source, frontend_url=frontend_url),
        "parseMode": "HTML",
    }


class Notifier:
    """Posts one message per new incident to the downstream sink. No retries."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        notify_url: str,
        api_key: str,
        frontend_url: str,
    ) -> None:
        self.client = client
        self.notify_url = notify_url
        self.api_key = api_key
        self.frontend_url = frontend_url

    async def notify(self, incident: RawIncident, source: FeedSource) -> NotifyError | None:
        payload = build_payload(incident, source, frontend_url=self.frontend_url)
        headers = {"Content-Type": "application/json", "x-api-key": self.api_key}
        try:
            response = await self.client.post(
                self.notify_url, json=payload, headers=headers, timeout=NOTIFY_TIMEOUT
            )
        except httpx.TimeoutException:
            error = NotifyError("network", detail="timeout")
        except httpx.RequestError as e:
            error = NotifyError("network", detail=f"request_error:{e.__class__.__name__}")
        else:
            if 200 <= response.status_code < 300:
                logger.info(
                    "notify.sent incident_id=%s source_id=%s slug=%s",
                    incident.id,
                    source.id,
                    payload["alertSlug"],
                )
                return None
            if response.status_code in (401, 403):
                error = NotifyError("unauthorized", status=response.status_code)
            else:
                error = NotifyError("http_status", status=response.status_code)

        logger.error(
            "notify.failed incident_id=%s source_id=%s error=%s",
            incident.id,
            source.id,
            error,
        )
        return error
