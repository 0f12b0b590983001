from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from starlette.responses import StreamingResponse

from normalize.models import iso_z
from realtime.bus import Event, EventBus


router = APIRouter()

HEARTBEAT_SECONDS = 15


def _matches(event: Event, source_id: str | None) -> bool:
    if source_id is None:
        return True
    return event.data.get("source_id") == source_id


def format_sse(event_type: str, data: dict) -> str:
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event_type}\ndata: {payload}\n\n"


@router.get("/sse")
async def sse(request: Request, source: str | None = None) -> StreamingResponse:
    bus: EventBus = request.app.state.bus
    queue = await bus.subscribe()

    async def event_stream():
        try:
            yield format_sse("heartbeat", {})
            while True:
                if await request.is_disconnected():
                    return
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield format_sse("heartbeat", {"ts": iso_z(datetime.now(tz=UTC))})
                    continue

                if _matches(event, source):
                    yield format_sse(event.type, event.data)
        finally:
            await bus.unsubscribe(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
