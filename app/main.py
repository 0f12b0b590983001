from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from app.log import configure_logging
from app.settings import Settings
from dashboard.board import IncidentBoard, IncidentStatus
from health.health import ensure_sources, list_source_health
from ingest.scheduler import PollContext, build_poll_context, run_round, run_scheduler
from ingest.sources import load_feed_sources
from normalize.models import Category, FeedSource
from realtime.bus import EventBus
from realtime.sse import router as sse_router
from store.db import close_database, open_database
from store.dedup import open_dedup_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    configure_logging(settings.log_level)
    db = open_database(settings.db_path)
    bus = EventBus()
    sources = load_feed_sources(settings.feeds_file)
    ensure_sources(db, sources)
    store = open_dedup_store(settings.dedup_policy, db)

    async with httpx.AsyncClient(follow_redirects=True) as client:
        ctx = build_poll_context(
            settings=settings, client=client, db=db, store=store, bus=bus
        )
        app.state.settings = settings
        app.state.db = db
        app.state.bus = bus
        app.state.sources = {s.id: s for s in sources}
        app.state.poll = ctx
        app.state.board = IncidentBoard(ctx.adapters)

        scheduler_task = asyncio.create_task(
            run_scheduler(
                ctx, sources, interval_seconds=settings.poll_interval_seconds
            )
        )
        try:
            yield
        finally:
            scheduler_task.cancel()
            with suppress(asyncio.CancelledError):
                await scheduler_task
            close_database(db)


app = FastAPI(lifespan=lifespan)
app.include_router(sse_router)


def _source_or_404(request: Request, source_id: str) -> FeedSource | JSONResponse:
    source = request.app.state.sources.get(source_id)
    if source is None:
        return JSONResponse({"error": "unknown_source"}, status_code=404)
    return source


@app.get("/api/sources")
def api_sources(request: Request) -> JSONResponse:
    ctx: PollContext = request.app.state.poll
    states = ctx.tracker.snapshot()
    rows = list_source_health(ctx.db)
    for row in rows:
        row["state"] = states.get(row["source_id"], "idle")
    return JSONResponse(rows)


@app.get("/api/dedup")
def api_dedup(request: Request) -> JSONResponse:
    settings: Settings = request.app.state.settings
    ctx: PollContext = request.app.state.poll
    return JSONResponse(
        {
            "policy": str(settings.dedup_policy),
            "state": str(ctx.store.state),
            "seen": len(ctx.store),
        }
    )


@app.get("/api/incidents")
async def api_incidents(
    request: Request,
    source: str = Query(...),
    category: str = Query(default="ALL"),
) -> JSONResponse:
    found = _source_or_404(request, source)
    if isinstance(found, JSONResponse):
        return found
    ctx: PollContext = request.app.state.poll
    board: IncidentBoard = request.app.state.board

    snapshot = await board.refresh(ctx.client, found)
    body = snapshot.to_dict()
    if category != "ALL":
        try:
            wanted = Category(category)
        except ValueError:
            return JSONResponse({"error": "unknown_category"}, status_code=400)
        body["incidents"] = [
            i for i in body["incidents"] if i["category"] == str(wanted)
        ]
    return JSONResponse(body)


@app.post("/api/incidents/{source_id}/{incident_id}/status")
async def api_incident_status(
    request: Request, source_id: str, incident_id: str
) -> JSONResponse:
    board: IncidentBoard = request.app.state.board
    payload = await request.json()
    try:
        status = IncidentStatus(str(payload.get("status") or ""))
    except (AttributeError, ValueError):
        return JSONResponse({"error": "invalid_status"}, status_code=400)

    updated = board.set_status(source_id, incident_id, status)
    if updated is None:
        return JSONResponse({"error": "not_found"}, status_code=404)
    return JSONResponse(updated.to_dict())


@app.get("/api/feed/{source_id}")
async def api_feed(request: Request, source_id: str) -> JSONResponse:
    found = _source_or_404(request, source_id)
    if isinstance(found, JSONResponse):
        return found
    ctx: PollContext = request.app.state.poll

    result = await ctx.adapters[found.kind].fetch(ctx.client, found)
    if result.error is not None:
        return JSONResponse({"error": result.error.label}, status_code=502)
    return JSONResponse({"alerts": [i.to_dict() for i in result.incidents]})


@app.post("/api/poll")
async def api_poll(request: Request) -> JSONResponse:
    ctx: PollContext = request.app.state.poll
    sources = list(request.app.state.sources.values())
    result = await run_round(ctx, sources)
    return JSONResponse(
        {
            "cold_start": result.cold_start,
            "pruned": result.pruned,
            "notified": result.notified_ids,
            "failed_sources": result.failed_sources,
            "skipped_sources": [c.source_id for c in result.cycles if c.skipped],
        }
    )
