from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum

import httpx

from app.settings import Settings
from health.health import ensure_sources, record_fetch_error, record_fetch_success
from ingest.adapters import FeedAdapter, FetchError, build_adapters
from normalize.models import FeedSource, RawIncident, SourceKind
from notify.notifier import Notifier
from realtime.bus import EventBus, health_event, incident_event
from store.db import Database
from store.dedup import DedupStore, StoreState


logger = logging.getLogger(__name__)


class SourceState(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    DEDUPING = "deduping"
    NOTIFYING = "notifying"


class SourceTracker:
    """Per-source cycle state. A source not in IDLE refuses a new cycle."""

    def __init__(self) -> None:
        self._states: dict[str, SourceState] = {}

    def get(self, source_id: str) -> SourceState:
        return self._states.get(source_id, SourceState.IDLE)

    def begin(self, source_id: str) -> bool:
        if self.get(source_id) is not SourceState.IDLE:
            return False
        self._states[source_id] = SourceState.FETCHING
        return True

    def advance(self, source_id: str, state: SourceState) -> None:
        self._states[source_id] = state

    def finish(self, source_id: str) -> None:
        self._states[source_id] = SourceState.IDLE

    def snapshot(self) -> dict[str, str]:
        return {source_id: str(state) for source_id, state in self._states.items()}


@dataclass(frozen=True)
class SourceCycle:
    source_id: str
    ok: bool
    skipped: bool = False
    incident_ids: frozenset[str] = frozenset()
    notified_ids: tuple[str, ...] = ()
    failed_ids: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class RoundResult:
    cold_start: bool
    cycles: list[SourceCycle]
    pruned: int = 0

    @property
    def notified_ids(self) -> list[str]:
        return [i for c in self.cycles for i in c.notified_ids]

    @property
    def failed_sources(self) -> list[str]:
        return [c.source_id for c in self.cycles if not c.ok and not c.skipped]


@dataclass
class PollContext:
    client: httpx.AsyncClient
    db: Database
    store: DedupStore
    notifier: Notifier
    bus: EventBus
    adapters: dict[SourceKind, FeedAdapter]
    tracker: SourceTracker = field(default_factory=SourceTracker)
    fetch_semaphore: asyncio.Semaphore = field(
        default_factory=lambda: asyncio.Semaphore(4)
    )


def build_poll_context(
    *,
    settings: Settings,
    client: httpx.AsyncClient,
    db: Database,
    store: DedupStore,
    bus: EventBus,
) -> PollContext:
    return PollContext(
        client=client,
        db=db,
        store=store,
        notifier=Notifier(
            client,
            notify_url=settings.notify_url,
            api_key=settings.api_key,
            frontend_url=settings.frontend_url,
        ),
        bus=bus,
        adapters=build_adapters(
            user_agent=settings.user_agent,
            gov_account_key=settings.datamall_api_key,
        ),
        fetch_semaphore=asyncio.Semaphore(settings.fetch_concurrency),
    )


def _select_new(
    store: DedupStore, incidents: list[RawIncident], *, cold_start: bool
) -> list[RawIncident]:
    # No awaits in here: decisions and writes for one source run as one step
    # on the event loop, so concurrent sources never interleave store writes.
    fresh: list[RawIncident] = []
    for incident in incidents:
        if cold_start:
            store.mark_seen(incident)
            continue
        if store.is_new(incident.id) and store.mark_seen(incident):
            fresh.append(incident)
    return fresh


async def _run_one(ctx: PollContext, source: FeedSource, *, cold_start: bool) -> SourceCycle:
    adapter = ctx.adapters.get(source.kind)
    if adapter is None:
        logger.error("poll.no_adapter source_id=%s kind=%s", source.id, source.kind)
        return SourceCycle(source_id=source.id, ok=False, error="no_adapter")

    if not ctx.tracker.begin(source.id):
        logger.warning(
            "poll.skip source_id=%s reason=in_flight state=%s",
            source.id,
            ctx.tracker.get(source.id),
        )
        return SourceCycle(source_id=source.id, ok=False, skipped=True, error="in_flight")

    try:
        async with ctx.fetch_semaphore:
            try:
                fetched = await adapter.fetch_document(ctx.client, source)
            except FetchError as e:
                failures = record_fetch_error(
                    ctx.db,
                    source_id=source.id,
                    status_code=e.status,
                    fetch_ms=None,
                    error=e.label,
                )
                logger.error(
                    "poll.fetch_failed source_id=%s error=%s consecutive_failures=%s",
                    source.id,
                    e.label,
                    failures,
                )
                await ctx.bus.publish(
                    health_event(source.id, ok=False, error=e.label, status=e.status)
                )
                return SourceCycle(source_id=source.id, ok=False, error=e.label)

        ctx.tracker.advance(source.id, SourceState.NORMALIZING)
        incidents = adapter.normalize(fetched.document, source, fetched.fetched_at)
        record_fetch_success(
            ctx.db,
            source_id=source.id,
            status_code=fetched.status_code,
            fetch_ms=fetched.fetch_ms,
            incident_count=len(incidents),
        )
        await ctx.bus.publish(
            health_event(
                source.id, ok=True, status=fetched.status_code, incidents=len(incidents)
            )
        )

        ctx.tracker.advance(source.id, SourceState.DEDUPING)
        fresh = _select_new(ctx.store, incidents, cold_start=cold_start)
        if cold_start:
            logger.info(
                "poll.cold_start source_id=%s cached=%s", source.id, len(incidents)
            )
        elif fresh:
            logger.info("poll.new source_id=%s count=%s", source.id, len(fresh))
        else:
            logger.info("poll.no_new source_id=%s", source.id)

        ctx.tracker.advance(source.id, SourceState.NOTIFYING)
        notified: list[str] = []
        failed: list[str] = []
        for incident in fresh:
            error = await ctx.notifier.notify(incident, source)
            if error is None:
                notified.append(incident.id)
            else:
                failed.append(incident.id)
            await ctx.bus.publish(incident_event(incident, source, notified=error is None))

        return SourceCycle(
            source_id=source.id,
            ok=True,
            incident_ids=frozenset(i.id for i in incidents),
            notified_ids=tuple(notified),
            failed_ids=tuple(failed),
        )
    finally:
        ctx.tracker.finish(source.id)


async def run_round(ctx: PollContext, sources: list[FeedSource]) -> RoundResult:
    """Poll every source once, then reconcile the store against this round.

    Only sources that completed take part in reconciliation, so a failed or
    skipped source keeps its seen records until it next succeeds.
    """
    cold_start = ctx.store.state is StoreState.COLD_START
    results = await asyncio.gather(
        *(_run_one(ctx, source, cold_start=cold_start) for source in sources),
        return_exceptions=True,
    )

    cycles: list[SourceCycle] = []
    for source, outcome in zip(sources, results):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.error("poll.crashed source_id=%s", source.id, exc_info=outcome)
            cycles.append(
                SourceCycle(
                    source_id=source.id, ok=False, error=outcome.__class__.__name__
                )
            )
            continue
        cycles.append(outcome)

    completed = [c for c in cycles if c.ok]
    current_ids: set[str] = set()
    for cycle in completed:
        current_ids |= cycle.incident_ids
    pruned = ctx.store.reconcile(current_ids, source_ids=[c.source_id for c in completed])

    result = RoundResult(cold_start=cold_start, cycles=cycles, pruned=pruned)
    logger.info(
        "poll.round cold_start=%s sources=%s failed=%s notified=%s pruned=%s",
        cold_start,
        len(cycles),
        len(result.failed_sources),
        len(result.notified_ids),
        pruned,
    )
    return result


async def run_scheduler(
    ctx: PollContext, sources: list[FeedSource], *, interval_seconds: float
) -> None:
    """Run rounds forever on a fixed interval.

    Rounds never overlap: a round that overruns the interval is followed
    immediately by the next one, and missed ticks are not queued.
    """
    ensure_sources(ctx.db, sources)
    logger.info(
        "scheduler.start sources=%s interval_seconds=%s",
        ",".join(s.id for s in sources),
        interval_seconds,
    )
    loop = asyncio.get_running_loop()
    while True:
        started = loop.time()
        try:
            await run_round(ctx, sources)
        except Exception:
            logger.exception("scheduler.round_failed")
        elapsed = loop.time() - started
        await asyncio.sleep(max(0.0, interval_seconds - elapsed))
