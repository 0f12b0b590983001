import asyncio
import json
import re

import httpx

from health.health import ensure_sources, list_source_health
from ingest.adapters import build_adapters
from ingest.scheduler import PollContext, SourceState, run_round
from notify.notifier import Notifier
from realtime.bus import INCIDENT_NEW, EventBus
from store.dedup import DurableDedupStore, StoreState, TransientDedupStore


SINK_URL = "https://sink.test/api/notify"
_DETAIL_RE = re.compile(r"#/detail/([^?]+)\?")


def _alert(uuid: str) -> dict:
    return {
        "uuid": uuid,
        "type": "ACCIDENT",
        "subtype": "ACCIDENT_MINOR",
        "street": "Main St",
        "city": "Townsville",
        "location": {"x": 103.8, "y": 1.35},
        "pubMillis": 1700000000000,
    }


class FakeUpstream:
    def __init__(self) -> None:
        self.feeds: dict[str, object] = {}
        self.requested: list[str] = []
        self.notified: list[str] = []
        self.sink_status = 200

    def serve(self, source, ids) -> None:
        self.feeds[source.url] = {"alerts": [_alert(i) for i in ids]}

    def fail(self, source, status: int = 500) -> None:
        self.feeds[source.url] = status

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == SINK_URL:
            message = json.loads(request.content)["message"]
            self.notified.append(_DETAIL_RE.search(message).group(1))
            return httpx.Response(self.sink_status)
        self.requested.append(url)
        feed = self.feeds.get(url, {"alerts": []})
        if isinstance(feed, int):
            return httpx.Response(feed)
        return httpx.Response(200, json=feed)


def _context(client, db, store, bus=None) -> PollContext:
    return PollContext(
        client=client,
        db=db,
        store=store,
        notifier=Notifier(
            client, notify_url=SINK_URL, api_key="k", frontend_url="https://dash.test"
        ),
        bus=bus or EventBus(),
        adapters=build_adapters(user_agent="test", gov_account_key=None),
    )


def _scenario(upstream: FakeUpstream, db, store, sources, steps):
    """Run one round per step; each step prepares the upstream first."""

    async def go():
        results = []
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as client:
            ctx = _context(client, db, store)
            for step in steps:
                step()
                results.append(await run_round(ctx, sources))
        return results

    return asyncio.run(go())


def test_cold_start_snapshot_then_only_new_ids_notify(db, west) -> None:
    upstream = FakeUpstream()
    store = TransientDedupStore()
    results = _scenario(
        upstream,
        db,
        store,
        [west],
        [
            lambda: upstream.serve(west, ["a", "b", "c"]),
            lambda: upstream.serve(west, ["a", "b", "c", "d"]),
        ],
    )
    assert results[0].cold_start is True
    assert results[1].cold_start is False
    assert upstream.notified == ["d"]
    assert store.state is StoreState.WARM


def test_resolved_incident_reappearing_notifies_again(db, west) -> None:
    upstream = FakeUpstream()
    results = _scenario(
        upstream,
        db,
        TransientDedupStore(),
        [west],
        [
            lambda: upstream.serve(west, ["a"]),
            lambda: upstream.serve(west, []),
            lambda: upstream.serve(west, ["a"]),
        ],
    )
    assert results[1].pruned == 1
    assert upstream.notified == ["a"]


def test_durable_store_notifies_each_id_at_most_once(db, west) -> None:
    upstream = FakeUpstream()
    _scenario(
        upstream,
        db,
        DurableDedupStore(db),
        [west],
        [
            lambda: upstream.serve(west, ["a"]),
            lambda: upstream.serve(west, ["a"]),
            lambda: upstream.serve(west, []),
            lambda: upstream.serve(west, ["a", "b"]),
        ],
    )
    assert upstream.notified == ["a", "b"]

    # A fresh store over the same ledger acts like a restarted process.
    _scenario(
        upstream, db, DurableDedupStore(db), [west], [lambda: upstream.serve(west, ["a", "b"])]
    )
    assert upstream.notified == ["a", "b"]


def test_duplicate_ids_in_one_poll_notify_once(db, west) -> None:
    upstream = FakeUpstream()
    _scenario(
        upstream, db, DurableDedupStore(db), [west], [lambda: upstream.serve(west, ["a", "a"])]
    )
    assert upstream.notified == ["a"]


def test_failing_source_does_not_block_other_sources(db, west, thomson) -> None:
    ensure_sources(db, [west, thomson])
    upstream = FakeUpstream()
    results = _scenario(
        upstream,
        db,
        DurableDedupStore(db),
        [west, thomson],
        [
            lambda: (upstream.fail(west, 500), upstream.serve(thomson, ["t1", "t2"])),
        ],
    )
    assert upstream.notified == ["t1", "t2"]
    assert results[0].failed_sources == ["west"]

    health = {row["source_id"]: row for row in list_source_health(db)}
    assert health["west"]["consecutive_failures"] == 1
    assert health["west"]["last_error"] == "http_500"
    assert health["thomson"]["last_incident_count"] == 2


def test_failed_source_keeps_its_seen_records(db, west, thomson) -> None:
    upstream = FakeUpstream()
    _scenario(
        upstream,
        db,
        TransientDedupStore(),
        [west, thomson],
        [
            lambda: (upstream.serve(west, ["a"]), upstream.serve(thomson, ["t"])),
            lambda: upstream.fail(west, 502),
            lambda: upstream.serve(west, ["a"]),
        ],
    )
    assert upstream.notified == []


def test_failed_notification_is_dropped_not_retried(db, west) -> None:
    upstream = FakeUpstream()
    upstream.sink_status = 500
    results = _scenario(
        upstream,
        db,
        DurableDedupStore(db),
        [west],
        [
            lambda: upstream.serve(west, ["a"]),
            lambda: upstream.serve(west, ["a"]),
        ],
    )
    assert upstream.notified == ["a"]
    assert results[0].cycles[0].failed_ids == ("a",)
    assert results[1].cycles[0].failed_ids == ()


def test_new_incidents_notify_in_feed_order(db, west) -> None:
    upstream = FakeUpstream()
    _scenario(
        upstream,
        db,
        TransientDedupStore(),
        [west],
        [
            lambda: upstream.serve(west, ["m"]),
            lambda: upstream.serve(west, ["z", "m", "b", "a"]),
        ],
    )
    assert upstream.notified == ["z", "b", "a"]


def test_in_flight_source_is_skipped(db, west, thomson) -> None:
    upstream = FakeUpstream()
    upstream.serve(west, ["a"])
    upstream.serve(thomson, ["t"])

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as client:
            ctx = _context(client, db, DurableDedupStore(db))
            ctx.tracker.advance(west.id, SourceState.FETCHING)
            result = await run_round(ctx, [west, thomson])
            return ctx, result

    ctx, result = asyncio.run(go())
    assert [c.skipped for c in result.cycles] == [True, False]
    assert upstream.requested == [thomson.url]
    assert upstream.notified == ["t"]
    assert ctx.tracker.get(west.id) is SourceState.FETCHING
    assert ctx.tracker.get(thomson.id) is SourceState.IDLE


def test_new_incident_event_is_published(db, west) -> None:
    upstream = FakeUpstream()
    upstream.serve(west, ["a"])

    async def go():
        bus = EventBus()
        queue = await bus.subscribe()
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as client:
            await run_round(_context(client, db, DurableDedupStore(db), bus), [west])
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    events = asyncio.run(go())
    new_events = [e for e in events if e.type == INCIDENT_NEW]
    assert len(new_events) == 1
    assert new_events[0].data["incident"]["id"] == "a"
    assert new_events[0].data["notified"] is True
