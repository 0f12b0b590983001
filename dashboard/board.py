from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum

import httpx

from ingest.adapters import FeedAdapter, FetchError
from normalize.models import Category, FeedSource, Location, RawIncident, SourceKind


logger = logging.getLogger(__name__)


class IncidentStatus(StrEnum):
    NEW = "NEW"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


@dataclass(frozen=True)
class ManagedIncident:
    incident: RawIncident
    status: IncidentStatus = IncidentStatus.NEW

    @property
    def id(self) -> str:
        return self.incident.id

    def to_dict(self) -> dict:
        return {**self.incident.to_dict(), "status": str(self.status)}


def merge_incidents(
    previous: list[ManagedIncident], fresh: list[RawIncident]
) -> list[ManagedIncident]:
    """Take the fresh poll as the list, keeping the status of known ids."""
    known = {m.id: m.status for m in previous}
    return [
        ManagedIncident(incident=incident, status=known.get(incident.id, IncidentStatus.NEW))
        for incident in fresh
    ]


def demo_incidents(source_id: str, *, now: datetime | None = None) -> list[RawIncident]:
    now = now or datetime.now(tz=UTC)
    return [
        RawIncident(
            id="demo-1",
            category=Category.ACCIDENT,
            subcategory="ACCIDENT_MAJOR",
            location=Location(lon=-122.399, lat=37.7749),
            street="I-280 N",
            city="San Francisco",
            country="US",
            published_at=now - timedelta(minutes=15),
            description=None,
            source_id=source_id,
            reliability=8,
            thumbs_up=5,
            report_rating=4,
        ),
        RawIncident(
            id="demo-2",
            category=Category.JAM,
            subcategory="JAM_HEAVY_TRAFFIC",
            location=Location(lon=-121.88, lat=37.33),
            street="101 S",
            city="San Jose",
            country="US",
            published_at=now - timedelta(minutes=45),
            description=None,
            source_id=source_id,
            reliability=6,
            thumbs_up=1,
            report_rating=3,
        ),
        RawIncident(
            id="demo-3",
            category=Category.ROAD_CLOSED,
            subcategory="ROAD_CLOSED_EVENT",
            location=Location(lon=-122.41, lat=37.77),
            street="Market St",
            city="San Francisco",
            country="US",
            published_at=now - timedelta(minutes=120),
            description=None,
            source_id=source_id,
            reliability=10,
            thumbs_up=12,
            report_rating=5,
        ),
    ]


@dataclass(frozen=True)
class BoardSnapshot:
    source_id: str
    incidents: list[ManagedIncident]
    error: str | None = None
    demo: bool = False

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "error": self.error,
            "demo": self.demo,
            "incidents": [m.to_dict() for m in self.incidents],
        }


class IncidentBoard:
    """Dashboard-side incident lists, one per source.

    Status changes live here only and are never fed back to the dedup store.
    """

    def __init__(self, adapters: dict[SourceKind, FeedAdapter]) -> None:
        self._adapters = adapters
        self._lists: dict[str, list[ManagedIncident]] = {}

    def incidents(self, source_id: str) -> list[ManagedIncident]:
        return list(self._lists.get(source_id, []))

    async def refresh(self, client: httpx.AsyncClient, source: FeedSource) -> BoardSnapshot:
        adapter = self._adapters[source.kind]
        result = await adapter.fetch(client, source)
        previous = self._lists.get(source.id, [])

        if result.ok:
            merged = merge_incidents(previous, result.incidents)
            self._lists[source.id] = merged
            return BoardSnapshot(source_id=source.id, incidents=merged)

        error = result.error or FetchError("network")
        logger.warning("board.refresh_failed source_id=%s error=%s", source.id, error.label)
        if previous:
            return BoardSnapshot(source_id=source.id, incidents=list(previous), error=error.label)

        demo = merge_incidents([], demo_incidents(source.id))
        return BoardSnapshot(source_id=source.id, incidents=demo, error=error.label, demo=True)

    def set_status(
        self, source_id: str, incident_id: str, status: IncidentStatus
    ) -> ManagedIncident | None:
        current = self._lists.get(source_id)
        if not current:
            return None
        for index, managed in enumerate(current):
            if managed.id == incident_id:
                updated = replace(managed, status=status)
                current[index] = updated
                return updated
        return None
