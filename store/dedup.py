from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

from normalize.models import RawIncident, SeenRecord, iso_z
from store.db import Database


logger = logging.getLogger(__name__)


class StoreState(StrEnum):
    COLD_START = "cold_start"
    WARM = "warm"


class DedupPolicy(StrEnum):
    TRANSIENT = "transient"
    DURABLE = "durable"


class DedupStore(Protocol):
    @property
    def state(self) -> StoreState: ...

    def __len__(self) -> int: ...

    def is_new(self, incident_id: str) -> bool: ...

    def mark_seen(self, incident: RawIncident) -> bool: ...

    def reconcile(
        self, current_ids: set[str], source_ids: Iterable[str] | None = None
    ) -> int: ...


class TransientDedupStore:
    """In-process seen set.

    Starts in ``COLD_START``: the scheduler marks everything from the first
    round seen without notifying. The first ``reconcile`` moves it to ``WARM``.
    Records absent from a later round are dropped, so a recurrence is new again.
    """

    def __init__(self) -> None:
        self._records: dict[str, SeenRecord] = {}
        self._state = StoreState.COLD_START

    @property
    def state(self) -> StoreState:
        return self._state

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, incident_id: object) -> bool:
        return incident_id in self._records

    def get(self, incident_id: str) -> SeenRecord | None:
        return self._records.get(incident_id)

    def is_new(self, incident_id: str) -> bool:
        return incident_id not in self._records

    def mark_seen(self, incident: RawIncident) -> bool:
        if incident.id in self._records:
            return False
        self._records[incident.id] = SeenRecord(
            id=incident.id,
            first_seen_at=datetime.now(tz=UTC),
            source_id=incident.source_id,
        )
        return True

    def reconcile(
        self, current_ids: set[str], source_ids: Iterable[str] | None = None
    ) -> int:
        scope = set(source_ids) if source_ids is not None else None
        stale = [
            record.id
            for record in self._records.values()
            if record.id not in current_ids
            and (scope is None or record.source_id in scope)
        ]
        for incident_id in stale:
            del self._records[incident_id]

        if self._state is StoreState.COLD_START:
            logger.info("dedup.warm seen=%s", len(self._records))
            self._state = StoreState.WARM
        if stale:
            logger.info("dedup.pruned count=%s remaining=%s", len(stale), len(self._records))
        return len(stale)


class DurableDedupStore:
    """Append-only ledger in SQLite.

    Always ``WARM``: anything not in the ledger is new, including after a
    restart. Records are never pruned.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def state(self) -> StoreState:
        return StoreState.WARM

    def __len__(self) -> int:
        with self._db.lock:
            row = self._db.conn.execute(
                "SELECT COUNT(*) AS n FROM seen_incidents;"
            ).fetchone()
        return int(row["n"])

    def get(self, incident_id: str) -> SeenRecord | None:
        with self._db.lock:
            row = self._db.conn.execute(
                """
                SELECT incident_id, source_id, first_seen_at
                FROM seen_incidents
                WHERE incident_id = ?
                LIMIT 1;
                """,
                (incident_id,),
            ).fetchone()
        if row is None:
            return None
        return SeenRecord(
            id=str(row["incident_id"]),
            first_seen_at=datetime.fromisoformat(
                str(row["first_seen_at"]).removesuffix("Z") + "+00:00"
            ),
            source_id=str(row["source_id"]),
        )

    def is_new(self, incident_id: str) -> bool:
        with self._db.lock:
            row = self._db.conn.execute(
                "SELECT 1 FROM seen_incidents WHERE incident_id = ? LIMIT 1;",
                (incident_id,),
            ).fetchone()
        return row is None

    def mark_seen(self, incident: RawIncident) -> bool:
        with self._db.lock:
            cur = self._db.conn.execute(
                """
                INSERT OR IGNORE INTO seen_incidents(incident_id, source_id, first_seen_at)
                VALUES(?, ?, ?);
                """,
                (incident.id, incident.source_id, iso_z(datetime.now(tz=UTC))),
            )
            self._db.conn.commit()
        return cur.rowcount == 1

    def reconcile(
        self, current_ids: set[str], source_ids: Iterable[str] | None = None
    ) -> int:
        return 0


def open_dedup_store(policy: DedupPolicy, db: Database) -> DedupStore:
    if policy == DedupPolicy.DURABLE:
        return DurableDedupStore(db)
    return TransientDedupStore()
