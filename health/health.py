from __future__ import annotations

from datetime import UTC, datetime

from normalize.models import FeedSource
from store.db import Database


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


def ensure_sources(db: Database, sources: list[FeedSource]) -> None:
    with db.lock:
        for source in sources:
            db.conn.execute(
                """
                INSERT INTO sources(source_id, name, kind, url)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(source_id) DO UPDATE SET
                  name = excluded.name,
                  kind = excluded.kind,
                  url = excluded.url;
                """,
                (source.id, source.name, str(source.kind), source.url),
            )
        db.conn.commit()


def record_fetch_success(
    db: Database,
    *,
    source_id: str,
    status_code: int | None,
    fetch_ms: int | None,
    incident_count: int,
) -> None:
    now_iso = _utc_now_iso()
    with db.lock:
        db.conn.execute(
            """
            UPDATE sources
            SET last_fetch_at = ?,
                last_success_at = ?,
                last_status_code = COALESCE(?, last_status_code),
                last_fetch_ms = COALESCE(?, last_fetch_ms),
                consecutive_failures = 0,
                last_error = NULL,
                last_error_at = NULL,
                last_incident_count = ?,
                success_count = success_count + 1
            WHERE source_id = ?;
            """,
            (now_iso, now_iso, status_code, fetch_ms, incident_count, source_id),
        )
        db.conn.commit()


def record_fetch_error(
    db: Database,
    *,
    source_id: str,
    status_code: int | None,
    fetch_ms: int | None,
    error: str,
) -> int:
    """Record a failed fetch and return the consecutive failure count."""
    now_iso = _utc_now_iso()
    with db.lock:
        row = db.conn.execute(
            "SELECT consecutive_failures FROM sources WHERE source_id = ?;",
            (source_id,),
        ).fetchone()
        if row is None:
            return 0
        failures = int(row["consecutive_failures"]) + 1

        db.conn.execute(
            """
            UPDATE sources
            SET last_fetch_at = ?,
                last_error_at = ?,
                last_status_code = COALESCE(?, last_status_code),
                last_fetch_ms = COALESCE(?, last_fetch_ms),
                consecutive_failures = ?,
                last_error = ?,
                error_count = error_count + 1
            WHERE source_id = ?;
            """,
            (now_iso, now_iso, status_code, fetch_ms, failures, error, source_id),
        )
        db.conn.commit()
    return failures


def list_source_health(db: Database) -> list[dict]:
    with db.lock:
        rows = db.conn.execute(
            """
            SELECT source_id, name, kind, url, last_fetch_at, last_success_at,
                   last_error_at, consecutive_failures, last_status_code,
                   last_fetch_ms, last_error, last_incident_count,
                   success_count, error_count
            FROM sources
            ORDER BY source_id ASC;
            """
        ).fetchall()
    return [dict(r) for r in rows]
