from __future__ import annotations

import logging
from pathlib import Path

import yaml

from normalize.models import FeedSource, SourceKind


logger = logging.getLogger(__name__)


def load_feed_sources(path: Path) -> list[FeedSource]:
    if not path.exists():
        logger.warning("sources.missing path=%s", path)
        return []

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"invalid feed sources file: {path}")

    sources: list[FeedSource] = []
    seen_ids: set[str] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValueError(f"invalid feed entry in: {path}")
        source_id = str(entry["id"]).strip()
        if not source_id:
            raise ValueError(f"feed entry without id in: {path}")
        if source_id in seen_ids:
            raise ValueError(f"duplicate feed id {source_id!r} in: {path}")
        seen_ids.add(source_id)

        url = str(entry.get("url") or "").strip()
        if not url:
            logger.info("sources.skip source_id=%s reason=empty_url", source_id)
            continue

        try:
            kind = SourceKind(str(entry.get("kind") or "partner"))
        except ValueError as e:
            raise ValueError(
                f"unknown feed kind {entry.get('kind')!r} for {source_id!r} in: {path}"
            ) from e

        header = entry.get("api_key_header")
        sources.append(
            FeedSource(
                id=source_id,
                name=str(entry.get("name") or source_id),
                url=url,
                kind=kind,
                api_key_header=str(header) if header else None,
            )
        )

    return sources
