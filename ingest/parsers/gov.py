from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class GovFeed:
    records: list[dict]


def parse_gov_feed(data: bytes) -> GovFeed:
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("government feed: expected a JSON object")
    value = doc.get("value")
    if not isinstance(value, list):
        return GovFeed(records=[])
    return GovFeed(records=[r for r in value if isinstance(r, dict)])
