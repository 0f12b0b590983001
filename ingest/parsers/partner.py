from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class PartnerFeed:
    alerts: list[dict]


def parse_partner_feed(data: bytes) -> PartnerFeed:
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("partner feed: expected a JSON object")
    alerts = doc.get("alerts")
    if not isinstance(alerts, list):
        return PartnerFeed(alerts=[])
    return PartnerFeed(alerts=[a for a in alerts if isinstance(a, dict)])
