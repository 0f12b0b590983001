from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum


class Category(StrEnum):
    ACCIDENT = "ACCIDENT"
    JAM = "JAM"
    HAZARD = "HAZARD"
    WEATHER_HAZARD = "WEATHER_HAZARD"
    CONSTRUCTION = "CONSTRUCTION"
    ROAD_CLOSED = "ROAD_CLOSED"


class SourceKind(StrEnum):
    PARTNER = "partner"
    GOVERNMENT = "government"


def iso_z(value: datetime) -> str:
    return value.astimezone(tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Location:
    lon: float
    lat: float


@dataclass(frozen=True)
class RawIncident:
    id: str
    category: Category
    subcategory: str | None
    location: Location
    street: str | None
    city: str | None
    country: str | None
    published_at: datetime
    description: str | None
    source_id: str
    reliability: int = 5
    confidence: int = 0
    thumbs_up: int = 0
    report_rating: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": str(self.category),
            "subcategory": self.subcategory,
            "location": {"lon": self.location.lon, "lat": self.location.lat},
            "street": self.street,
            "city": self.city,
            "country": self.country,
            "published_at": iso_z(self.published_at),
            "description": self.description,
            "source_id": self.source_id,
            "reliability": self.reliability,
            "confidence": self.confidence,
            "thumbs_up": self.thumbs_up,
            "report_rating": self.report_rating,
        }


@dataclass(frozen=True)
class FeedSource:
    id: str
    name: str
    url: str
    kind: SourceKind = SourceKind.PARTNER
    api_key_header: str | None = None


@dataclass(frozen=True)
class SeenRecord:
    id: str
    first_seen_at: datetime
    source_id: str
