from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from normalize.models import Category, Location, RawIncident


logger = logging.getLogger(__name__)


def _from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=UTC)


def _clean_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int_or(value: object, default: int) -> int:
    if not value:
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


@dataclass(frozen=True)
class Classification:
    category: Category
    subcategory: str | None
    fallback: bool = False


# Evaluated top to bottom, first match wins. "accident" must stay ahead of
# "breakdown" so "Vehicle breakdown due to accident" is an accident.
_GOV_TYPE_RULES: list[tuple[str, Category, str]] = [
    ("accident", Category.ACCIDENT, "ACCIDENT_MAJOR"),
    ("roadwork", Category.CONSTRUCTION, "CONSTRUCTION"),
    ("breakdown", Category.HAZARD, "HAZARD_ON_SHOULDER_CAR_STOPPED"),
    ("weather", Category.WEATHER_HAZARD, "HAZARD_WEATHER"),
    ("heavy traffic", Category.JAM, "JAM_HEAVY_TRAFFIC"),
]

_GOV_FALLBACK = (Category.HAZARD, "HAZARD_ON_ROAD")


def classify_gov_type(text: object) -> Classification:
    """Map a free-text government incident type onto the unified taxonomy.

    Never fails: anything that matches no rule becomes a generic on-road
    hazard with ``fallback=True``.
    """
    lowered = (_clean_str(text) or "").casefold()
    for needle, category, subcategory in _GOV_TYPE_RULES:
        if needle in lowered:
            return Classification(category=category, subcategory=subcategory)

    logger.debug("classify.fallback type=%r", text)
    category, subcategory = _GOV_FALLBACK
    return Classification(category=category, subcategory=subcategory, fallback=True)


_PARTNER_TYPES: dict[str, Category] = {
    "ACCIDENT": Category.ACCIDENT,
    "JAM": Category.JAM,
    "HAZARD": Category.HAZARD,
    "WEATHERHAZARD": Category.WEATHER_HAZARD,
    "WEATHER_HAZARD": Category.WEATHER_HAZARD,
    "CONSTRUCTION": Category.CONSTRUCTION,
    "ROAD_CLOSED": Category.ROAD_CLOSED,
}


def classify_partner(type_code: object, subtype: object) -> Classification:
    key = (_clean_str(type_code) or "").upper()
    category = _PARTNER_TYPES.get(key)
    if category is None:
        logger.debug("classify.partner_fallback type=%r subtype=%r", type_code, subtype)
        return Classification(
            category=Category.HAZARD, subcategory=_clean_str(subtype), fallback=True
        )
    return Classification(category=category, subcategory=_clean_str(subtype))


CATEGORY_LABELS: dict[Category, str] = {
    Category.ACCIDENT: "Accident",
    Category.JAM: "Traffic Jam",
    Category.HAZARD: "Hazard",
    Category.WEATHER_HAZARD: "Hazard",
    Category.CONSTRUCTION: "Construction",
    Category.ROAD_CLOSED: "Road Closed",
}

SUBTYPE_LABELS: dict[str, str] = {
    "ACCIDENT_MINOR": "Minor Accident",
    "ACCIDENT_MAJOR": "Major Accident",
    "JAM_MODERATE_TRAFFIC": "Moderate Traffic",
    "JAM_HEAVY_TRAFFIC": "Heavy Traffic",
    "JAM_STAND_STILL_TRAFFIC": "Standstill Traffic",
    "JAM_LIGHT_TRAFFIC": "Light Traffic",
    "HAZARD_ON_ROAD": "Object on Road",
    "HAZARD_ON_ROAD_CONSTRUCTION": "Construction Hazard",
    "HAZARD_ON_SHOULDER": "Vehicle on Shoulder",
    "HAZARD_WEATHER": "Weather Hazard",
    "HAZARD_ON_ROAD_POT_HOLE": "Pothole",
    "HAZARD_ON_ROAD_ROAD_KILL": "Roadkill",
    "HAZARD_ON_SHOULDER_CAR_STOPPED": "Car Stopped",
    "HAZARD_ON_SHOULDER_ANIMALS": "Animals on Shoulder",
    "HAZARD_WEATHER_FOG": "Fog",
    "HAZARD_WEATHER_HAIL": "Hail",
    "HAZARD_WEATHER_HEAVY_RAIN": "Heavy Rain",
    "HAZARD_WEATHER_HEAVY_SNOW": "Heavy Snow",
    "HAZARD_WEATHER_FLOOD": "Flood",
    "HAZARD_WEATHER_MONSOON": "Monsoon",
    "HAZARD_WEATHER_TORNADO": "Tornado",
    "HAZARD_WEATHER_HEAT_WAVE": "Heat Wave",
    "HAZARD_WEATHER_HURRICANE": "Hurricane",
    "HAZARD_WEATHER_FREEZING_RAIN": "Freezing Rain",
    "ROAD_CLOSED_HAZARD": "Closed due to Hazard",
    "ROAD_CLOSED_CONSTRUCTION": "Closed due to Construction",
    "ROAD_CLOSED_EVENT": "Closed due to Event",
}


def subtype_label(subcategory: str | None, category: Category) -> str:
    if not subcategory:
        return CATEGORY_LABELS[category]
    return SUBTYPE_LABELS.get(subcategory.upper(), subcategory)


def derive_incident_id(source_id: str, text: str) -> str:
    digest = hashlib.md5(text.encode("utf-8")).hexdigest()
    return f"{source_id}-{digest}"


def normalize_partner_alert(
    *, source_id: str, record: dict, fetched_at: datetime
) -> RawIncident | None:
    location = record.get("location")
    if not isinstance(location, dict):
        return None
    try:
        lon = float(location["x"])
        lat = float(location["y"])
    except (KeyError, TypeError, ValueError, OverflowError):
        return None

    classification = classify_partner(record.get("type"), record.get("subtype"))
    description = _clean_str(record.get("reportDescription"))

    pub_millis = record.get("pubMillis")
    try:
        published_at = _from_epoch_ms(int(pub_millis))
    except (TypeError, ValueError, OverflowError, OSError):
        published_at = fetched_at

    incident_id = _clean_str(record.get("uuid"))
    if incident_id is None:
        stable_text = description or (
            f"{record.get('type')}|{record.get('subtype')}|{lon:.5f},{lat:.5f}|{pub_millis}"
        )
        incident_id = derive_incident_id(source_id, stable_text)

    return RawIncident(
        id=incident_id,
        category=classification.category,
        subcategory=classification.subcategory,
        location=Location(lon=lon, lat=lat),
        street=_clean_str(record.get("street")),
        city=_clean_str(record.get("city")),
        country=_clean_str(record.get("country")),
        published_at=published_at,
        description=description,
        source_id=source_id,
        reliability=_int_or(record.get("reliability"), 5),
        confidence=_int_or(record.get("confidence"), 0),
        thumbs_up=_int_or(record.get("nThumbsUp"), 0),
        report_rating=_int_or(record.get("reportRating"), 0),
    )


def normalize_gov_incident(
    *,
    source_id: str,
    record: dict,
    fetched_at: datetime,
    street: str | None = "Singapore Road",
    city: str | None = "Singapore",
    country: str | None = "SG",
) -> RawIncident | None:
    try:
        lon = float(record["Longitude"])
        lat = float(record["Latitude"])
    except (KeyError, TypeError, ValueError, OverflowError):
        return None

    message = str(record.get("Message") or "")
    classification = classify_gov_type(record.get("Type"))

    return RawIncident(
        id=derive_incident_id(source_id, message),
        category=classification.category,
        subcategory=classification.subcategory,
        location=Location(lon=lon, lat=lat),
        street=street,
        city=city,
        country=country,
        published_at=fetched_at,
        description=message or None,
        source_id=source_id,
    )
