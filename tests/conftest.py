from datetime import UTC, datetime
from pathlib import Path

import pytest

from normalize.models import Category, FeedSource, Location, RawIncident, SourceKind
from store.db import close_database, open_database


FIXTURES = Path(__file__).resolve().parent / "fixtures"


def make_incident(incident_id: str, source_id: str = "west", **overrides) -> RawIncident:
    fields = {
        "id": incident_id,
        "category": Category.ACCIDENT,
        "subcategory": "ACCIDENT_MAJOR",
        "location": Location(lon=103.8, lat=1.35),
        "street": "Main St",
        "city": "Townsville",
        "country": None,
        "published_at": datetime(2026, 10, 19, 9, 0, tzinfo=UTC),
        "description": None,
        "source_id": source_id,
    }
    fields.update(overrides)
    return RawIncident(**fields)


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def db(tmp_path):
    database = open_database(tmp_path / "test.db")
    try:
        yield database
    finally:
        close_database(database)


@pytest.fixture
def west() -> FeedSource:
    return FeedSource(id="west", name="West Area", url="https://feeds.test/west")


@pytest.fixture
def thomson() -> FeedSource:
    return FeedSource(id="thomson", name="Thomson Road", url="https://feeds.test/thomson")


@pytest.fixture
def lta() -> FeedSource:
    return FeedSource(
        id="lta",
        name="Singapore LTA",
        url="https://gov.test/TrafficIncidents",
        kind=SourceKind.GOVERNMENT,
        api_key_header="AccountKey",
    )
