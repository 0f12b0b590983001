import json

import pytest

from ingest.parsers.gov import parse_gov_feed
from ingest.parsers.partner import parse_partner_feed


def test_parse_partner_fixture(fixtures_dir) -> None:
    feed = parse_partner_feed((fixtures_dir / "partner_feed.json").read_bytes())
    assert len(feed.alerts) == 4
    assert feed.alerts[0]["uuid"] == "a1b2c3d4-0001"


def test_parse_gov_fixture(fixtures_dir) -> None:
    feed = parse_gov_feed((fixtures_dir / "gov_feed.json").read_bytes())
    assert len(feed.records) == 3
    assert feed.records[1]["Type"] == "Accident"


@pytest.mark.parametrize("doc", [{}, {"alerts": None}, {"alerts": []}, {"jams": []}])
def test_partner_missing_or_empty_alerts_is_zero_incidents(doc) -> None:
    assert parse_partner_feed(json.dumps(doc).encode()).alerts == []


@pytest.mark.parametrize("doc", [{}, {"value": None}, {"value": []}])
def test_gov_missing_or_empty_value_is_zero_incidents(doc) -> None:
    assert parse_gov_feed(json.dumps(doc).encode()).records == []


@pytest.mark.parametrize("data", [b"<html>oops</html>", b"", b"[1, 2]", b"\xff\xfe"])
def test_malformed_documents_raise_value_error(data) -> None:
    with pytest.raises(ValueError):
        parse_partner_feed(data)
    with pytest.raises(ValueError):
        parse_gov_feed(data)
