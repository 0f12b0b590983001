from pathlib import Path

import pytest

from ingest.sources import load_feed_sources
from normalize.models import SourceKind


def test_load_bundled_sources() -> None:
    path = Path(__file__).resolve().parents[1] / "feeds" / "sources.yaml"
    sources = load_feed_sources(path)
    assert [s.id for s in sources] == ["west", "thomson", "lta"]
    assert sources[2].kind is SourceKind.GOVERNMENT
    assert sources[2].api_key_header == "AccountKey"


def test_empty_url_entries_are_skipped(tmp_path) -> None:
    path = tmp_path / "sources.yaml"
    path.write_text(
        "- id: custom\n  name: Custom URL\n  url: ''\n- id: west\n  url: https://feeds.test/west\n",
        encoding="utf-8",
    )
    sources = load_feed_sources(path)
    assert [s.id for s in sources] == ["west"]
    assert sources[0].name == "west"
    assert sources[0].kind is SourceKind.PARTNER


def test_missing_file_is_no_sources(tmp_path) -> None:
    assert load_feed_sources(tmp_path / "absent.yaml") == []


@pytest.mark.parametrize(
    "text",
    [
        "west: https://feeds.test\n",
        "- id: a\n  url: https://x\n- id: a\n  url: https://y\n",
        "- id: a\n  url: https://x\n  kind: carrier-pigeon\n",
    ],
)
def test_invalid_files_raise(tmp_path, text) -> None:
    path = tmp_path / "sources.yaml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError):
        load_feed_sources(path)
