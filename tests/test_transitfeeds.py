"""Tests for feedquality.sources.transitfeeds."""

from __future__ import annotations

from typing import Any, Dict, List

import pytest

from feedquality.download import run_downloads
from feedquality.errors import AuthError, SourceError
from feedquality.sources import CsvFeedSource, TransitFeedsSource
from feedquality.sources import transitfeeds


class FakeResponse:
    def __init__(self, payload: Dict[str, Any], status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        return None

    def json(self) -> Dict[str, Any]:
        return self.payload


def _feed(feed_id: str, feed_type: str, location: int, title: str, url: str | None = None) -> Dict[str, Any]:
    return {"id": feed_id, "ty": feed_type, "t": title, "l": {"id": location, "t": f"City {location}"}, "u": {"d": url}}


PAGES = {
    ("gtfs", 1): {"numPages": 1, "feeds": [_feed("agency-a/1", "gtfs", 10, "Agency A GTFS")]},
    ("gtfsrealtime", 1): {
        "numPages": 2,
        "feeds": [_feed("agency-a/2", "gtfsrealtime", 10, "Agency A Trip Updates", "http://a/tu.pb")],
    },
    ("gtfsrealtime", 2): {
        "numPages": 2,
        "feeds": [
            _feed("agency-a/3", "gtfsrealtime", 10, "Agency A Vehicles", "http://a/vp.pb"),
            _feed("agency-b/1", "gtfsrealtime", 20, "Orphan Realtime", "http://b/tu.pb"),
        ],
    },
}


@pytest.fixture
def api_calls(monkeypatch: pytest.MonkeyPatch) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []

    def fake_get(url, params=None, **kwargs):
        calls.append(dict(params or {}))
        if params["key"] == "bad":
            return FakeResponse({"status": "INVALIDKEY"})
        return FakeResponse({"status": "OK", "results": PAGES[(params["type"], params["page"])]})

    monkeypatch.setattr(transitfeeds.requests, "get", fake_get)
    return calls


def test_list_feeds_paginates_and_pairs_static_feeds(api_calls) -> None:
    feeds = TransitFeedsSource("k3y", base_url="http://api.test/v1").list_feeds()

    assert [(f.region_id, f.title) for f in feeds] == [
        ("10", "Agency A Trip Updates"),
        ("10-2", "Agency A Vehicles"),
    ]
    assert feeds[0].gtfs_rt_url == "http://a/tu.pb"
    assert feeds[0].gtfs_url == "http://api.test/v1/getLatestFeedVersion?key=k3y&feed=agency-a%2F1"
    assert {(c["type"], c["page"]) for c in api_calls} == set(PAGES)


def test_invalid_key_raises_auth_error(api_calls) -> None:
    with pytest.raises(AuthError):
        TransitFeedsSource("bad").list_feeds()


def test_missing_key_raises_auth_error_without_calling_api(api_calls) -> None:
    with pytest.raises(AuthError):
        TransitFeedsSource(None).list_feeds()
    assert api_calls == []


def test_http_401_is_an_auth_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(transitfeeds.requests, "get", lambda url, **kwargs: FakeResponse({}, status_code=401))

    with pytest.raises(AuthError):
        TransitFeedsSource("k3y").list_feeds()


def test_unexpected_status_is_a_source_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(transitfeeds.requests, "get", lambda url, **kwargs: FakeResponse({"status": "EXCEPTION"}))

    with pytest.raises(SourceError):
        TransitFeedsSource("k3y").list_feeds()


@pytest.mark.parametrize(
    "payload",
    [
        ["unexpected"],
        {"status": "OK", "results": ["not", "a", "mapping"]},
        {"status": "OK", "results": {"numPages": "many", "feeds": []}},
        {"status": "OK", "results": {"numPages": 1, "feeds": "nope"}},
    ],
)
def test_unexpected_catalog_shape_is_a_source_error(monkeypatch: pytest.MonkeyPatch, payload) -> None:
    monkeypatch.setattr(transitfeeds.requests, "get", lambda url, **kwargs: FakeResponse(payload))

    with pytest.raises(SourceError):
        TransitFeedsSource("k3y").list_feeds()


def test_broken_catalog_does_not_stop_other_sources(tmp_path, monkeypatch: pytest.MonkeyPatch, fake_sink) -> None:
    monkeypatch.setattr(transitfeeds.requests, "get", lambda url, **kwargs: FakeResponse(["unexpected"]))
    csv_path = tmp_path / "feeds.csv"
    csv_path.write_text("R1,Agency One,http://x/gtfs.zip,\n", encoding="utf-8")
    fake_sink.payloads["http://x/gtfs.zip"] = b"zip"

    results = run_downloads([TransitFeedsSource("k3y", retries=0), CsvFeedSource(csv_path)], tmp_path / "feeds")

    assert [(r.source, r.region_id, r.status) for r in results] == [
        ("transitfeeds", None, "failed"),
        ("csv", "R1", "downloaded"),
    ]
    assert "SourceError" in results[0].error
    assert fake_sink.calls == ["http://x/gtfs.zip"]
