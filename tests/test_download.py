"""Tests for feedquality.download."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from feedquality.download import run_downloads
from feedquality.errors import AuthError
from feedquality.models import FeedDescriptor, OnDiskFeed
from feedquality.sources import CsvFeedSource, materialize_feed


class StaticSource:
    """Feed source with a fixed listing, writing through the shared helper."""

    def __init__(self, name: str, feeds: List[FeedDescriptor], error: Exception | None = None) -> None:
        self.name = name
        self.feeds = feeds
        self.error = error

    def list_feeds(self) -> List[FeedDescriptor]:
        if self.error is not None:
            raise self.error
        return list(self.feeds)

    def download_feed(self, descriptor: FeedDescriptor, root: Path) -> OnDiskFeed:
        return materialize_feed(descriptor, root, source_name=self.name, retries=0)


def _populate(root: Path, folder: str, content: bytes) -> Path:
    static = root / folder / "gtfs" / "gtfs.zip"
    static.parent.mkdir(parents=True)
    static.write_bytes(content)
    return static


def test_existing_feed_is_skipped_without_force(tmp_path: Path, fake_sink) -> None:
    csv_path = tmp_path / "feeds.csv"
    csv_path.write_text("R1,Agency One,http://x/gtfs.zip,\n", encoding="utf-8")
    root = tmp_path / "feeds"
    static = _populate(root, "R1-Agency One", b"previous")
    fake_sink.payloads["http://x/gtfs.zip"] = b"fresh"

    results = run_downloads([CsvFeedSource(csv_path)], root, force=False)

    assert len(results) == 1
    assert results[0].status == "skipped"
    assert results[0].skipped
    assert static.read_bytes() == b"previous"
    assert fake_sink.calls == []


def test_force_overwrites_existing_static_file(tmp_path: Path, fake_sink) -> None:
    root = tmp_path / "feeds"
    static = _populate(root, "R1-Agency One", b"previous")
    fake_sink.payloads["http://x/gtfs.zip"] = b"fresh"
    source = StaticSource("static", [FeedDescriptor("R1", "Agency One", "http://x/gtfs.zip")])

    results = run_downloads([source], root, force=True)

    assert results[0].status == "downloaded"
    assert static.read_bytes() == b"fresh"


def test_empty_static_file_is_downloaded_again(tmp_path: Path, fake_sink) -> None:
    root = tmp_path / "feeds"
    static = _populate(root, "R1-Agency One", b"")
    fake_sink.payloads["http://x/gtfs.zip"] = b"fresh"
    source = StaticSource("static", [FeedDescriptor("R1", "Agency One", "http://x/gtfs.zip")])

    results = run_downloads([source], root, force=False)

    assert results[0].status == "downloaded"
    assert static.read_bytes() == b"fresh"


def test_one_failing_feed_does_not_stop_the_batch(tmp_path: Path, fake_sink) -> None:
    fake_sink.payloads["http://ok/gtfs.zip"] = b"ok"
    source = StaticSource(
        "static",
        [
            FeedDescriptor("R1", "Down", "http://down/gtfs.zip"),
            FeedDescriptor("R2", "Up", "http://ok/gtfs.zip"),
        ],
    )

    results = run_downloads([source], tmp_path, force=True, max_workers=2)

    assert [(r.region_id, r.status) for r in results] == [("R1", "failed"), ("R2", "downloaded")]
    assert "DownloadError" in results[0].error
    assert (tmp_path / "R2-Up" / "gtfs" / "gtfs.zip").read_bytes() == b"ok"


def test_source_level_failure_is_reported_and_other_sources_continue(tmp_path: Path, fake_sink) -> None:
    fake_sink.payloads["http://ok/gtfs.zip"] = b"ok"
    broken = StaticSource("catalog", [], error=AuthError("TransitFeeds API rejected key (INVALIDKEY)"))
    working = StaticSource("csv", [FeedDescriptor("R1", "Up", "http://ok/gtfs.zip")])

    results = run_downloads([broken, working], tmp_path, force=True)

    assert results[0].source == "catalog"
    assert results[0].region_id is None
    assert results[0].failed
    assert "AuthError" in results[0].error
    assert results[1].status == "downloaded"


def test_duplicate_region_across_sources_is_reported(tmp_path: Path, fake_sink) -> None:
    fake_sink.payloads["http://a/gtfs.zip"] = b"a"
    first = StaticSource("csv", [FeedDescriptor("R1", "A", "http://a/gtfs.zip")])
    second = StaticSource("catalog", [FeedDescriptor("R1", "B", "http://b/gtfs.zip")])

    results = run_downloads([first, second], tmp_path, force=True)

    assert [r.status for r in results] == ["downloaded", "failed"]
    assert "duplicate region_id" in results[1].error
    assert fake_sink.calls == ["http://a/gtfs.zip"]


def test_region_ids_sharing_a_folder_are_reported(tmp_path: Path, fake_sink) -> None:
    fake_sink.payloads["http://a/gtfs.zip"] = b"aaa"
    fake_sink.payloads["http://b/gtfs.zip"] = b"bbb"
    source = StaticSource(
        "static",
        [FeedDescriptor("R/1", "T", "http://a/gtfs.zip"), FeedDescriptor("R:1", "T", "http://b/gtfs.zip")],
    )

    results = run_downloads([source], tmp_path, force=True, max_workers=2)

    assert [(r.region_id, r.status) for r in results] == [("R/1", "downloaded"), ("R:1", "failed")]
    assert "R_1-T" in results[1].error
    assert (tmp_path / "R_1-T" / "gtfs" / "gtfs.zip").read_bytes() == b"aaa"
    assert fake_sink.calls == ["http://a/gtfs.zip"]


def test_unexpected_listing_exception_is_a_source_failure(tmp_path: Path, fake_sink) -> None:
    fake_sink.payloads["http://ok/gtfs.zip"] = b"ok"
    broken = StaticSource("catalog", [], error=AttributeError("'list' object has no attribute 'get'"))
    working = StaticSource("csv", [FeedDescriptor("R1", "Up", "http://ok/gtfs.zip")])

    results = run_downloads([broken, working], tmp_path, force=True)

    assert [(r.source, r.status) for r in results] == [("catalog", "failed"), ("csv", "downloaded")]
    assert "AttributeError" in results[0].error


def test_no_sources_means_no_downloads(tmp_path: Path) -> None:
    root = tmp_path / "new-root"

    assert run_downloads([], root, force=True) == []
    assert root.is_dir()


@pytest.mark.parametrize("workers", [1, 4])
def test_result_order_follows_listing_order(tmp_path: Path, fake_sink, workers: int) -> None:
    descriptors = [FeedDescriptor(f"R{i}", f"Agency {i}", f"http://x/{i}.zip") for i in range(6)]
    for d in descriptors:
        fake_sink.payloads[d.gtfs_url] = d.region_id.encode()

    results = run_downloads([StaticSource("static", descriptors)], tmp_path, force=True, max_workers=workers)

    assert [r.region_id for r in results] == [d.region_id for d in descriptors]
