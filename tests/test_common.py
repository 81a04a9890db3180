"""Tests for feedquality.common."""

from __future__ import annotations

from pathlib import Path

import pytest
import requests

from feedquality import common
from feedquality.common import sanitize_path_component, write_url_to_file
from feedquality.errors import DownloadError


class FakeResponse:
    def __init__(self, chunks, status_code: int = 200) -> None:
        self.chunks = chunks
        self.status_code = status_code

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def iter_content(self, chunk_size: int = 1):
        yield from self.chunks


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(common.time, "sleep", lambda seconds: None)


def test_write_url_to_file_creates_parents(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def fake_get(url, **kwargs):
        seen.update(kwargs)
        return FakeResponse([b"abc", b"", b"def"])

    monkeypatch.setattr(common.requests, "get", fake_get)
    target = tmp_path / "a" / "b" / "gtfs.zip"

    assert write_url_to_file("http://x/gtfs.zip", target, timeout=5) == target
    assert target.read_bytes() == b"abcdef"
    assert not target.with_name("gtfs.zip.part").exists()
    assert seen["timeout"] == 5
    assert seen["stream"] is True


def test_write_url_to_file_retries_then_succeeds(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    attempts = []

    def flaky_get(url, **kwargs):
        attempts.append(url)
        if len(attempts) < 3:
            raise requests.Timeout("slow")
        return FakeResponse([b"ok"])

    monkeypatch.setattr(common.requests, "get", flaky_get)
    target = tmp_path / "feed.pb"

    write_url_to_file("http://x/rt", target, retries=2)

    assert len(attempts) == 3
    assert target.read_bytes() == b"ok"


def test_write_url_to_file_gives_up_after_bounded_retries(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    attempts = []

    def failing_get(url, **kwargs):
        attempts.append(url)
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(common.requests, "get", failing_get)
    target = tmp_path / "feed.pb"

    with pytest.raises(DownloadError) as excinfo:
        write_url_to_file("http://x/rt?key=secret", target, retries=1)

    assert len(attempts) == 2
    assert "Timeout" in str(excinfo.value)
    assert "secret" not in str(excinfo.value)
    assert not target.exists()


def test_write_url_to_file_keeps_previous_file_on_http_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(common.requests, "get", lambda url, **kwargs: FakeResponse([b"new"], status_code=500))
    target = tmp_path / "gtfs.zip"
    target.write_bytes(b"old")

    with pytest.raises(DownloadError):
        write_url_to_file("http://x/gtfs.zip", target, retries=0)

    assert target.read_bytes() == b"old"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Agency One", "Agency One"),
        ("../etc/passwd", "_etc_passwd"),
        ("a/b\\c", "a_b_c"),
        ("  ", "_"),
    ],
)
def test_sanitize_path_component(raw: str, expected: str) -> None:
    assert sanitize_path_component(raw) == expected
