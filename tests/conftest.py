from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import pytest

from feedquality.errors import DownloadError


class FakeSink:
    """Stands in for write_url_to_file, serving bytes from a URL map."""

    def __init__(self) -> None:
        self.payloads: Dict[str, bytes] = {}
        self.calls: List[str] = []

    def __call__(self, url: str, destination: Path, **kwargs) -> Path:
        self.calls.append(url)
        if url not in self.payloads:
            raise DownloadError(f"{url}: ConnectTimeout")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.payloads[url])
        return destination


@pytest.fixture
def fake_sink(monkeypatch: pytest.MonkeyPatch) -> FakeSink:
    sink = FakeSink()
    monkeypatch.setattr("feedquality.sources.base.write_url_to_file", sink)
    return sink
