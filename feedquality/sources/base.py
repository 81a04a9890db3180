from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Protocol

from feedquality.common import sha256_for_file, utc_now, utc_stamp, write_json, write_url_to_file
from feedquality.logging import redact
from feedquality.models import DESCRIPTOR_FILE, FeedDescriptor, OnDiskFeed


class FeedSource(Protocol):
    name: str

    def list_feeds(self) -> List[FeedDescriptor]:
        ...

    def download_feed(self, descriptor: FeedDescriptor, root: Path) -> OnDiskFeed:
        ...


def materialize_feed(
    descriptor: FeedDescriptor,
    root: Path,
    *,
    source_name: str,
    timeout: float = 60,
    retries: int = 2,
) -> OnDiskFeed:
    """Fetch the static feed and one realtime snapshot into the feed folder.

    Overwrites ``gtfs/gtfs.zip``; realtime snapshots are added under
    ``gtfs-rt/`` with a UTC timestamp name. ``feed.json`` is written before
    fetching so a failed feed can still be identified by region_id.
    Raises ``DownloadError``.
    """
    feed = OnDiskFeed.for_descriptor(descriptor, root)
    feed.path.mkdir(parents=True, exist_ok=True)
    meta: Dict[str, Any] = {
        "region_id": descriptor.region_id,
        "title": descriptor.title,
        "source": source_name,
        "gtfs_url": redact(descriptor.gtfs_url),
        "gtfs_rt_url": redact(descriptor.gtfs_rt_url) if descriptor.gtfs_rt_url else None,
        "requested_at": utc_now(),
    }
    write_json(meta, feed.path / DESCRIPTOR_FILE)

    write_url_to_file(descriptor.gtfs_url, feed.static_path, timeout=timeout, retries=retries)
    meta["static_file"] = {
        "path": str(feed.static_path.relative_to(feed.path)),
        "sha256": sha256_for_file(feed.static_path),
        "size_bytes": feed.static_path.stat().st_size,
    }
    if descriptor.gtfs_rt_url:
        snapshot = write_url_to_file(
            descriptor.gtfs_rt_url,
            feed.realtime_dir / f"{utc_stamp()}.pb",
            timeout=timeout,
            retries=retries,
        )
        meta["realtime_file"] = str(Path(snapshot).relative_to(feed.path))

    meta["retrieved_at"] = utc_now()
    write_json(meta, feed.path / DESCRIPTOR_FILE)
    return feed
