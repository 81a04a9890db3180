from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from feedquality.common import ensure_dirs, is_nonempty_file
from feedquality.errors import ConfigError, FeedQualityError
from feedquality.logging import get_logger
from feedquality.models import (
    STATUS_DOWNLOADED,
    STATUS_FAILED,
    STATUS_SKIPPED,
    DownloadResult,
    FeedDescriptor,
    OnDiskFeed,
)
from feedquality.sources import FeedSource

DEFAULT_MAX_WORKERS = 8


def download_one(
    source: FeedSource,
    descriptor: FeedDescriptor,
    root: Path,
    force: bool,
    logger: logging.Logger,
) -> DownloadResult:
    feed = OnDiskFeed.for_descriptor(descriptor, root)
    if not force and is_nonempty_file(feed.static_path):
        logger.info("skipping %s (%s): already downloaded", descriptor.region_id, descriptor.title)
        return DownloadResult(
            source=source.name,
            region_id=descriptor.region_id,
            title=descriptor.title,
            status=STATUS_SKIPPED,
            path=str(feed.path),
        )

    try:
        feed = source.download_feed(descriptor, root)
    except (FeedQualityError, OSError) as exc:
        logger.warning("download failed for %s (%s): %s", descriptor.region_id, descriptor.title, exc)
        return DownloadResult(
            source=source.name,
            region_id=descriptor.region_id,
            title=descriptor.title,
            status=STATUS_FAILED,
            path=str(feed.path),
            error=f"{exc.__class__.__name__}: {exc}",
        )

    logger.info("downloaded %s (%s)", descriptor.region_id, descriptor.title)
    return DownloadResult(
        source=source.name,
        region_id=descriptor.region_id,
        title=descriptor.title,
        status=STATUS_DOWNLOADED,
        path=str(feed.path),
    )


def _rejected(source: FeedSource, descriptor: FeedDescriptor, reason: str) -> DownloadResult:
    return DownloadResult(
        source=source.name,
        region_id=descriptor.region_id,
        title=descriptor.title,
        status=STATUS_FAILED,
        error=reason,
    )


def run_downloads(
    sources: Sequence[FeedSource],
    root: Path,
    force: bool = False,
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    logger: Optional[logging.Logger] = None,
) -> List[DownloadResult]:
    """Download every feed listed by ``sources`` into ``root``.

    The batch always completes: a source that cannot list its feeds yields a
    single failed result with ``region_id=None``; a feed that cannot be
    fetched yields a failed result for that feed. Results keep source order,
    then listing order. A region_id already claimed by an earlier source is
    reported as failed rather than letting two workers share a folder, and
    so is a feed whose folder name collides with an earlier feed's.
    """
    logger = logger or get_logger("download")
    ensure_dirs(root)

    if not sources:
        logger.warning("%s", ConfigError("No feed source configured - no feeds will be downloaded"))
        return []

    results: List[Optional[DownloadResult]] = []
    jobs: List[Tuple[int, FeedSource, FeedDescriptor]] = []
    claimed: dict[str, str] = {}
    folders: dict[str, str] = {}

    for source in sources:
        try:
            descriptors = source.list_feeds()
        except Exception as exc:
            logger.error("source %s contributed no feeds: %s", source.name, exc)
            results.append(
                DownloadResult(
                    source=source.name,
                    region_id=None,
                    title=None,
                    status=STATUS_FAILED,
                    error=f"{exc.__class__.__name__}: {exc}",
                )
            )
            continue

        for descriptor in descriptors:
            folder = descriptor.folder_name.casefold()
            if descriptor.region_id in claimed:
                owner = claimed[descriptor.region_id]
                results.append(_rejected(source, descriptor, f"duplicate region_id already provided by source {owner}"))
                continue
            if folder in folders:
                reason = f"folder {descriptor.folder_name} already used by region_id {folders[folder]}"
                results.append(_rejected(source, descriptor, reason))
                continue
            claimed[descriptor.region_id] = source.name
            folders[folder] = descriptor.region_id
            jobs.append((len(results), source, descriptor))
            results.append(None)

    # Each worker fills its own slot and owns a distinct feed folder.
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {
            slot: pool.submit(download_one, source, descriptor, root, force, logger)
            for slot, source, descriptor in jobs
        }
        for slot, future in futures.items():
            results[slot] = future.result()

    final = [r for r in results if r is not None]
    failed = sum(1 for r in final if r.failed)
    skipped = sum(1 for r in final if r.skipped)
    logger.info(
        "download finished: %d feeds, %d downloaded, %d skipped, %d failed",
        len(final),
        len(final) - failed - skipped,
        skipped,
        failed,
    )
    return final
