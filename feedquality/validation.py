from __future__ import annotations

import logging
import shlex
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from feedquality.common import read_json
from feedquality.errors import ValidationUnavailableError
from feedquality.logging import get_logger
from feedquality.models import DESCRIPTOR_FILE, RESULTS_SUFFIX, FeedDescriptor, OnDiskFeed


class Validator(Protocol):
    def validate(self, feed: OnDiskFeed) -> List[Path]:
        ...


@dataclass(frozen=True)
class ValidationOutcome:
    region_id: str
    folder: str
    results: List[str]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def find_results(feed_dir: Path) -> List[Path]:
    return sorted(p for p in feed_dir.rglob(f"*{RESULTS_SUFFIX}") if p.is_file())


def discover_feeds(feed_root: Path, logger: Optional[logging.Logger] = None) -> List[OnDiskFeed]:
    """Feed folders under ``feed_root``, in folder-name order.

    A region_id found in more than one folder (e.g. a stale folder left
    behind after a title change) is kept once: the folder whose ``feed.json``
    was retrieved most recently wins, the first folder on a tie.
    """
    logger = logger or get_logger("validation")
    chosen: Dict[str, Tuple[str, OnDiskFeed]] = {}
    if not feed_root.is_dir():
        return []
    for folder in sorted(p for p in feed_root.iterdir() if p.is_dir()):
        meta = {}
        try:
            meta = read_json(folder / DESCRIPTOR_FILE)
        except (OSError, ValueError):
            meta = {}
        if not isinstance(meta, dict):
            meta = {}
        descriptor = FeedDescriptor(
            region_id=str(meta.get("region_id") or folder.name),
            title=str(meta.get("title") or folder.name),
            gtfs_url=str(meta.get("gtfs_url") or ""),
            gtfs_rt_url=meta.get("gtfs_rt_url"),
        )
        feed = OnDiskFeed(descriptor=descriptor, path=folder)
        retrieved_at = str(meta.get("retrieved_at") or "")
        previous = chosen.get(descriptor.region_id)
        if previous is None:
            chosen[descriptor.region_id] = (retrieved_at, feed)
            continue
        if retrieved_at > previous[0]:
            stale, chosen[descriptor.region_id] = previous[1], (retrieved_at, feed)
        else:
            stale = feed
        logger.warning("region_id %s found in several folders, ignoring %s", descriptor.region_id, stale.path.name)
    return sorted((feed for _, feed in chosen.values()), key=lambda feed: feed.path.name)


class CommandValidator:
    """Runs an external validator command once per feed.

    ``command`` may use ``{gtfs}``, ``{gtfs_rt}`` and ``{feed_dir}``
    placeholders, e.g. the gtfs-realtime-validator batch jar::

        java -jar gtfs-realtime-validator-lib.jar -gtfs {gtfs} -gtfsRealtimePath {gtfs_rt}

    The validator is expected to leave ``*.results.json`` files in the feed
    folder.
    """

    def __init__(self, command: str | Sequence[str], *, timeout: float = 600) -> None:
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout = timeout

    def _argv(self, feed: OnDiskFeed) -> List[str]:
        values = {
            "{gtfs}": str(feed.static_path.resolve()),
            "{gtfs_rt}": str(feed.realtime_dir.resolve()),
            "{feed_dir}": str(feed.path.resolve()),
        }
        argv = []
        for part in self.command:
            for placeholder, value in values.items():
                part = part.replace(placeholder, value)
            argv.append(part)
        return argv

    def validate(self, feed: OnDiskFeed) -> List[Path]:
        if not feed.static_path.is_file():
            raise ValidationUnavailableError(f"{feed.descriptor.region_id}: no static feed on disk")
        try:
            completed = subprocess.run(
                self._argv(feed),
                cwd=feed.path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ValidationUnavailableError(f"{feed.descriptor.region_id}: {exc}") from exc
        if completed.returncode != 0:
            tail = (completed.stderr or completed.stdout or "").strip().splitlines()[-1:]
            raise ValidationUnavailableError(
                f"{feed.descriptor.region_id}: validator exited with {completed.returncode}"
                + (f" ({tail[0]})" if tail else "")
            )
        results = find_results(feed.path)
        if not results:
            raise ValidationUnavailableError(f"{feed.descriptor.region_id}: validator produced no results")
        return results


def _validate_one(validator: Validator, feed: OnDiskFeed, logger: logging.Logger) -> ValidationOutcome:
    try:
        results = validator.validate(feed)
    except ValidationUnavailableError as exc:
        logger.warning("validation unavailable for %s: %s", feed.descriptor.region_id, exc)
        return ValidationOutcome(feed.descriptor.region_id, feed.path.name, [], str(exc))
    logger.debug("validated %s: %d results files", feed.descriptor.region_id, len(results))
    return ValidationOutcome(feed.descriptor.region_id, feed.path.name, [str(p) for p in results])


def validate_feeds(
    feed_root: Path,
    validator: Validator,
    *,
    max_workers: int = 4,
    logger: Optional[logging.Logger] = None,
) -> List[ValidationOutcome]:
    logger = logger or get_logger("validation")
    feeds = discover_feeds(feed_root, logger)
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        outcomes = list(pool.map(lambda feed: _validate_one(validator, feed, logger), feeds))
    failed = sum(1 for o in outcomes if not o.ok)
    logger.info("validation finished: %d feeds, %d without results", len(outcomes), failed)
    return outcomes
