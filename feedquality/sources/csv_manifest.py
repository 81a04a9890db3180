from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import pandas as pd

from .base import materialize_feed
from feedquality.errors import MalformedRowError, SourceError
from feedquality.logging import get_logger
from feedquality.models import FeedDescriptor, OnDiskFeed

MANIFEST_COLUMNS = ["region_id", "title", "gtfs_url", "gtfs_rt_url"]


def _cell(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def read_manifest(path: Path) -> pd.DataFrame:
    """Load the manifest CSV; the header row is optional."""
    try:
        df = pd.read_csv(path, header=None, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError:
        return pd.DataFrame(columns=MANIFEST_COLUMNS)
    if df.empty:
        return pd.DataFrame(columns=MANIFEST_COLUMNS)

    df = df.iloc[:, : len(MANIFEST_COLUMNS)].copy()
    while df.shape[1] < len(MANIFEST_COLUMNS):
        df[df.shape[1]] = ""
    df.columns = MANIFEST_COLUMNS

    first = [_cell(v).lower() for v in df.iloc[0].tolist()]
    if first[0] == "region_id" and first[2] == "gtfs_url":
        df = df.iloc[1:]
    return df.reset_index(drop=True)


def descriptor_from_row(row: dict, line_no: int) -> FeedDescriptor:
    region_id = _cell(row.get("region_id"))
    title = _cell(row.get("title"))
    gtfs_url = _cell(row.get("gtfs_url"))
    gtfs_rt_url = _cell(row.get("gtfs_rt_url")) or None
    if not region_id:
        raise MalformedRowError(f"row {line_no}: empty region_id")
    if not gtfs_url:
        raise MalformedRowError(f"row {line_no} ({region_id}): empty gtfs_url")
    return FeedDescriptor(region_id=region_id, title=title or region_id, gtfs_url=gtfs_url, gtfs_rt_url=gtfs_rt_url)


class CsvFeedSource:
    name = "csv"

    def __init__(
        self,
        csv_path: str | Path,
        *,
        timeout: float = 60,
        retries: int = 2,
        logger: logging.Logger | None = None,
    ) -> None:
        self.csv_path = Path(csv_path)
        self.timeout = timeout
        self.retries = retries
        self.logger = logger or get_logger("sources.csv")

    def list_feeds(self) -> List[FeedDescriptor]:
        if not self.csv_path.is_file():
            raise SourceError(f"CSV manifest not found: {self.csv_path}")
        try:
            df = read_manifest(self.csv_path)
        except (OSError, pd.errors.ParserError, UnicodeDecodeError) as exc:
            raise SourceError(f"CSV manifest unreadable: {self.csv_path}: {exc}") from exc

        feeds: List[FeedDescriptor] = []
        seen: set[str] = set()
        for index, row in enumerate(df.to_dict("records"), start=1):
            try:
                descriptor = descriptor_from_row(row, index)
            except MalformedRowError as exc:
                self.logger.warning("skipping malformed manifest row: %s", exc)
                continue
            if descriptor.region_id in seen:
                self.logger.warning("skipping duplicate region_id %s in %s", descriptor.region_id, self.csv_path)
                continue
            seen.add(descriptor.region_id)
            feeds.append(descriptor)

        self.logger.info("%d feeds listed from %s", len(feeds), self.csv_path)
        return feeds

    def download_feed(self, descriptor: FeedDescriptor, root: Path) -> OnDiskFeed:
        return materialize_feed(
            descriptor,
            root,
            source_name=self.name,
            timeout=self.timeout,
            retries=self.retries,
        )
