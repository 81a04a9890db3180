from __future__ import annotations

import logging
import time
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List
from urllib.parse import urlencode

import requests

from .base import materialize_feed
from feedquality.common import DEFAULT_HEADERS
from feedquality.errors import AuthError, SourceError
from feedquality.logging import get_logger
from feedquality.models import FeedDescriptor, OnDiskFeed

API_BASE_URL = "https://api.transitfeeds.com/v1"
AUTH_STATUSES = {"EMPTYKEY", "INVALIDKEY", "NOKEY", "KEYDISABLED"}
PAGE_LIMIT = 100
MAX_PAGES = 500


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


class TransitFeedsSource:
    """Feeds listed by the TransitFeeds.com catalog API.

    Each GTFS-realtime feed is paired with a static GTFS feed published for
    the same location; locations without a static feed are skipped.
    """

    name = "transitfeeds"

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = API_BASE_URL,
        timeout: float = 60,
        retries: int = 2,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.logger = logger or get_logger("sources.transitfeeds")

    def _get_json(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint}"
        query = {"key": self.api_key, **params}
        attempts = max(1, 1 + int(self.retries))
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = requests.get(url, params=query, timeout=self.timeout, headers=DEFAULT_HEADERS)
                if response.status_code in (401, 403):
                    raise AuthError(f"TransitFeeds API rejected key (HTTP {response.status_code})")
                response.raise_for_status()
                payload = response.json()
                break
            except AuthError:
                raise
            except (requests.RequestException, ValueError) as exc:
                last_exc = exc
                self.logger.debug("%s attempt %d/%d failed: %s", endpoint, attempt, attempts, exc.__class__.__name__)
                if attempt < attempts:
                    time.sleep(min(2 ** (attempt - 1), 5))
        else:
            raise SourceError(f"TransitFeeds {endpoint} failed: {last_exc.__class__.__name__}")

        if not isinstance(payload, dict):
            raise SourceError(f"TransitFeeds {endpoint} returned {type(payload).__name__}, expected an object")
        status = str(payload.get("status", "")).upper()
        if status in AUTH_STATUSES:
            raise AuthError(f"TransitFeeds API rejected key ({status})")
        if status != "OK":
            raise SourceError(f"TransitFeeds {endpoint} returned status {status or 'missing'}")
        results = payload.get("results") or {}
        if not isinstance(results, dict):
            raise SourceError(f"TransitFeeds {endpoint} results are {type(results).__name__}, expected an object")
        return results

    def _list_type(self, feed_type: str) -> List[Dict[str, Any]]:
        feeds: List[Dict[str, Any]] = []
        page = 1
        while page <= MAX_PAGES:
            results = self._get_json("getFeeds", {"type": feed_type, "page": page, "limit": PAGE_LIMIT, "descendants": 1})
            page_feeds = results.get("feeds") or []
            if not isinstance(page_feeds, list):
                raise SourceError(f"TransitFeeds getFeeds page {page} has no feed list")
            feeds.extend(item for item in page_feeds if isinstance(item, dict))
            try:
                num_pages = int(results.get("numPages") or 1)
            except (TypeError, ValueError) as exc:
                raise SourceError(f"TransitFeeds getFeeds returned numPages {results.get('numPages')!r}") from exc
            if page >= num_pages:
                break
            page += 1
        return feeds

    def latest_version_url(self, feed_id: str) -> str:
        return f"{self.base_url}/getLatestFeedVersion?{urlencode({'key': self.api_key, 'feed': feed_id})}"

    def list_feeds(self) -> List[FeedDescriptor]:
        if not self.api_key:
            raise AuthError("No TransitFeeds API key configured")

        static_by_location: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for item in self._list_type("gtfs"):
            location = str(_mapping(item.get("l")).get("id", ""))
            if location and item.get("id"):
                static_by_location[location].append(item)

        descriptors: List[FeedDescriptor] = []
        per_location: Dict[str, int] = defaultdict(int)
        for item in sorted(self._list_type("gtfsrealtime"), key=lambda f: str(f.get("id", ""))):
            location = str(_mapping(item.get("l")).get("id", ""))
            rt_url = _mapping(item.get("u")).get("d")
            if not location or not rt_url:
                self.logger.warning("skipping realtime feed %s without location or URL", item.get("id"))
                continue
            static = sorted(static_by_location.get(location, []), key=lambda f: str(f.get("id")))
            if not static:
                self.logger.warning("skipping realtime feed %s: no static GTFS for location %s", item.get("id"), location)
                continue

            per_location[location] += 1
            region_id = location if per_location[location] == 1 else f"{location}-{per_location[location]}"
            descriptors.append(
                FeedDescriptor(
                    region_id=region_id,
                    title=str(item.get("t") or _mapping(item.get("l")).get("t") or region_id),
                    gtfs_url=self.latest_version_url(str(static[0]["id"])),
                    gtfs_rt_url=str(rt_url),
                )
            )

        self.logger.info("%d feeds listed from TransitFeeds", len(descriptors))
        return descriptors

    def download_feed(self, descriptor: FeedDescriptor, root: Path) -> OnDiskFeed:
        return materialize_feed(
            descriptor,
            root,
            source_name=self.name,
            timeout=self.timeout,
            retries=self.retries,
        )
