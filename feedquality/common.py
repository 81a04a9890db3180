from __future__ import annotations

import hashlib
import json
import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

import requests

from feedquality.errors import DownloadError
from feedquality.logging import get_logger, redact

DEFAULT_HEADERS = {
    "user-agent": "feedquality/0.1 (+transit-feed-quality)",
}

CHUNK_SIZE = 1024 * 1024

_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._ -]+")

logger = get_logger("common")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


def sha256_for_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def ensure_dirs(*paths: str | Path) -> None:
    for p in paths:
        Path(p).mkdir(parents=True, exist_ok=True)


def sanitize_path_component(value: str) -> str:
    cleaned = _UNSAFE_PATH_CHARS.sub("_", str(value)).strip(" .")
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned or "_"


def is_nonempty_file(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def write_json(payload: Dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def getenv(name: str, default: str | None = None) -> str | None:
    return os.getenv(name, default)


def write_url_to_file(
    url: str,
    destination: Path,
    *,
    timeout: float = 60,
    retries: int = 2,
    headers: Dict[str, str] | None = None,
) -> Path:
    """Stream ``url`` into ``destination``, creating parent directories.

    The body lands in a ``.part`` sibling first and is moved into place only
    once complete, so an interrupted fetch never leaves a truncated file that
    looks like a finished download. Each attempt carries its own timeout;
    after ``1 + retries`` failed attempts a :class:`DownloadError` is raised.
    """
    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")
    attempts = max(1, 1 + int(retries))
    last_exc: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            with requests.get(url, stream=True, timeout=timeout, headers=headers or DEFAULT_HEADERS) as response:
                response.raise_for_status()
                with partial.open("wb") as handle:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            handle.write(chunk)
            os.replace(partial, destination)
            return destination
        except (requests.RequestException, OSError) as exc:
            last_exc = exc
            partial.unlink(missing_ok=True)
            logger.debug("attempt %d/%d for %s failed: %s", attempt, attempts, redact(url), exc)
            if attempt < attempts:
                time.sleep(min(2 ** (attempt - 1), 5))

    raise DownloadError(f"{redact(url)}: {last_exc.__class__.__name__}: {redact(str(last_exc))}")
