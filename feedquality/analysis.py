from __future__ import annotations

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from feedquality.common import utc_now
from feedquality.errors import AnalysisIOError
from feedquality.logging import get_logger
from feedquality.models import (
    FEED_ANALYSIS_ERROR,
    FEED_NOT_VALIDATED,
    FEED_VALIDATED,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
    AnalysisOutput,
    Diagnostic,
    DownloadResult,
    FeedAnalysis,
    IgnoreSet,
    OnDiskFeed,
    RankedCode,
    RankedFeed,
)
from feedquality.validation import discover_feeds, find_results

DEFAULT_TOP_N = 10

SEVERITY_ALIASES = {
    "error": SEVERITY_ERROR,
    "err": SEVERITY_ERROR,
    "e": SEVERITY_ERROR,
    "warning": SEVERITY_WARNING,
    "warn": SEVERITY_WARNING,
    "w": SEVERITY_WARNING,
}


def _severity(value: Any, source: Path) -> str:
    severity = SEVERITY_ALIASES.get(str(value or "").strip().lower())
    if severity is None:
        raise AnalysisIOError(f"{source.name}: unknown severity {value!r}")
    return severity


def _entry_to_diagnostic(entry: Any, region_id: str, source: Path) -> Diagnostic:
    if not isinstance(entry, dict):
        raise AnalysisIOError(f"{source.name}: diagnostic entry is not an object")

    error_message = entry.get("errorMessage")
    if isinstance(error_message, dict) and isinstance(error_message.get("validationRule"), dict):
        # gtfs-realtime-validator shape: errorMessage.validationRule + occurrenceList
        rule = error_message["validationRule"]
        code = rule.get("errorId")
        severity = rule.get("severity")
        message = rule.get("title") or ""
        location = source.name
        occurrence_list = entry.get("occurrenceList")
        occurrences = len(occurrence_list) if isinstance(occurrence_list, list) else 1
    else:
        code = entry.get("code")
        severity = entry.get("severity")
        message = entry.get("message") or ""
        location = entry.get("location") or source.name
        occurrences = int(entry.get("occurrences") or 1)

    if not code or not str(code).strip():
        raise AnalysisIOError(f"{source.name}: diagnostic entry without a code")
    return Diagnostic(
        code=str(code).strip(),
        severity=_severity(severity, source),
        region_id=region_id,
        message=str(message),
        location=str(location),
        occurrences=max(1, occurrences),
    )


def read_diagnostics(path: Path, region_id: str) -> List[Diagnostic]:
    """Parse one diagnostics file, raising ``AnalysisIOError`` on any problem."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        raise AnalysisIOError(f"{path.name}: {exc.__class__.__name__}: {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("diagnostics")
    if not isinstance(payload, list):
        raise AnalysisIOError(f"{path.name}: expected a list of diagnostics")
    try:
        return [_entry_to_diagnostic(entry, region_id, path) for entry in payload]
    except (TypeError, ValueError) as exc:
        raise AnalysisIOError(f"{path.name}: {exc}") from exc


def filter_diagnostics(diagnostics: Iterable[Diagnostic], ignore: IgnoreSet) -> Tuple[List[Diagnostic], int]:
    kept: List[Diagnostic] = []
    ignored = 0
    for diagnostic in diagnostics:
        if ignore.suppresses(diagnostic):
            ignored += 1
            continue
        kept.append(diagnostic)
    return kept, ignored


def analyze_feed(feed: OnDiskFeed, ignore: IgnoreSet) -> FeedAnalysis:
    region_id = feed.descriptor.region_id
    title = feed.descriptor.title
    files = find_results(feed.path)
    if not files:
        return FeedAnalysis(region_id=region_id, title=title, folder=feed.path.name, status=FEED_NOT_VALIDATED)

    raw: List[Diagnostic] = []
    try:
        for path in files:
            raw.extend(read_diagnostics(path, region_id))
    except AnalysisIOError as exc:
        return FeedAnalysis(
            region_id=region_id,
            title=title,
            folder=feed.path.name,
            status=FEED_ANALYSIS_ERROR,
            files_analyzed=len(files),
            analysis_error=str(exc),
        )

    kept, ignored = filter_diagnostics(raw, ignore)
    errors = Counter(d.code for d in kept if d.severity == SEVERITY_ERROR)
    warnings = Counter(d.code for d in kept if d.severity == SEVERITY_WARNING)
    return FeedAnalysis(
        region_id=region_id,
        title=title,
        folder=feed.path.name,
        status=FEED_VALIDATED,
        error_count=sum(errors.values()),
        warning_count=sum(warnings.values()),
        errors_by_code=dict(sorted(errors.items())),
        warnings_by_code=dict(sorted(warnings.items())),
        ignored_count=ignored,
        files_analyzed=len(files),
        diagnostics=kept,
    )


def _rank_codes(totals: Counter, feeds_per_code: Counter, top_n: int) -> List[RankedCode]:
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [RankedCode(code=code, count=count, feeds=feeds_per_code[code]) for code, count in ordered[:top_n]]


def _rank_feeds(feeds: Sequence[FeedAnalysis], top_n: int) -> List[RankedFeed]:
    candidates = [f for f in feeds if f.status == FEED_VALIDATED and f.error_count > 0]
    candidates.sort(key=lambda f: (-f.error_count, f.region_id))
    return [
        RankedFeed(region_id=f.region_id, title=f.title, error_count=f.error_count, warning_count=f.warning_count)
        for f in candidates[:top_n]
    ]


def build_output(
    feeds: Sequence[FeedAnalysis],
    ignore: IgnoreSet,
    download_results: Sequence[DownloadResult] = (),
    *,
    top_n: int = DEFAULT_TOP_N,
    generated_at: Optional[str] = None,
) -> AnalysisOutput:
    feeds = sorted(feeds, key=lambda f: (f.region_id, f.folder))
    validated = [f for f in feeds if f.status == FEED_VALIDATED]

    errors_by_code: Counter = Counter()
    warnings_by_code: Counter = Counter()
    feeds_per_error: Counter = Counter()
    feeds_per_warning: Counter = Counter()
    for feed in validated:
        errors_by_code.update(feed.errors_by_code)
        warnings_by_code.update(feed.warnings_by_code)
        feeds_per_error.update(feed.errors_by_code.keys())
        feeds_per_warning.update(feed.warnings_by_code.keys())

    return AnalysisOutput(
        generated_at=generated_at or utc_now(),
        errors_ignored=sorted(ignore.errors),
        warnings_ignored=sorted(ignore.warnings),
        feeds=list(feeds),
        num_feeds=len(feeds),
        num_validated=len(validated),
        num_feeds_with_errors=sum(1 for f in validated if f.error_count),
        num_feeds_with_warnings=sum(1 for f in validated if f.warning_count),
        error_total=sum(f.error_count for f in validated),
        warning_total=sum(f.warning_count for f in validated),
        errors_by_code=dict(sorted(errors_by_code.items())),
        warnings_by_code=dict(sorted(warnings_by_code.items())),
        feeds_per_error=dict(sorted(feeds_per_error.items())),
        feeds_per_warning=dict(sorted(feeds_per_warning.items())),
        worst_feeds=_rank_feeds(feeds, top_n),
        most_common_errors=_rank_codes(errors_by_code, feeds_per_error, top_n),
        most_common_warnings=_rank_codes(warnings_by_code, feeds_per_warning, top_n),
        not_validated=[f.region_id for f in feeds if f.status == FEED_NOT_VALIDATED],
        analysis_errors=[
            {"region_id": f.region_id, "error": f.analysis_error or ""}
            for f in feeds
            if f.status == FEED_ANALYSIS_ERROR
        ],
        download_failures=[r for r in download_results if r.failed],
    )


def analyze(
    feed_root: Path,
    ignore_errors: str | Iterable[str] | None = None,
    ignore_warnings: str | Iterable[str] | None = None,
    download_results: Sequence[DownloadResult] = (),
    *,
    top_n: int = DEFAULT_TOP_N,
    generated_at: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> AnalysisOutput:
    """Aggregate the diagnostics of every feed folder under ``feed_root``.

    Ignore lists are severity-scoped: ``ignore_errors`` only drops
    error-severity diagnostics, ``ignore_warnings`` only warnings. Feeds with
    no diagnostics files are ``not_validated`` and feeds with an unreadable
    file are ``analysis_error``; neither contributes to the totals.
    """
    logger = logger or get_logger("analysis")
    ignore = IgnoreSet.parse(ignore_errors, ignore_warnings)
    feeds = [analyze_feed(feed, ignore) for feed in discover_feeds(Path(feed_root), logger)]

    for feed in feeds:
        if feed.status == FEED_ANALYSIS_ERROR:
            logger.warning("could not analyze %s: %s", feed.region_id, feed.analysis_error)

    output = build_output(feeds, ignore, download_results, top_n=top_n, generated_at=generated_at)
    logger.info(
        "analyzed %d feeds (%d validated, %d not validated, %d unreadable): %d errors, %d warnings",
        output.num_feeds,
        output.num_validated,
        len(output.not_validated),
        len(output.analysis_errors),
        output.error_total,
        output.warning_total,
    )
    return output


__all__ = [
    "analyze",
    "analyze_feed",
    "build_output",
    "filter_diagnostics",
    "read_diagnostics",
]
