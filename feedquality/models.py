from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from feedquality.common import sanitize_path_component

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"
SEVERITIES = (SEVERITY_ERROR, SEVERITY_WARNING)

STATUS_DOWNLOADED = "downloaded"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

FEED_VALIDATED = "validated"
FEED_NOT_VALIDATED = "not_validated"
FEED_ANALYSIS_ERROR = "analysis_error"

STATIC_DIR = "gtfs"
STATIC_FILE = "gtfs.zip"
REALTIME_DIR = "gtfs-rt"
DESCRIPTOR_FILE = "feed.json"
RESULTS_SUFFIX = ".results.json"


@dataclass(frozen=True)
class FeedDescriptor:
    region_id: str
    title: str
    gtfs_url: str
    gtfs_rt_url: Optional[str] = None

    @property
    def folder_name(self) -> str:
        return f"{sanitize_path_component(self.region_id)}-{sanitize_path_component(self.title)}"

    def to_dict(self, *, include_urls: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"region_id": self.region_id, "title": self.title}
        if include_urls:
            payload["gtfs_url"] = self.gtfs_url
            payload["gtfs_rt_url"] = self.gtfs_rt_url
        return payload


@dataclass(frozen=True)
class OnDiskFeed:
    descriptor: FeedDescriptor
    path: Path

    @property
    def static_path(self) -> Path:
        return self.path / STATIC_DIR / STATIC_FILE

    @property
    def realtime_dir(self) -> Path:
        return self.path / REALTIME_DIR

    @property
    def realtime_paths(self) -> List[Path]:
        if not self.realtime_dir.is_dir():
            return []
        return sorted(p for p in self.realtime_dir.iterdir() if p.is_file() and not p.name.endswith(".part"))

    @classmethod
    def for_descriptor(cls, descriptor: FeedDescriptor, root: Path) -> "OnDiskFeed":
        return cls(descriptor=descriptor, path=Path(root) / descriptor.folder_name)


@dataclass(frozen=True)
class DownloadResult:
    source: str
    region_id: Optional[str]
    title: Optional[str]
    status: str
    path: Optional[str] = None
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.status == STATUS_SKIPPED

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["skipped"] = self.skipped
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DownloadResult":
        return cls(
            source=payload["source"],
            region_id=payload.get("region_id"),
            title=payload.get("title"),
            status=payload["status"],
            path=payload.get("path"),
            error=payload.get("error"),
        )


@dataclass(frozen=True)
class Diagnostic:
    code: str
    severity: str
    region_id: str
    message: str = ""
    location: str = ""
    occurrences: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Diagnostic":
        return cls(**payload)


def parse_codes(value: str | Iterable[str] | None) -> frozenset[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(code.strip() for code in value if code and code.strip())


@dataclass(frozen=True)
class IgnoreSet:
    errors: frozenset[str] = frozenset()
    warnings: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, errors: str | Iterable[str] | None, warnings: str | Iterable[str] | None) -> "IgnoreSet":
        return cls(errors=parse_codes(errors), warnings=parse_codes(warnings))

    def suppresses(self, diagnostic: Diagnostic) -> bool:
        # Each list only applies to its own severity.
        if diagnostic.severity == SEVERITY_ERROR:
            return diagnostic.code in self.errors
        if diagnostic.severity == SEVERITY_WARNING:
            return diagnostic.code in self.warnings
        return False


@dataclass(frozen=True)
class FeedAnalysis:
    region_id: str
    title: str
    folder: str
    status: str
    error_count: int = 0
    warning_count: int = 0
    errors_by_code: Dict[str, int] = field(default_factory=dict)
    warnings_by_code: Dict[str, int] = field(default_factory=dict)
    ignored_count: int = 0
    files_analyzed: int = 0
    diagnostics: List[Diagnostic] = field(default_factory=list)
    analysis_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["diagnostics"] = [d.to_dict() for d in self.diagnostics]
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FeedAnalysis":
        data = dict(payload)
        data["diagnostics"] = [Diagnostic.from_dict(d) for d in data.get("diagnostics", [])]
        return cls(**data)


@dataclass(frozen=True)
class RankedCode:
    code: str
    count: int
    feeds: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RankedFeed:
    region_id: str
    title: str
    error_count: int
    warning_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AnalysisOutput:
    generated_at: str
    errors_ignored: List[str]
    warnings_ignored: List[str]
    feeds: List[FeedAnalysis]
    num_feeds: int
    num_validated: int
    num_feeds_with_errors: int
    num_feeds_with_warnings: int
    error_total: int
    warning_total: int
    errors_by_code: Dict[str, int]
    warnings_by_code: Dict[str, int]
    feeds_per_error: Dict[str, int]
    feeds_per_warning: Dict[str, int]
    worst_feeds: List[RankedFeed]
    most_common_errors: List[RankedCode]
    most_common_warnings: List[RankedCode]
    not_validated: List[str]
    analysis_errors: List[Dict[str, str]]
    download_failures: List[DownloadResult]

    def feed(self, region_id: str) -> Optional[FeedAnalysis]:
        for item in self.feeds:
            if item.region_id == region_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["feeds"] = [f.to_dict() for f in self.feeds]
        payload["download_failures"] = [d.to_dict() for d in self.download_failures]
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AnalysisOutput":
        data = dict(payload)
        data["feeds"] = [FeedAnalysis.from_dict(f) for f in data.get("feeds", [])]
        data["worst_feeds"] = [RankedFeed(**r) for r in data.get("worst_feeds", [])]
        data["most_common_errors"] = [RankedCode(**r) for r in data.get("most_common_errors", [])]
        data["most_common_warnings"] = [RankedCode(**r) for r in data.get("most_common_warnings", [])]
        data["download_failures"] = [DownloadResult.from_dict(d) for d in data.get("download_failures", [])]
        return cls(**data)
