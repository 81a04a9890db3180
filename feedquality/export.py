from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.utils.exceptions import IllegalCharacterError

from feedquality.common import write_json
from feedquality.errors import ExportError
from feedquality.logging import get_logger
from feedquality.models import AnalysisOutput

SUMMARY_FIELDS = [
    "generated_at",
    "num_feeds",
    "num_validated",
    "num_feeds_with_errors",
    "num_feeds_with_warnings",
    "error_total",
    "warning_total",
]

FEED_COLUMNS = [
    "region_id",
    "title",
    "folder",
    "status",
    "error_count",
    "warning_count",
    "ignored_count",
    "files_analyzed",
    "analysis_error",
]


def export_json(output: AnalysisOutput, path: str | Path, logger: Optional[logging.Logger] = None) -> Path:
    logger = logger or get_logger("export")
    path = Path(path)
    try:
        write_json(output.to_dict(), path)
    except (OSError, TypeError, ValueError) as exc:
        raise ExportError(f"JSON export to {path} failed: {exc}") from exc
    logger.info("wrote JSON summary %s", path)
    return path


def load_json(path: str | Path) -> AnalysisOutput:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return AnalysisOutput.from_dict(payload)


def _summary_frame(output: AnalysisOutput) -> pd.DataFrame:
    rows: List[Dict[str, object]] = [{"metric": name, "value": getattr(output, name)} for name in SUMMARY_FIELDS]
    rows.append({"metric": "not_validated", "value": len(output.not_validated)})
    rows.append({"metric": "analysis_errors", "value": len(output.analysis_errors)})
    rows.append({"metric": "download_failures", "value": len(output.download_failures)})
    rows.append({"metric": "errors_ignored", "value": ",".join(output.errors_ignored)})
    rows.append({"metric": "warnings_ignored", "value": ",".join(output.warnings_ignored)})
    return pd.DataFrame(rows, columns=["metric", "value"])


def _feeds_frame(output: AnalysisOutput) -> pd.DataFrame:
    rows = [{column: getattr(feed, column) for column in FEED_COLUMNS} for feed in output.feeds]
    return pd.DataFrame(rows, columns=FEED_COLUMNS)


def _feed_codes_frame(output: AnalysisOutput) -> pd.DataFrame:
    rows = []
    for feed in output.feeds:
        for severity, counts in (("error", feed.errors_by_code), ("warning", feed.warnings_by_code)):
            for code, count in counts.items():
                rows.append({"region_id": feed.region_id, "severity": severity, "code": code, "count": count})
    return pd.DataFrame(rows, columns=["region_id", "severity", "code", "count"])


def _codes_frame(totals: Dict[str, int], feeds_per_code: Dict[str, int]) -> pd.DataFrame:
    rows = [
        {"code": code, "count": count, "feeds": feeds_per_code.get(code, 0)}
        for code, count in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    ]
    return pd.DataFrame(rows, columns=["code", "count", "feeds"])


def _not_validated_frame(output: AnalysisOutput) -> pd.DataFrame:
    rows = [{"region_id": region_id, "reason": "not_validated"} for region_id in output.not_validated]
    rows += [{"region_id": item["region_id"], "reason": item["error"]} for item in output.analysis_errors]
    return pd.DataFrame(rows, columns=["region_id", "reason"])


def _failures_frame(output: AnalysisOutput) -> pd.DataFrame:
    columns = ["source", "region_id", "title", "status", "path", "error"]
    return pd.DataFrame([r.to_dict() for r in output.download_failures], columns=columns)


def _clean_cell(value: object) -> object:
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _clean_frame(frame: pd.DataFrame) -> pd.DataFrame:
    # control characters cannot be stored in worksheet cells
    for column in frame.columns:
        frame[column] = frame[column].map(_clean_cell)
    return frame


def workbook_sheets(output: AnalysisOutput) -> Dict[str, pd.DataFrame]:
    sheets = {
        "Summary": _summary_frame(output),
        "Feeds": _feeds_frame(output),
        "Feed Codes": _feed_codes_frame(output),
        "Errors": _codes_frame(output.errors_by_code, output.feeds_per_error),
        "Warnings": _codes_frame(output.warnings_by_code, output.feeds_per_warning),
        "Not Validated": _not_validated_frame(output),
        "Failures": _failures_frame(output),
    }
    return {name: _clean_frame(frame) for name, frame in sheets.items()}


def export_workbook(output: AnalysisOutput, path: str | Path, logger: Optional[logging.Logger] = None) -> Path:
    logger = logger or get_logger("export")
    path = Path(path)
    sheets = workbook_sheets(output)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            for name, frame in sheets.items():
                frame.to_excel(writer, sheet_name=name, index=False)
    except (OSError, ValueError, IllegalCharacterError) as exc:
        raise ExportError(f"workbook export to {path} failed: {exc}") from exc
    logger.info("wrote workbook %s", path)
    return path
