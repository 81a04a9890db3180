#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List


def _read_json(path: Path) -> Dict:
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def _check_feed(feed: Dict, errors: List[str], warnings: List[str]) -> None:
    region_id = feed.get("region_id")
    if not region_id:
        errors.append("Feed entry missing region_id")
        return

    status = feed.get("status")
    if status not in {"validated", "not_validated", "analysis_error"}:
        errors.append(f"Feed {region_id} has unknown status: {status}")

    if status != "validated" and (feed.get("error_count") or feed.get("warning_count")):
        errors.append(f"Feed {region_id} is {status} but carries diagnostic counts")

    if sum((feed.get("errors_by_code") or {}).values()) != feed.get("error_count", 0):
        errors.append(f"Feed {region_id} errors_by_code does not add up to error_count")
    if sum((feed.get("warnings_by_code") or {}).values()) != feed.get("warning_count", 0):
        errors.append(f"Feed {region_id} warnings_by_code does not add up to warning_count")

    if status == "analysis_error" and not feed.get("analysis_error"):
        warnings.append(f"Feed {region_id} failed analysis without a recorded reason")


def run(summary_path: str, fail_on_warning: bool = False) -> int:
    errors: List[str] = []
    warnings: List[str] = []

    summary = _read_json(Path(summary_path))
    if not summary:
        errors.append(f"Summary is empty or missing: {summary_path}")
        return print_result(errors, warnings, fail_on_warning)

    feeds = summary.get("feeds", [])
    region_ids = [f.get("region_id") for f in feeds]
    if len(region_ids) != len(set(region_ids)):
        errors.append("Summary lists a region_id more than once")
    if region_ids != sorted(region_ids, key=str):
        warnings.append("Feeds are not ordered by region_id")

    for feed in feeds:
        _check_feed(feed, errors, warnings)

    validated = [f for f in feeds if f.get("status") == "validated"]
    if summary.get("error_total") != sum(f.get("error_count", 0) for f in validated):
        errors.append("error_total differs from the sum of per-feed error counts")
    if summary.get("warning_total") != sum(f.get("warning_count", 0) for f in validated):
        errors.append("warning_total differs from the sum of per-feed warning counts")

    not_validated = sorted(f.get("region_id") for f in feeds if f.get("status") == "not_validated")
    if sorted(summary.get("not_validated", [])) != not_validated:
        errors.append("not_validated list does not match feed statuses")

    ranking = summary.get("worst_feeds", [])
    keys = [(-item.get("error_count", 0), item.get("region_id")) for item in ranking]
    if keys != sorted(keys):
        errors.append("worst_feeds is not ordered by error count then region_id")

    for item in summary.get("download_failures", []):
        if not item.get("error"):
            warnings.append(f"Download failure without a reason: {item.get('region_id') or item.get('source')}")

    return print_result(errors, warnings, fail_on_warning)


def print_result(errors: List[str], warnings: List[str], fail_on_warning: bool = False) -> int:
    if errors:
        print("Summary check failed with errors:")
        for item in errors:
            print(f"- ERROR: {item}")
    else:
        print("Summary check errors: none")

    if warnings:
        print("Summary check warnings:")
        for item in warnings:
            print(f"- WARNING: {item}")

    if errors or (fail_on_warning and warnings):
        return 1
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Check an analysis summary JSON for internal consistency")
    parser.add_argument("--summary", default="analysis-summary.json")
    parser.add_argument("--fail-on-warning", action="store_true", default=False)
    args = parser.parse_args()

    raise SystemExit(run(args.summary, args.fail_on_warning))


if __name__ == "__main__":
    main()
