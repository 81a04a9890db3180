from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from feedquality import CalculationResult
from feedquality.analysis import analyze
from feedquality.common import ensure_dirs
from feedquality.config import RunConfig, load_config
from feedquality.download import run_downloads
from feedquality.errors import ConfigError, ExportError, FeedQualityError
from feedquality.export import export_json, export_workbook
from feedquality.logging import configure_logging, get_logger
from feedquality.models import DownloadResult
from feedquality.sources import CsvFeedSource, FeedSource, TransitFeedsSource
from feedquality.validation import CommandValidator, validate_feeds


def build_sources(config: RunConfig, logger: logging.Logger) -> List[FeedSource]:
    sources: List[FeedSource] = []
    if config.csv_path is not None:
        sources.append(
            CsvFeedSource(config.csv_path, timeout=config.timeout, retries=config.retries, logger=logger.getChild("csv"))
        )
    if config.api_key:
        sources.append(
            TransitFeedsSource(
                config.api_key,
                timeout=config.timeout,
                retries=config.retries,
                logger=logger.getChild("transitfeeds"),
            )
        )
    return sources


def run_calculation(config: RunConfig, logger: Optional[logging.Logger] = None) -> CalculationResult:
    """Download, validate, analyze and export in one pass.

    Only a failure to create ``config.output_dir`` (``OSError``) escapes;
    everything per-feed is carried into the report instead.
    """
    logger = logger or get_logger("calculate")
    root = Path(config.output_dir)
    ensure_dirs(root)

    download_results: List[DownloadResult] = []
    sources = build_sources(config, logger)
    if not sources:
        logger.warning("%s", ConfigError("No TransitFeeds API key or CSV file provided - no feeds will be downloaded"))
    elif config.download_feeds:
        download_results = run_downloads(
            sources,
            root,
            config.force_download,
            max_workers=config.max_workers,
            logger=logger.getChild("download"),
        )

    if config.validate_feeds:
        if config.validator_command:
            validator = CommandValidator(config.validator_command, timeout=config.validator_timeout)
            validate_feeds(root, validator, max_workers=config.max_workers, logger=logger.getChild("validation"))
        else:
            logger.warning("No validator command configured - analyzing results already on disk")

    output = analyze(
        root,
        config.errors_to_ignore,
        config.warnings_to_ignore,
        download_results,
        top_n=config.top_n,
        logger=logger.getChild("analysis"),
    )

    json_path: Optional[str] = None
    excel_path: Optional[str] = None
    export_errors: List[str] = []

    if config.excel_output:
        try:
            excel_path = str(export_workbook(output, config.excel_output, logger=logger.getChild("export")))
        except ExportError as exc:
            logger.error("%s", exc)
            export_errors.append(str(exc))

    try:
        json_path = str(export_json(output, config.json_output, logger=logger.getChild("export")))
    except ExportError as exc:
        logger.error("%s", exc)
        export_errors.append(str(exc))

    return CalculationResult(
        json_path=json_path,
        excel_path=excel_path,
        feeds_analyzed=output.num_feeds,
        download_failures=len(output.download_failures),
        export_errors=tuple(export_errors),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedquality",
        description="Download transit feeds, validate them and summarize the validation results",
    )
    parser.add_argument("--config", help="YAML file with run settings")
    parser.add_argument("--output-dir", help="directory holding one folder per feed")
    parser.add_argument("--csv", dest="csv_path", help="CSV manifest: region_id,title,gtfs_url,gtfs_rt_url")
    parser.add_argument("--api-key", help="TransitFeeds.com API key (or TRANSITFEEDS_API_KEY)")
    parser.add_argument("--download", dest="download_feeds", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument(
        "--force-download",
        dest="force_download",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="download the static GTFS again even if it is already on disk",
    )
    parser.add_argument("--validate", dest="validate_feeds", action=argparse.BooleanOptionalAction, default=None)
    parser.add_argument("--validator-command", help="validator command with {gtfs}, {gtfs_rt}, {feed_dir} placeholders")
    parser.add_argument("--ignore-errors", dest="errors_to_ignore", help="comma-separated error codes, e.g. E017,E018")
    parser.add_argument("--ignore-warnings", dest="warnings_to_ignore", help="comma-separated warning codes, e.g. W007,W008")
    parser.add_argument("--json-output", help="JSON summary file name")
    parser.add_argument("--excel-output", help="Excel workbook file name (empty string disables)")
    parser.add_argument("--max-workers", type=int)
    parser.add_argument("--timeout", type=float, help="per-request timeout in seconds")
    parser.add_argument("--retries", type=int, help="extra attempts per request")
    parser.add_argument("--top-n", type=int, help="length of the ranking tables")
    parser.add_argument("--verbose", action="store_true", default=False)
    parser.add_argument("--log-file", type=Path)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = configure_logging(verbose=args.verbose, log_file=args.log_file)

    overrides = {
        name: getattr(args, name)
        for name in (
            "output_dir",
            "csv_path",
            "api_key",
            "download_feeds",
            "force_download",
            "validate_feeds",
            "validator_command",
            "errors_to_ignore",
            "warnings_to_ignore",
            "json_output",
            "excel_output",
            "max_workers",
            "timeout",
            "retries",
            "top_n",
        )
    }
    try:
        config = load_config(args.config).with_overrides(**overrides)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2

    logger.debug("run config: %s", config.redacted())
    try:
        result = run_calculation(config, logger=logger)
    except (FeedQualityError, OSError) as exc:
        logger.error("run aborted: %s", exc)
        return 1

    logger.info(
        "Calculation complete. %d feeds analyzed, %d download failures. JSON: %s Excel: %s",
        result.feeds_analyzed,
        result.download_failures,
        result.json_path,
        result.excel_path,
    )
    return 1 if result.export_errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
