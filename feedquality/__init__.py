"""Bulk download, validation and results analysis for transit feeds."""

from dataclasses import dataclass

__version__ = "0.1.0"


@dataclass(frozen=True)
class CalculationResult:
    json_path: str | None
    excel_path: str | None
    feeds_analyzed: int
    download_failures: int
    export_errors: tuple[str, ...] = ()
