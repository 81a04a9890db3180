from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from feedquality.common import getenv
from feedquality.errors import ConfigError

API_KEY_ENV = "TRANSITFEEDS_API_KEY"


@dataclass(frozen=True)
class RunConfig:
    output_dir: Path = Path("feeds")
    download_feeds: bool = True
    force_download: bool = True
    validate_feeds: bool = True
    csv_path: Optional[Path] = None
    api_key: Optional[str] = None
    errors_to_ignore: str = "E017,E018"
    warnings_to_ignore: str = "W007,W008"
    json_output: str = "analysis-summary.json"
    excel_output: Optional[str] = "analysis-summary.xlsx"
    max_workers: int = 8
    timeout: float = 60
    retries: int = 2
    validator_command: Optional[str] = None
    validator_timeout: float = 600
    top_n: int = 10

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        values = {k: v for k, v in overrides.items() if v is not None}
        return _coerce(replace(self, **values)) if values else self

    def redacted(self) -> Dict[str, Any]:
        payload = {f.name: getattr(self, f.name) for f in fields(self)}
        if payload.get("api_key"):
            payload["api_key"] = "***"
        return {k: str(v) if isinstance(v, Path) else v for k, v in payload.items()}


_BOOL_FIELDS = {"download_feeds", "force_download", "validate_feeds"}
_INT_FIELDS = {"max_workers", "retries", "top_n"}
_FLOAT_FIELDS = {"timeout", "validator_timeout"}
_PATH_FIELDS = {"output_dir", "csv_path"}


def _coerce(config: RunConfig) -> RunConfig:
    values: Dict[str, Any] = {}
    for f in fields(config):
        value = getattr(config, f.name)
        if value is None:
            continue
        try:
            if f.name in _BOOL_FIELDS:
                if isinstance(value, str):
                    lowered = value.strip().lower()
                    if lowered not in {"true", "false", "yes", "no", "1", "0"}:
                        raise ValueError(value)
                    value = lowered in {"true", "yes", "1"}
                elif not isinstance(value, bool):
                    raise ValueError(value)
            elif f.name in _INT_FIELDS:
                value = int(value)
                if value < 0 or (f.name == "max_workers" and value < 1):
                    raise ValueError(value)
            elif f.name in _FLOAT_FIELDS:
                value = float(value)
                if value <= 0:
                    raise ValueError(value)
            elif f.name in _PATH_FIELDS:
                value = Path(value)
            elif f.name in {"errors_to_ignore", "warnings_to_ignore"} and isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            else:
                value = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for {f.name}: {value!r}") from exc
        values[f.name] = value

    # Empty strings switch optional outputs/inputs off.
    for name in ("excel_output", "api_key", "validator_command"):
        if values.get(name) == "":
            values[name] = None
    return replace(config, **values)


def load_config(path: str | Path | None = None) -> RunConfig:
    """Build a RunConfig from an optional YAML file plus the environment."""
    payload: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(RunConfig)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    if not payload.get("api_key") and getenv(API_KEY_ENV):
        payload["api_key"] = getenv(API_KEY_ENV)

    return _coerce(RunConfig(**payload))
