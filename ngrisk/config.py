from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .core.errors import InvocationError
from .core.loader import DEFAULT_EXCLUDE, DEFAULT_INCLUDE
from .core.models import SEVERITY_RANK

DEFAULT_CONFIG_NAME = ".ngrisk.yaml"
OUTPUT_FORMATS = ("human", "json")

_LIST_KEYS = ("include", "exclude", "catalogues", "disabled_rules")
_KNOWN_KEYS = {
    "include",
    "exclude",
    "severity_threshold",
    "fail_on",
    "format",
    "catalogues",
    "disabled_rules",
    "workers",
    "max_file_size_kb",
    "out",
}


def default_workers() -> int:
    return min(8, os.cpu_count() or 1)


@dataclass
class ScanConfig:
    include: list[str] = field(default_factory=lambda: DEFAULT_INCLUDE.copy())
    exclude: list[str] = field(default_factory=lambda: DEFAULT_EXCLUDE.copy())
    severity_threshold: str = "low"
    fail_on: str = "critical"
    output_format: str = "human"
    catalogues: list[str] = field(default_factory=list)
    disabled_rules: list[str] = field(default_factory=list)
    workers: int = field(default_factory=default_workers)
    max_file_size_kb: int = 1024
    out: str | None = None


def load_config(path: str | Path | None, root: str | Path | None = None) -> ScanConfig:
    """Read a YAML config file.

    With no explicit path, ``.ngrisk.yaml`` in the scan root is used when it
    exists; otherwise defaults apply. Relative catalogue paths resolve against
    the config file's directory.
    """
    if path is None:
        if root is None or not Path(root).is_dir():
            return ScanConfig()
        candidate = Path(root) / DEFAULT_CONFIG_NAME
        if not candidate.is_file():
            return ScanConfig()
        path = candidate

    cfg_path = Path(path)
    if not cfg_path.is_file():
        raise InvocationError(f"config file not found: {cfg_path}")

    try:
        with cfg_path.open(encoding="utf-8") as fh:
            payload = yaml.safe_load(fh) or {}
    except yaml.YAMLError as e:
        raise InvocationError(f"{cfg_path}: invalid YAML: {e}") from None

    if not isinstance(payload, dict):
        raise InvocationError(f"{cfg_path}: expected a YAML mapping at top level")

    unknown = sorted(set(payload) - _KNOWN_KEYS)
    if unknown:
        raise InvocationError(f"{cfg_path}: unknown config keys: {', '.join(unknown)}")

    config = ScanConfig()
    for key in _LIST_KEYS:
        if key in payload:
            setattr(config, key, _as_list(payload[key], key, cfg_path))
    config.catalogues = [c if Path(c).is_absolute() else str(cfg_path.parent / c) for c in config.catalogues]
    config.severity_threshold = str(payload.get("severity_threshold", config.severity_threshold)).lower()
    config.fail_on = str(payload.get("fail_on", config.fail_on)).lower()
    config.output_format = str(payload.get("format", config.output_format)).lower()
    config.workers = _as_int(payload.get("workers", config.workers), "workers", cfg_path)
    config.max_file_size_kb = _as_int(payload.get("max_file_size_kb", config.max_file_size_kb), "max_file_size_kb", cfg_path)
    config.out = payload.get("out", config.out)
    return config


def validate_config(config: ScanConfig) -> list[str]:
    """Return a list of error strings; empty when the config is usable."""
    errors: list[str] = []
    valid_levels = ", ".join(SEVERITY_RANK)
    if config.severity_threshold not in SEVERITY_RANK:
        errors.append(f"severity_threshold must be one of: {valid_levels}")
    if config.fail_on not in SEVERITY_RANK:
        errors.append(f"fail_on must be one of: {valid_levels}")
    if config.output_format not in OUTPUT_FORMATS:
        errors.append(f"format must be one of: {', '.join(OUTPUT_FORMATS)}")
    if not config.include:
        errors.append("include must name at least one extension")
    if config.workers < 1:
        errors.append("workers must be >= 1")
    if config.max_file_size_kb < 0:
        errors.append("max_file_size_kb must be >= 0")
    if config.out is not None and not (isinstance(config.out, str) and config.out.strip()):
        errors.append("out must be a file path")
    return errors


def split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_list(value, key: str, cfg_path: Path) -> list[str]:
    if isinstance(value, str):
        return split_csv(value)
    if isinstance(value, list):
        return [str(v) for v in value]
    raise InvocationError(f"{cfg_path}: '{key}' must be a list or comma-separated string")


def _as_int(value, key: str, cfg_path: Path) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvocationError(f"{cfg_path}: '{key}' must be an integer") from None
