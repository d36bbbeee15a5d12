"""
produce_config.loader -- YAML loading and parsing of ledger settings.

Responsibility:
    Read YAML documents, overlay an explicit file on the packaged defaults
    key by key, validate values and build the frozen ``LedgerSettings``.

Architecture position:
    Configuration.  Internal to produce_config; callers use
    ``produce_config.get_active_settings``.

Failure modes:
    - FileNotFoundError if a file does not exist.
    - yaml.YAMLError on malformed YAML.
    - ValueError on unknown sections, unknown keys or invalid values.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from produce_config.schema import (
    AggregateSettings,
    DatabaseSettings,
    LedgerSettings,
    LoggingSettings,
    MatchingSettings,
)
from produce_engines.costing import PricePolicy
from produce_kernel.logging_config import configure_logging

_SECTIONS = {
    "database": ("url", "echo"),
    "logging": ("level",),
    "aggregate": ("price_policy", "block_negative_sales"),
    "matching": ("auto_match_sales",),
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Overlay ``override`` on ``base`` one section and key at a time."""
    merged = {name: dict(values or {}) for name, values in base.items()}
    for name, values in override.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Section '{name}' must be a mapping")
        merged.setdefault(name, {}).update(values)
    return merged


def _as_bool(section: str, key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"{section}.{key} must be true or false, got {value!r}")


def parse_settings(data: dict[str, Any], source: str = "defaults") -> LedgerSettings:
    """
    Validate a merged settings document and build ``LedgerSettings``.

    Raises:
        ValueError: On unknown sections/keys or invalid values.
    """
    for name, values in data.items():
        if name not in _SECTIONS:
            raise ValueError(f"Unknown settings section '{name}'")
        unknown = set(values or {}) - set(_SECTIONS[name])
        if unknown:
            raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")

    database = data.get("database", {})
    url = database.get("url", DatabaseSettings.url)
    if not isinstance(url, str) or not url:
        raise ValueError(f"database.url must be a non-empty string, got {url!r}")

    level = str(data.get("logging", {}).get("level", LoggingSettings.level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {_LOG_LEVELS}, got {level!r}")

    policy_value = data.get("aggregate", {}).get("price_policy", PricePolicy.MAX.value)
    try:
        policy = PricePolicy(policy_value)
    except ValueError:
        raise ValueError(
            f"aggregate.price_policy must be one of "
            f"{[p.value for p in PricePolicy]}, got {policy_value!r}"
        ) from None

    return LedgerSettings(
        database=DatabaseSettings(
            url=url,
            echo=_as_bool("database", "echo", database.get("echo", False)),
        ),
        logging=LoggingSettings(level=level),
        aggregate=AggregateSettings(
            price_policy=policy,
            block_negative_sales=_as_bool(
                "aggregate",
                "block_negative_sales",
                data.get("aggregate", {}).get("block_negative_sales", False),
            ),
        ),
        matching=MatchingSettings(
            auto_match_sales=_as_bool(
                "matching",
                "auto_match_sales",
                data.get("matching", {}).get("auto_match_sales", False),
            )
        ),
        checksum=compute_checksum(data),
        source=source,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical input, identical hash."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def configure_from_settings(settings: LedgerSettings) -> None:
    """Apply the logging level to the produce_kernel logger hierarchy."""
    configure_logging(level=settings.logging.level)
    logging.getLogger("produce_kernel").setLevel(settings.logging.level)
