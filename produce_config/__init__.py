"""
produce_config -- single public entrypoint for ledger settings.

Responsibility:
    Provides the only way to obtain runtime settings through
    ``get_active_settings()``.  The packaged ``defaults.yaml`` is always
    loaded; an explicit YAML file, when given, overrides it key by key.
    Returns a frozen ``LedgerSettings``.

Architecture position:
    Configuration.  Sits above ``produce_kernel`` and below
    ``produce_services``.  The kernel MUST NEVER import from
    ``produce_config``; the facade reads the settings and passes plain
    values (price policy, auto-match default) into kernel services.

Invariants enforced:
    - Deterministic: the same YAML input always yields the same checksum.
    - Unknown sections, unknown keys and invalid values are rejected.

Failure modes:
    - ``FileNotFoundError`` -- an explicit settings file does not exist.
    - ``ValueError`` -- schema or value validation failures.

Audit relevance:
    Every successful ``get_active_settings()`` call emits a
    ``settings_loaded`` log entry (trace_type ``PRODUCE_CONFIG_TRACE``)
    with the source and checksum of the effective settings.
"""

from __future__ import annotations

import logging
from pathlib import Path

from produce_config.loader import (
    compute_checksum,
    configure_from_settings,
    load_yaml_file,
    merge_settings,
    parse_settings,
)
from produce_config.schema import (
    AggregateSettings,
    DatabaseSettings,
    LedgerSettings,
    LoggingSettings,
    MatchingSettings,
)

_logger = logging.getLogger("produce_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_settings(path: Path | str | None = None) -> LedgerSettings:
    """The only public settings entrypoint.

    Args:
        path: Optional YAML file overriding the packaged defaults.

    Returns:
        LedgerSettings -- frozen, validated settings with their checksum.

    Raises:
        FileNotFoundError: If ``path`` is given and does not exist.
        ValueError: If the merged settings fail validation.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = "defaults"
    if path is not None:
        override_path = Path(path)
        if not override_path.is_file():
            raise FileNotFoundError(f"Settings file not found: {override_path}")
        data = merge_settings(data, load_yaml_file(override_path))
        source = str(override_path)

    settings = parse_settings(data, source=source)

    _logger.info(
        "settings_loaded",
        extra={
            "trace_type": "PRODUCE_CONFIG_TRACE",
            "source": settings.source,
            "checksum": settings.checksum,
            "price_policy": settings.aggregate.price_policy.value,
            "auto_match_sales": settings.matching.auto_match_sales,
        },
    )
    return settings


__all__ = [
    "AggregateSettings",
    "DatabaseSettings",
    "LedgerSettings",
    "LoggingSettings",
    "MatchingSettings",
    "compute_checksum",
    "configure_from_settings",
    "get_active_settings",
]
