"""
produce_config.schema -- Frozen settings dataclasses.

Responsibility:
    Typed, immutable shape of the ledger's runtime settings.  Built only by
    ``produce_config.loader.parse_settings``.

Architecture position:
    Configuration.  MUST NOT import from produce_kernel services or
    produce_services.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from produce_engines.costing import PricePolicy


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///:memory:"
    echo: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


@dataclass(frozen=True)
class AggregateSettings:
    """How hard sync prices the aggregate, and whether sales may overdraw it."""

    price_policy: PricePolicy = PricePolicy.MAX
    # Reject a sale that would take the product aggregate below zero
    block_negative_sales: bool = False


@dataclass(frozen=True)
class MatchingSettings:
    # FIFO-match sale lines recorded without explicit picks
    auto_match_sales: bool = False


@dataclass(frozen=True)
class LedgerSettings:
    """Effective settings plus the checksum of their canonical form."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    aggregate: AggregateSettings = field(default_factory=AggregateSettings)
    matching: MatchingSettings = field(default_factory=MatchingSettings)
    checksum: str = ""
    source: str = "defaults"
