"""
Settlement configuration schema.

Frozen dataclasses the loader parses YAML into.  Money-like values (the tax
rate) are Decimal; the YAML must quote them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class ConfigError(ValueError):
    """A configuration file is missing, malformed or fails validation."""


@dataclass(frozen=True)
class SettlementPolicy:
    """Commercial parameters of bundle settlement."""

    currency: str
    tax_rate: Decimal
    rounding: str
    default_period_type: str = "departure"
    default_payment_method: str = "bank_transfer"
    page_size: int = 20


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection parameters passed to init_engine_from_url()."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class SettlementConfig:
    """
    The runtime configuration artifact.

    ``checksum`` is the SHA-256 of the canonical policy content; it is
    logged on every load so a bundle's figures can be traced to the policy
    that produced them.
    """

    config_id: str
    version: int
    policy: SettlementPolicy
    database: DatabaseSettings
    checksum: str
    source: str
