"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``settlement_config.schema``.  The public runtime entry point is
``settlement_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file -> ``ConfigError``.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Missing or invalid keys -> ``ConfigError`` with a descriptive message.
"""

from __future__ import annotations

import decimal
import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    ConfigError,
    DatabaseSettings,
    SettlementConfig,
    SettlementPolicy,
)
from settlement_kernel.db.types import CURRENCY_DECIMAL_PLACES
from settlement_kernel.enums import PaymentMethod, PeriodType

ROUNDING_MODES = frozenset({
    decimal.ROUND_HALF_UP,
    decimal.ROUND_HALF_EVEN,
    decimal.ROUND_HALF_DOWN,
    decimal.ROUND_UP,
    decimal.ROUND_DOWN,
    decimal.ROUND_CEILING,
    decimal.ROUND_FLOOR,
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigError: if the file does not exist or is not a mapping.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def _require(data: dict[str, Any], key: str, section: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigError(f"Missing required key '{section}.{key}'")
    return data[key]


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a quoted decimal.  Unquoted YAML floats are refused."""
    if isinstance(value, float):
        raise ConfigError(f"{name} must be a quoted decimal string, got float {value!r}")
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"{name} must be a decimal string, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigError(f"{name} is not a decimal: {value!r}") from exc


def parse_policy(data: dict[str, Any]) -> SettlementPolicy:
    """
    Parse and validate the ``settlement`` section.

    Raises:
        ConfigError: on missing keys or out-of-range values.
    """
    currency = str(_require(data, "currency", "settlement")).upper()
    if currency not in CURRENCY_DECIMAL_PLACES:
        raise ConfigError(f"Unsupported currency '{currency}'")

    tax_rate = parse_decimal(_require(data, "tax_rate", "settlement"), "settlement.tax_rate")
    if not Decimal("0") <= tax_rate < Decimal("1"):
        raise ConfigError(f"settlement.tax_rate must be in [0, 1), got {tax_rate}")

    rounding = str(data.get("rounding", decimal.ROUND_HALF_UP))
    if rounding not in ROUNDING_MODES:
        raise ConfigError(f"Unknown rounding mode '{rounding}'")

    period_type = str(data.get("default_period_type", PeriodType.DEPARTURE.value))
    if period_type not in {p.value for p in PeriodType}:
        raise ConfigError(f"Unknown default_period_type '{period_type}'")

    payment_method = str(data.get("default_payment_method", PaymentMethod.BANK_TRANSFER.value))
    if payment_method not in {m.value for m in PaymentMethod}:
        raise ConfigError(f"Unknown default_payment_method '{payment_method}'")

    page_size = data.get("page_size", 20)
    if not isinstance(page_size, int) or isinstance(page_size, bool) or page_size < 1:
        raise ConfigError(f"settlement.page_size must be a positive integer, got {page_size!r}")

    return SettlementPolicy(
        currency=currency,
        tax_rate=tax_rate,
        rounding=rounding,
        default_period_type=period_type,
        default_payment_method=payment_method,
        page_size=page_size,
    )


def parse_database(data: dict[str, Any], url_override: str | None = None) -> DatabaseSettings:
    """Parse the ``database`` section; ``url_override`` wins over the file."""
    url = url_override or data.get("url")
    if not url:
        raise ConfigError("Missing required key 'database.url' (or DATABASE_URL)")
    return DatabaseSettings(
        url=url,
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_config(path: Path, database_url: str | None = None) -> SettlementConfig:
    """
    Load a complete configuration file.

    The checksum covers the ``settlement`` section only; database settings
    vary per environment and do not change settlement figures.
    """
    raw = load_yaml_file(path)
    settlement_raw = _require(raw, "settlement", "root")
    if not isinstance(settlement_raw, dict):
        raise ConfigError("'settlement' section must be a mapping")
    database_raw = raw.get("database") or {}

    return SettlementConfig(
        config_id=str(raw.get("config_id", path.stem)),
        version=int(raw.get("version", 1)),
        policy=parse_policy(settlement_raw),
        database=parse_database(database_raw, database_url),
        checksum=compute_checksum(settlement_raw),
        source=str(path),
    )
