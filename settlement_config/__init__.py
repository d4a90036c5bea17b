"""
settlement_config -- single public entrypoint for settlement configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settlement
    policy (currency, tax rate, rounding, defaults) and database settings.
    No other component reads configuration files or environment variables.

Architecture position:
    Configuration -- sits above ``settlement_kernel``.  The kernel MUST
    NEVER import from ``settlement_config``; ``bridges`` translates loaded
    artifacts into kernel inputs.

Environment:
    SETTLEMENT_CONFIG -- path of the YAML file to load instead of
                         ``sets/default.yaml``.
    DATABASE_URL      -- overrides ``database.url`` from the file.

Audit relevance:
    Every successful load emits a ``settlement_config_loaded`` log entry
    with the config id, version and SHA-256 checksum of the policy.
"""

from __future__ import annotations

import os
from pathlib import Path

from settlement_config.loader import load_config
from settlement_config.schema import (
    ConfigError,
    DatabaseSettings,
    SettlementConfig,
    SettlementPolicy,
)
from settlement_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> SettlementConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Explicit YAML file.  Falls back to $SETTLEMENT_CONFIG, then to
            the bundled ``sets/default.yaml``.

    Raises:
        ConfigError: If the file is missing or fails validation.
    """
    source = Path(path or os.environ.get("SETTLEMENT_CONFIG") or _DEFAULT_CONFIG_FILE)
    config = load_config(source, database_url=os.environ.get("DATABASE_URL"))

    logger.info(
        "settlement_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "currency": config.policy.currency,
            "tax_rate": config.policy.tax_rate,
            "rounding": config.policy.rounding,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "ConfigError",
    "DatabaseSettings",
    "SettlementConfig",
    "SettlementPolicy",
]
