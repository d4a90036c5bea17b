"""
Bridges from settlement_config artifacts to kernel inputs.

The kernel never imports settlement_config; these functions translate a
loaded SettlementConfig into the objects kernel constructors accept.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from settlement_config.schema import SettlementConfig
from settlement_kernel.db.engine import init_engine_from_url
from settlement_kernel.db.types import decimal_places_for
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.totals import TotalsPolicy
from settlement_kernel.enums import PaymentMethod, PeriodType
from settlement_kernel.services.settlement_engine import SettlementEngine


def totals_policy(config: SettlementConfig) -> TotalsPolicy:
    """Tax rate, currency minor unit and rounding mode for compute_totals()."""
    return TotalsPolicy(
        tax_rate=config.policy.tax_rate,
        decimal_places=decimal_places_for(config.policy.currency),
        rounding=config.policy.rounding,
    )


def init_engine(config: SettlementConfig) -> Engine:
    db = config.database
    return init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
    )


def build_settlement_engine(
    config: SettlementConfig,
    session_factory: sessionmaker[Session] | None = None,
    clock: Clock | None = None,
) -> SettlementEngine:
    """A SettlementEngine wired to the policy in ``config``."""
    return SettlementEngine(
        session_factory=session_factory,
        clock=clock,
        policy=totals_policy(config),
        default_period_type=PeriodType(config.policy.default_period_type),
        default_payment_method=PaymentMethod(config.policy.default_payment_method),
        page_size=config.policy.page_size,
    )
