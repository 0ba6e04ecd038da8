"""Application context for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable, Optional

from sqlmodel import Session

from .config import BaseConfig
from .domain.policy import SavingsPolicy
from .infra.database import bootstrap_database
from .infra.repositories import SQLModelLedgerStore
from .services.ledger_service import LedgerService
from .services.monthly_cycle import resolve_timezone


@dataclass
class AppContext:
    """Everything a caller needs, built once and passed explicitly."""

    config: BaseConfig
    engine: object
    session_factory: Callable[[], Session]
    policy: SavingsPolicy
    tz: tzinfo
    store: SQLModelLedgerStore
    ledger: LedgerService

    def dispose(self) -> None:
        self.engine.dispose()


def create_app_context(config: Optional[BaseConfig] = None) -> AppContext:
    """Create and initialize the application context."""

    if config is None:
        config = BaseConfig()

    engine, session_factory = bootstrap_database(config)

    policy = SavingsPolicy.from_config(config)
    tz = resolve_timezone(config.TIMEZONE)
    store = SQLModelLedgerStore(
        session_factory,
        retries=config.STORE_RETRIES,
        backoff=config.STORE_BACKOFF,
    )
    ledger = LedgerService(
        store,
        policy,
        tz=tz,
        max_retries=config.MAX_APPLY_RETRIES,
        verify_before_write=config.VERIFY_BEFORE_WRITE,
    )

    return AppContext(
        config=config,
        engine=engine,
        session_factory=session_factory,
        policy=policy,
        tz=tz,
        store=store,
        ledger=ledger,
    )
