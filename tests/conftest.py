"""Pytest configuration and shared fixtures for Fondo tests.

This module provides database fixtures, snapshot factories, and a controllable
clock for testing the ledger engine, the store, and the service without
touching a real data directory.
"""

from __future__ import annotations

import logging
import tempfile
from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path

import pytest
from sqlmodel import SQLModel, create_engine

# Import all models to ensure they're registered with SQLModel metadata
from fondo.models import SavingsAccount, SavingsTransaction  # noqa: F401
from fondo.domain import (
    DEFAULT_POLICY,
    Account,
    Money,
    RequestContext,
    TransactionRequest,
)
from fondo.config import BaseConfig
from fondo.infra.database import apply_sqlite_pragmas, create_session_factory
from fondo.infra.repositories import SQLModelLedgerStore
from fondo.logging_config import LOGGER_NAMESPACE
from fondo.services.ledger_service import LedgerService

START = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


@pytest.fixture(autouse=True)
def reset_fondo_logging():
    """Drop handlers ``setup_logging`` attached so streams never outlive a test."""

    yield
    logger = logging.getLogger(LOGGER_NAMESPACE)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Create an isolated SQLite database file for each test.

    Yields:
        Engine: SQLModel engine connected to the test database
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    engine = create_engine(
        f"sqlite:///{db_path}", echo=False, connect_args={"check_same_thread": False}
    )
    apply_sqlite_pragmas(engine, BaseConfig.SQLITE_PRAGMAS)
    SQLModel.metadata.create_all(engine)

    yield engine

    engine.dispose()
    for suffix in ("", "-wal", "-shm"):
        Path(f"{db_path}{suffix}").unlink(missing_ok=True)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Session factory matching the one the application wires up."""

    return create_session_factory(db_engine)


@pytest.fixture
def store(session_factory) -> SQLModelLedgerStore:
    """Ledger store that retries without sleeping."""

    return SQLModelLedgerStore(session_factory, retries=2, backoff=0.01, sleep=lambda _: None)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def id_factory():
    """Deterministic, readable ids: id-0001, id-0002, ..."""

    counter = count(1)
    return lambda: f"id-{next(counter):04d}"


@pytest.fixture
def ledger(store, clock, id_factory) -> LedgerService:
    return LedgerService(store, DEFAULT_POLICY, clock=clock, id_factory=id_factory)


@pytest.fixture
def member() -> RequestContext:
    return RequestContext(actor_id="member-1")


@pytest.fixture
def admin() -> RequestContext:
    return RequestContext(actor_id="admin-1", role="admin")


@pytest.fixture
def opened(ledger, member) -> Account:
    """A freshly opened account for ``user-1`` in March 2024."""

    return ledger.open_account("user-1", context=member)


# =============================================================================
# Snapshot Factories
# =============================================================================


@pytest.fixture
def account_factory():
    """Factory for in-memory account snapshots.

    Returns:
        Callable: Function that builds an ``Account`` for the 2024-03 period
    """

    def _create_account(**overrides) -> Account:
        base = Account.open(
            user_id=overrides.pop("user_id", "user-1"),
            policy=DEFAULT_POLICY,
            now=START,
            period="2024-03",
            account_id=overrides.pop("id", "acct-1"),
        )
        money_fields = {
            name: Money.of(value)
            for name, value in overrides.items()
            if name
            in {
                "balance",
                "total_deposits",
                "total_withdrawals",
                "monthly_contribution",
                "min_monthly_contribution",
                "total_fines",
                "fines_pending",
            }
        }
        overrides.update(money_fields)
        return base.evolve(**overrides)

    return _create_account


@pytest.fixture
def request_factory():
    """Factory for transaction requests against ``acct-1``."""

    def _create_request(type, amount, concept="", account_id="acct-1", **metadata):
        return TransactionRequest.build(account_id, type, amount, concept, **metadata)

    return _create_request
