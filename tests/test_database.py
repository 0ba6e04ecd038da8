"""Tests for engine wiring: SQLite pragmas and schema bootstrap."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from fondo.config import BaseConfig
from fondo.infra.database import bootstrap_database
from fondo.models import SavingsTransaction


@pytest.fixture
def database(monkeypatch, tmp_path):
    monkeypatch.setenv("FONDO_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("FONDO_DATABASE_URL", raising=False)
    engine, session_factory = bootstrap_database(BaseConfig())
    yield engine, session_factory
    engine.dispose()


def test_pragmas_apply_to_every_connection(database):
    engine, _ = database

    for _ in range(2):
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
            assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"


def test_transaction_for_unknown_account_is_refused(database):
    _, session_factory = database
    orphan = SavingsTransaction(
        id="tx-1",
        account_id="missing",
        user_id="user-1",
        type="deposit",
        amount=100000,
        balance=100000,
        concept="Deposit",
        created_at=datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc),
        created_by="member-1",
        sequence=1,
    )

    with pytest.raises(IntegrityError):
        with session_factory() as session:
            session.add(orphan)

    with session_factory() as session:
        assert session.get(SavingsTransaction, "tx-1") is None
