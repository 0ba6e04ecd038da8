"""Tests for the ``fondo`` command line interface."""

from __future__ import annotations

import csv

import pytest
from click.testing import CliRunner

from fondo.cli import cli, main
from fondo.domain import AccountNotFoundError


@pytest.fixture
def runner(monkeypatch, tmp_path):
    monkeypatch.setenv("FONDO_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("FONDO_DATABASE_URL", raising=False)
    monkeypatch.setenv("FONDO_DEV_MODE", "false")
    return CliRunner()


def open_account(runner, user_id="user-1") -> str:
    result = runner.invoke(cli, ["open-account", user_id])
    assert result.exit_code == 0, result.output
    return result.output.split()[0]


def test_init_db(runner, tmp_path):
    result = runner.invoke(cli, ["init-db"])
    assert result.exit_code == 0
    assert "Database ready" in result.output
    assert (tmp_path / "fondo.db").exists()


def test_open_account_is_idempotent(runner):
    assert open_account(runner) == open_account(runner)


def test_deposit_withdraw_and_history(runner):
    account_id = open_account(runner)

    result = runner.invoke(cli, ["deposit", account_id, "120000", "--concept", "Aporte"])
    assert result.exit_code == 0, result.output
    assert "balance 120000.00" in result.output

    result = runner.invoke(cli, ["withdraw", account_id, "50000", "--actor", "treasurer"])
    assert result.exit_code == 0, result.output
    assert "balance 69000.00" in result.output

    result = runner.invoke(cli, ["history", account_id])
    assert result.exit_code == 0
    lines = result.output.strip().splitlines()
    assert len(lines) == 2
    assert "fee=1000.00" in lines[1]

    result = runner.invoke(cli, ["history", account_id, "--recent", "1"])
    assert "withdrawal" in result.output
    assert "Aporte" not in result.output


def test_rejection_exits_non_zero(runner):
    account_id = open_account(runner)
    result = runner.invoke(cli, ["withdraw", account_id, "50000"])

    assert result.exit_code == 1
    assert "insufficient_funds" in result.output


def test_pay_fine_needs_reason(runner):
    account_id = open_account(runner)
    result = runner.invoke(cli, ["pay-fine", account_id, "1000"])
    assert result.exit_code == 2


def test_verify_summary_and_export(runner, tmp_path):
    account_id = open_account(runner)
    runner.invoke(cli, ["deposit", account_id, "20000"])
    runner.invoke(cli, ["credit-interest", account_id, "150"])

    result = runner.invoke(cli, ["verify", account_id])
    assert result.exit_code == 0
    assert "balance=20150.00" in result.output

    result = runner.invoke(cli, ["summary", account_id])
    assert result.exit_code == 0
    assert "deposits=20000.00" in result.output
    assert "met=yes" in result.output

    target = tmp_path / "out.csv"
    result = runner.invoke(cli, ["export", account_id, "--output", str(target)])
    assert result.exit_code == 0
    with target.open(newline="", encoding="utf-8") as fh:
        assert [row["type"] for row in csv.DictReader(fh)] == ["deposit", "interest"]


def test_set_status_and_close_months(runner):
    account_id = open_account(runner)

    result = runner.invoke(cli, ["set-status", account_id, "suspended"])
    assert result.exit_code == 0
    assert "is now suspended" in result.output

    result = runner.invoke(cli, ["deposit", account_id, "20000"])
    assert result.exit_code == 1
    assert "account_not_active" in result.output

    result = runner.invoke(cli, ["close-months"])
    assert result.exit_code == 0
    assert "Closed 0 month(s)." in result.output


def test_set_status_rejects_unknown_value(runner):
    account_id = open_account(runner)
    result = runner.invoke(cli, ["set-status", account_id, "frozen"])
    assert result.exit_code == 2


def test_unknown_account_surfaces_domain_error(runner):
    result = runner.invoke(cli, ["history", "missing"])
    assert result.exit_code == 1
    assert isinstance(result.exception, AccountNotFoundError)


@pytest.mark.parametrize("amount", ["abc", "1e30"])
def test_malformed_amount_is_a_usage_error(runner, amount):
    account_id = open_account(runner)
    result = runner.invoke(cli, ["deposit", account_id, amount])

    assert result.exit_code == 2
    assert "Invalid value for 'AMOUNT'" in result.output
    assert not isinstance(result.exception, ValueError)


def test_amount_above_storage_ceiling_is_rejected(runner):
    account_id = open_account(runner)
    result = runner.invoke(cli, ["deposit", account_id, "100000000000000000"])

    assert result.exit_code == 1
    assert "amount_above_maximum" in result.output


def test_main_reports_configuration_errors(runner, monkeypatch, capsys):
    monkeypatch.setenv("FONDO_STORE_TIMEOUT", "0")
    monkeypatch.setattr("sys.argv", ["fondo", "init-db"])

    with pytest.raises(SystemExit) as excinfo:
        main()

    assert excinfo.value.code == 1
    assert "FONDO_STORE_TIMEOUT must be positive" in capsys.readouterr().err
