"""Command line interface for operating the savings ledger."""

from __future__ import annotations

import time
from pathlib import Path

import click

from .config import BaseConfig
from .context import AppContext, create_app_context
from .domain.entities import AccountStatus, RequestContext, Transaction
from .domain.errors import LedgerError
from .domain.money import Money
from .logging_config import setup_logging
from .services.export_csv import export_transactions_csv
from .services.ledger_service import TransactionResult


class MoneyParamType(click.ParamType):
    """Parse a monetary amount on the command line; bad input is a usage error."""

    name = "amount"

    def convert(self, value, param, ctx):
        try:
            return Money.of(value)
        except ValueError as exc:
            self.fail(str(exc), param, ctx)


AMOUNT = MoneyParamType()


def _ctx(click_ctx: click.Context) -> AppContext:
    return click_ctx.obj


def _actor(actor: str) -> RequestContext:
    return RequestContext(actor_id=actor, role="admin" if actor != "system" else "system")


def _format_txn(txn: Transaction) -> str:
    fee = f" fee={txn.fee}" if txn.fee else ""
    return (
        f"#{txn.sequence:<4} {txn.created_at:%Y-%m-%d %H:%M} {txn.type.value:<10} "
        f"{str(txn.amount):>12} balance={txn.balance}{fee}  {txn.concept}"
    )


def _report(result: TransactionResult) -> None:
    for fine in result.fines:
        click.echo(f"Month closed with fine: {fine.amount} ({fine.metadata.fine_reason})")
    if not result.ok:
        click.echo(f"Rejected [{result.rejection.reason.value}]: {result.message}", err=True)
        raise SystemExit(1)
    click.echo(f"{result.message}: {result.transaction.amount} -> balance {result.account.balance}")


actor_option = click.option(
    "--actor", default="system", show_default=True, help="Identity recorded as created_by."
)


@click.group()
@click.pass_context
def cli(click_ctx: click.Context) -> None:
    """Fondo savings ledger."""

    config = BaseConfig()
    setup_logging(config)
    click_ctx.obj = create_app_context(config)
    click_ctx.call_on_close(click_ctx.obj.dispose)


@cli.command("init-db")
@click.pass_context
def init_db(click_ctx: click.Context) -> None:
    """Create the database schema (idempotent)."""

    click.echo(f"Database ready: {_ctx(click_ctx).config.DATABASE_URL}")


@cli.command("open-account")
@click.argument("user_id")
@actor_option
@click.pass_context
def open_account(click_ctx: click.Context, user_id: str, actor: str) -> None:
    """Open (or fetch) the savings account of USER_ID."""

    account = _ctx(click_ctx).ledger.open_account(user_id, context=_actor(actor))
    click.echo(f"{account.id} user={account.user_id} balance={account.balance}")


@cli.command()
@click.argument("account_id")
@click.argument("amount", type=AMOUNT)
@click.option("--concept", default="Deposit", show_default=True)
@click.option("--receipt-url", default=None)
@actor_option
@click.pass_context
def deposit(click_ctx, account_id, amount, concept, receipt_url, actor) -> None:
    """Deposit AMOUNT into ACCOUNT_ID."""

    _report(
        _ctx(click_ctx).ledger.deposit(
            account_id, amount, concept, context=_actor(actor), receipt_url=receipt_url
        )
    )


@cli.command()
@click.argument("account_id")
@click.argument("amount", type=AMOUNT)
@click.option("--concept", default="Withdrawal", show_default=True)
@click.option("--approved-by", default=None)
@actor_option
@click.pass_context
def withdraw(click_ctx, account_id, amount, concept, approved_by, actor) -> None:
    """Withdraw AMOUNT (plus fee) from ACCOUNT_ID."""

    _report(
        _ctx(click_ctx).ledger.withdraw(
            account_id, amount, concept, context=_actor(actor), approved_by=approved_by
        )
    )


@cli.command("pay-fine")
@click.argument("account_id")
@click.argument("amount", type=AMOUNT)
@click.option("--reason", "fine_reason", required=True, help="Why the fine is being paid.")
@click.option("--concept", default="Fine payment", show_default=True)
@actor_option
@click.pass_context
def pay_fine(click_ctx, account_id, amount, fine_reason, concept, actor) -> None:
    """Settle AMOUNT of pending fines from the balance of ACCOUNT_ID."""

    _report(
        _ctx(click_ctx).ledger.pay_fine(
            account_id, amount, fine_reason, concept, context=_actor(actor)
        )
    )


@cli.command("credit-interest")
@click.argument("account_id")
@click.argument("amount", type=AMOUNT)
@click.option("--concept", default="Interest", show_default=True)
@actor_option
@click.pass_context
def credit_interest(click_ctx, account_id, amount, concept, actor) -> None:
    """Credit AMOUNT of interest to ACCOUNT_ID."""

    _report(_ctx(click_ctx).ledger.credit_interest(account_id, amount, concept, context=_actor(actor)))


@cli.command()
@click.argument("account_id")
@click.option("--since", "since_month", default=None, help="First month to include (YYYY-MM).")
@click.option("--recent", type=int, default=None, help="Show only the N newest entries.")
@click.pass_context
def history(click_ctx, account_id, since_month, recent) -> None:
    """Print the transaction log of ACCOUNT_ID."""

    ledger = _ctx(click_ctx).ledger
    ledger.get_account(account_id)
    if recent is not None:
        txns = ledger.recent_transactions(account_id, limit=recent)
    else:
        txns = ledger.full_history(account_id, since_month=since_month)
    for txn in txns:
        click.echo(_format_txn(txn))
    if not txns:
        click.echo("No transactions.")


@cli.command("close-months")
@click.option("--account", "account_id", default=None, help="Close a single account only.")
@click.pass_context
def close_months(click_ctx, account_id) -> None:
    """Persist elapsed-month rollovers (fines, streaks, counter resets)."""

    ledger = _ctx(click_ctx).ledger
    if account_id:
        results = {account_id: ledger.close_month(account_id)}
    else:
        results = ledger.close_all_months()
    for acct, closures in results.items():
        for closure in closures:
            fine = f" fine={closure.fine.amount}" if closure.fine else ""
            click.echo(f"{acct} {closure.period} {closure.state.value}{fine}")
    click.echo(f"Closed {sum(len(c) for c in results.values())} month(s).")


@cli.command()
@click.argument("account_id")
@click.pass_context
def verify(click_ctx, account_id) -> None:
    """Replay the log of ACCOUNT_ID and compare it with the snapshot."""

    try:
        totals = _ctx(click_ctx).ledger.verify(account_id)
    except LedgerError as exc:
        click.echo(f"Verification failed: {exc}", err=True)
        raise SystemExit(1)
    click.echo(f"OK balance={totals.balance} deposits={totals.total_deposits} "
               f"withdrawals={totals.total_withdrawals}")


@cli.command()
@click.argument("account_id")
@click.option("--month", default=None, help="Month to summarize (YYYY-MM), default current.")
@click.pass_context
def summary(click_ctx, account_id, month) -> None:
    """Monthly summary and lifetime statistics for ACCOUNT_ID."""

    ledger = _ctx(click_ctx).ledger
    report = ledger.monthly_summary(account_id, month)
    stats = ledger.stats(account_id)
    click.echo(f"Month {report.month}: deposits={report.total_deposits} "
               f"withdrawals={report.total_withdrawals} net={report.net_savings} "
               f"fines={report.fines_applied} met={'yes' if report.contribution_met else 'no'}")
    click.echo(f"Balance {stats.total_balance}, streak {stats.contribution_streak}, "
               f"age {stats.account_age_months} month(s), "
               f"average contribution {stats.average_monthly_contribution}")


@cli.command()
@click.argument("account_id")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="CSV destination, default <data dir>/exports/<account>.csv",
)
@click.pass_context
def export(click_ctx, account_id, output) -> None:
    """Write the history of ACCOUNT_ID to CSV."""

    app = _ctx(click_ctx)
    output = output or Path(app.config.DATA_DIR) / "exports" / f"{account_id}.csv"
    path = export_transactions_csv(
        transactions=app.ledger.full_history(account_id), output_path=output
    )
    click.echo(f"Export written: {path}")


@cli.command("set-status")
@click.argument("account_id")
@click.argument("status", type=click.Choice([s.value for s in AccountStatus]))
@actor_option
@click.pass_context
def set_status(click_ctx, account_id, status, actor) -> None:
    """Change ACCOUNT_ID to active, inactive or suspended."""

    account = _ctx(click_ctx).ledger.set_status(account_id, status, context=_actor(actor))
    click.echo(f"{account.id} is now {account.status.value}")


@cli.command("run-scheduler")
@click.pass_context
def run_scheduler(click_ctx) -> None:
    """Run the monthly close job in the foreground until interrupted."""

    from .scheduler import create_scheduler

    scheduler = create_scheduler(_ctx(click_ctx), auto_start=True)
    click.echo("Scheduler running; press Ctrl+C to stop.")
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()


def main() -> None:
    """Console script entry point; domain and configuration errors exit with status 1."""

    try:
        cli(standalone_mode=True)
    except (LedgerError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
