# Overview: Flask CLI command group for ledger bootstrap, reconciliation, backup and payroll.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# - python -m flask ledger init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask ledger reconcile [--kind customer] [--fix]
#   Compare cached party balances with their transaction history.
# - python -m flask ledger export-backup --output backup.json
#   Write every collection to a JSON file.
# - python -m flask ledger restore-backup backup.json --yes
#   DANGER: replace all ledger data with the file contents.
# - python -m flask ledger run-payroll
#   Settle monthly salaries for every employee.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import backup_service, ledger_service, payroll_service
from .services.errors import LedgerError


@click.group('ledger')
def ledger_group():
    """Shop ledger maintenance commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all ledger tables if they do not exist."""
    db.create_all()
    click.echo("PASS Ledger tables ready.")


@ledger_group.command('reconcile')
@click.option('--kind', type=click.Choice(['customer', 'supplier', 'employee']), default=None,
              help='Limit to one party kind')
@click.option('--fix', is_flag=True, help='Rewrite drifted balances from transaction history')
@with_appcontext
def reconcile(kind, fix):
    """Report (and optionally repair) party balances that drifted from their history."""
    drifts = ledger_service.reconcile_balances(kind, fix=fix)
    if not drifts:
        click.echo("PASS All balances match their transaction history.")
        return
    for row in drifts:
        click.echo(
            f"{'FIXED' if fix else 'DRIFT'} {row['kind']} {row['name']} ({row['party_id']}): "
            f"cached={row['cached']} computed={row['computed']}"
        )
    if not fix:
        raise click.ClickException(f"{len(drifts)} balance(s) drifted; rerun with --fix to repair")


@ledger_group.command('export-backup')
@click.option('--output', '-o', type=click.Path(dir_okay=False, writable=True), default='-',
              help='File to write (default: stdout)')
@with_appcontext
def export_backup(output):
    """Export every collection as one JSON document."""
    document = backup_service.export_backup()
    text = json.dumps(document, ensure_ascii=False, indent=2)
    if output == '-':
        click.echo(text)
        return
    with open(output, 'w', encoding='utf-8') as fh:
        fh.write(text)
    total = sum(len(records) for records in document["collections"].values())
    click.echo(f"PASS Exported {total} records to {output}")


@ledger_group.command('restore-backup')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def restore_backup(path, yes):
    """
    DANGER: Replace all ledger data with a backup file.

    This will DELETE ALL CURRENT DATA!
    """
    if not yes:
        click.confirm("WARN This will REPLACE ALL LEDGER DATA. Are you sure?", abort=True)

    with open(path, encoding='utf-8') as fh:
        document = json.load(fh)
    try:
        result = backup_service.restore_backup(document, confirm=True)
    except LedgerError as exc:
        raise click.ClickException(exc.message)
    total = sum(result["restored"].values())
    click.echo(f"PASS Restored {total} records from {path}")


@ledger_group.command('run-payroll')
@with_appcontext
def run_payroll():
    """Pay every employee their salary less outstanding advances."""
    try:
        result = payroll_service.process_payroll()
    except LedgerError as exc:
        raise click.ClickException(exc.message)
    click.echo(("PASS " if result.processed else "SKIP ") + result.message)
    for tx in result.transactions:
        click.echo(f"  {tx.party_id}: {tx.amount}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
