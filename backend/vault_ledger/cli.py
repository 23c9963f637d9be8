# Overview: Flask CLI command groups for bootstrap, inspection, and audit checks.

# backend/vault_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Vaults:
# - python -m flask vaults provision --location-id LOC-1 --name "Main Cage"
#   Provision an empty vault for a location.
# - python -m flask vaults list
#   List vaults with balances.
# - python -m flask vaults balance 1
#   Show a vault's denomination breakdown.
#
# Audit trail:
# - python -m flask audit list 1 --limit 20
#   Show the newest reconciliation records for a vault.
# - python -m flask audit verify 1
#   Recompute the hash chain; exits non-zero if it is broken.

import click
from flask.cli import with_appcontext

from .errors import VaultError
from .extensions import db
from .services import audit_service, vault_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the audit trail!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('vaults')
def vaults_group():
    """Vault provisioning and inspection."""


@vaults_group.command('provision')
@click.option('--location-id', required=True, help='Location identifier')
@click.option('--name', default=None, help='Display name')
@click.option('--licensee-id', default=None, help='Licensee identifier')
@with_appcontext
def provision_vault_cli(location_id, name, licensee_id):
    """Provision an empty vault for a location."""
    try:
        vault = vault_service.provision_vault(location_id, name=name, licensee_id=licensee_id)
    except VaultError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Vault {vault.id} provisioned for {vault.location_id} ({vault.name})")


@vaults_group.command('list')
@with_appcontext
def list_vaults_cli():
    """List all vaults."""
    vaults = vault_service.list_vaults()
    if not vaults:
        click.echo("No vaults provisioned.")
        return

    click.echo(f"{'ID':<6} {'Location':<20} {'Name':<30} {'Balance':>12} {'Seq':>6}")
    click.echo("-" * 78)
    for vault in vaults:
        click.echo(
            f"{vault.id:<6} {vault.location_id:<20} {vault.name:<30} "
            f"{vault.balance:>12} {vault.audit_sequence:>6}"
        )


@vaults_group.command('balance')
@click.argument('vault_id', type=int)
@with_appcontext
def vault_balance_cli(vault_id):
    """Show a vault's balance and denomination breakdown."""
    try:
        snapshot = vault_service.get_vault_balance(vault_id)
    except VaultError as e:
        raise click.ClickException(e.message)

    click.echo(f"Vault {snapshot['vault_id']} ({snapshot['location_id']})")
    for entry in snapshot["denominations"]:
        subtotal = entry["denomination"] * entry["quantity"]
        click.echo(f"  {entry['denomination']:>6} x {entry['quantity']:<6} = {subtotal:>10}")
    click.echo(f"  {'Total':>17} = {snapshot['balance']:>10}")
    click.echo(f"  Last reconciled: {snapshot['last_reconciled_at'] or 'never'}")


@click.group('audit')
def audit_group():
    """Reconciliation record inspection and verification."""


@audit_group.command('list')
@click.argument('vault_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True, help='Number of records')
@click.option('--kind', default=None, help='Filter by record kind')
@with_appcontext
def list_records_cli(vault_id, limit, kind):
    """Show the newest reconciliation records for a vault."""
    records = audit_service.list_records(vault_id, limit=limit, kind=kind.upper() if kind else None)
    if not records:
        click.echo("No records.")
        return

    for record in records:
        click.echo(
            f"#{record.sequence:<5} {record.occurred_at:%Y-%m-%d %H:%M:%S} {record.kind:<20} "
            f"{record.actor:<16} {record.previous_balance:>10} -> {record.new_balance:<10} "
            f"var={record.variance}"
        )
        if record.comment:
            click.echo(f"       {record.comment}")


@audit_group.command('verify')
@click.argument('vault_id', type=int)
@with_appcontext
def verify_records_cli(vault_id):
    """Recompute the hash chain for a vault."""
    try:
        result = audit_service.verify_chain(vault_id)
    except VaultError as e:
        raise click.ClickException(e.message)

    if result.ok:
        click.echo(f"PASS {result.checked} records verified for vault {vault_id}")
        return

    click.echo(f"FAIL vault {vault_id}: first bad sequence {result.first_bad_sequence}")
    for problem in result.problems:
        click.echo(f"  - {problem}")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(vaults_group)
    app.cli.add_command(audit_group)
