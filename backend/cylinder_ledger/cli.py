# Overview: Flask CLI command groups for tenants and the ledger worker.

# backend/cylinder_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to cylinder_ledger (PowerShell: $env:FLASK_APP="cylinder_ledger").
# - Use: python -m flask <group> <command> [options]
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations.
# - python -m flask orgs create --name "Acme Gas" --code "ACME"
#   Create a new organization (tenant).
#
# Ledger worker:
# - python -m flask ledger tasks [--status FAILED] [--limit 50]
#   List recompute tasks.
# - python -m flask ledger drain [--org-id 1]
#   Process every due recompute task inline (retries whose backoff elapsed included).
# - python -m flask ledger recompute --org-id 1 --driver-id 3 --date 2026-01-31
#   Queue and immediately process a manual recompute for one driver day.
# - python -m flask ledger run-worker [--poll-seconds 5]
#   Long-running poll loop; Ctrl+C to stop.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Driver, RecomputeTask
from .services.consistency_worker import get_worker
from .time_utils import parse_business_date, utctoday


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Drivers':<8} {'Onboarded'}")
    click.echo("="*80)

    for org in orgs:
        driver_count = db.session.query(Driver).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        onboarded = "Yes" if org.onboarding_completed else "No"
        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {driver_count:<8} {onboarded}")

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@click.group('ledger')
def ledger_group():
    """Driver receivables ledger maintenance."""


@ledger_group.command('tasks')
@click.option('--status', type=click.Choice(['PENDING', 'RUNNING', 'DONE', 'FAILED']), help='Filter by status')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_tasks(status, limit):
    """List recompute tasks, newest first."""
    q = db.session.query(RecomputeTask)
    if status:
        q = q.filter(RecomputeTask.status == status)
    tasks = q.order_by(RecomputeTask.id.desc()).limit(limit).all()

    if not tasks:
        click.echo("No recompute tasks found.")
        return

    click.echo(f"{'ID':<6} {'Org':<5} {'Driver':<7} {'Date':<11} {'Reason':<12} {'Status':<8} {'Tries':<6} Last error")
    for t in tasks:
        click.echo(
            f"{t.id:<6} {t.org_id:<5} {t.driver_id:<7} {t.ledger_date.isoformat():<11} "
            f"{t.reason:<12} {t.status:<8} {t.attempts:<6} {(t.last_error or '')[:60]}"
        )


@ledger_group.command('drain')
@click.option('--org-id', type=int, help='Only this organization')
@with_appcontext
def drain_tasks(org_id):
    """Process every due recompute task now."""
    processed = get_worker().drain_due(org_id)
    click.echo(f"PASS Processed {processed} recompute task(s)")


@ledger_group.command('recompute')
@click.option('--org-id', type=int, required=True)
@click.option('--driver-id', type=int, required=True)
@click.option('--date', 'day', help='YYYY-MM-DD (defaults to today)')
@with_appcontext
def recompute_key(org_id, driver_id, day):
    """Queue and run a manual recompute for one driver day."""
    driver = db.session.query(Driver).filter_by(id=driver_id, org_id=org_id).first()
    if driver is None:
        click.echo(f"FAIL Driver {driver_id} not found in organization {org_id}")
        return
    try:
        ledger_date = parse_business_date(day) or utctoday()
    except ValueError:
        click.echo(f"FAIL Invalid date '{day}'")
        return

    worker = get_worker()
    worker.enqueue(org_id=org_id, driver_id=driver_id, ledger_date=ledger_date, reason="MANUAL")
    db.session.commit()
    processed = worker.process_until_idle((org_id, driver_id, ledger_date))
    if processed:
        click.echo(f"PASS Recomputed driver {driver_id} for {ledger_date.isoformat()} ({processed} task(s))")
    else:
        click.echo(f"WARN Recompute for driver {driver_id} on {ledger_date.isoformat()} did not complete; see 'ledger tasks --status FAILED'")


@ledger_group.command('run-worker')
@click.option('--poll-seconds', type=float, default=5.0, show_default=True)
@with_appcontext
def run_worker(poll_seconds):
    """Poll for due recompute tasks until interrupted."""
    click.echo(f"START Ledger worker polling every {poll_seconds}s (Ctrl+C to stop)")
    try:
        get_worker().run_forever(poll_seconds)
    except KeyboardInterrupt:
        click.echo("DONE Ledger worker stopped")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(orgs_group)
    app.cli.add_command(ledger_group)
