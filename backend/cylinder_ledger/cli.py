# Overview: Flask CLI command groups for seeding, inspection, and outbox maintenance.

# backend/cylinder_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory add-type --description "14.2kg Domestic" --capacity 14.2kg --unit-value-cents 250000
#   Register a cylinder type (master data is normally synced from the catalog domain).
# - python -m flask inventory init --item 1:100 --item 2:40 --user-id 1
#   Seed filled stock into the YARD.
# - python -m flask inventory summary
#   Quantities per cylinder type and location.
#
# Outbox:
# - python -m flask outbox process --limit 100
#   Apply due GR inventory side effects (run from cron / a scheduler).
# - python -m flask outbox list --status ALERT
#   List outbox tasks (optionally filtered by status).
# - python -m flask outbox retry 42
#   Re-arm a FAILED or ALERT task and apply it now.

import click
from flask import current_app
from flask.cli import with_appcontext

from .enums import OutboxStatus
from .extensions import db
from .models import CylinderType
from .services.wiring import build_services
from .validation import LedgerError


def _services():
    return build_services(db.session, current_app.config)


def _parse_item(raw: str) -> dict:
    type_id, sep, quantity = raw.partition(":")
    if not sep:
        raise click.BadParameter(f"'{raw}' is not TYPE_ID:QUANTITY", param_hint="--item")
    return {"cylinder_type_id": type_id.strip(), "quantity": quantity.strip()}


@click.group('system')
def system_group():
    """System maintenance commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask inventory init' to seed stock.")


@click.group('inventory')
def inventory_group():
    """Cylinder inventory commands."""


@inventory_group.command('add-type')
@click.option('--description', required=True, help='Display name, e.g. "14.2kg Domestic"')
@click.option('--capacity', default=None, help='Capacity label, e.g. 14.2kg')
@click.option('--unit-value-cents', type=int, default=0, show_default=True, help='Value used for variance costing')
@with_appcontext
def add_cylinder_type(description, capacity, unit_value_cents):
    """Register a cylinder type."""
    if unit_value_cents < 0:
        click.echo("FAIL --unit-value-cents must be >= 0")
        return

    cylinder_type = CylinderType(
        description=description,
        capacity=capacity,
        unit_value_cents=unit_value_cents,
        is_active=True,
    )
    db.session.add(cylinder_type)
    db.session.commit()
    click.echo(f"PASS Created cylinder type {cylinder_type.id}: {description} ({capacity or '-'})")


@inventory_group.command('init')
@click.option('--item', 'items', multiple=True, required=True, help='TYPE_ID:QUANTITY (repeatable)')
@click.option('--user-id', type=int, default=None, help='Acting user recorded on the movements')
@with_appcontext
def init_inventory(items, user_id):
    """
    Seed filled cylinders into the YARD.

    Example:
        flask inventory init --item 1:100 --item 2:40
    """
    parsed = [_parse_item(raw) for raw in items]
    try:
        records = _services().movements.initialize_inventory(parsed, user_id)
    except LedgerError as e:
        db.session.rollback()
        click.echo(f"FAIL Initialization failed: {str(e)}")
        return

    if not records:
        click.echo("No movements recorded (all quantities were zero).")
        return
    for record in records:
        click.echo(f"PASS Type {record.cylinder_type_id}: +{record.quantity} FILLED into YARD (movement {record.id})")


@inventory_group.command('summary')
@with_appcontext
def inventory_summary():
    """Show quantities per cylinder type and location."""
    summary = _services().movements.get_inventory_summary()
    if not summary:
        click.echo("No inventory recorded.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Type':<6} {'Capacity':<10} {'Location':<28} {'Status':<8} {'Qty':>8}")
    click.echo("="*80)
    for entry in summary:
        for location in entry["locations"]:
            where = location["kind"]
            if location["reference_id"] is not None:
                where = f"{where}:{location['ref_name'] or location['reference_id']}"
            click.echo(
                f"{entry['cylinder_type_id']:<6} {entry['capacity'] or '-':<10} {where:<28} "
                f"{location['status']:<8} {location['quantity']:>8}"
            )
        click.echo(
            f"{'':<6} {'':<10} {'TOTAL':<28} {'':<8} {entry['total_quantity']:>8}"
            f"  (filled {entry['filled_quantity']}, empty {entry['empty_quantity']})"
        )
    click.echo("="*80)


@click.group('outbox')
def outbox_group():
    """GR inventory side-effect queue commands."""


@outbox_group.command('process')
@click.option('--limit', type=int, default=100, show_default=True, help='Max tasks to apply')
@with_appcontext
def process_outbox(limit):
    """Apply due PENDING/FAILED tasks."""
    result = _services().outbox.process_due_tasks(limit=limit)
    click.echo(
        f"Processed {result['processed']} tasks: "
        f"{result['done']} done, {result['failed']} failed, {result['alert']} alert"
    )


@outbox_group.command('list')
@click.option('--status', type=click.Choice([s.value for s in OutboxStatus]), help='Filter by status')
@click.option('--gr-id', type=int, default=None, help='Filter by goods receipt ID')
@with_appcontext
def list_outbox(status, gr_id):
    """List outbox tasks."""
    tasks = _services().outbox.list_tasks(status, gr_id)
    if not tasks:
        click.echo("No outbox tasks found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<6} {'GR':<6} {'Task':<12} {'Type':<6} {'Qty':>5} {'Status':<8} {'Tries':<7} {'Last error'}")
    click.echo("="*110)
    for task in tasks:
        tries = f"{task.attempts}/{task.max_attempts}"
        click.echo(
            f"{task.id:<6} {task.goods_receipt_id:<6} {task.task_type:<12} {task.cylinder_type_id:<6} "
            f"{task.quantity:>5} {task.status:<8} {tries:<7} {task.last_error or ''}"
        )


@outbox_group.command('retry')
@click.argument('task_id', type=int)
@with_appcontext
def retry_outbox(task_id):
    """Re-arm a FAILED or ALERT task and apply it now."""
    try:
        task = _services().outbox.retry_task(task_id)
    except LedgerError as e:
        db.session.rollback()
        click.echo(f"FAIL {str(e)}")
        return

    if task.status == OutboxStatus.DONE.value:
        click.echo(f"PASS Task {task.id} applied (movement {task.movement_record_id})")
    else:
        click.echo(f"FAIL Task {task.id} is {task.status}: {task.last_error}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(outbox_group)
