# Overview: Flask CLI command groups for provisioning, inspection and repair.

# backend/checkrto/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent). Prefer "flask db upgrade" in production.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Workshop (tenant) management:
# - python -m flask workshops list
# - python -m flask workshops create --name "Taller Centro" --code "CENTRO"
#
# Step configuration:
# - python -m flask steps list --workshop-id 1
# - python -m flask steps set --workshop-id 1 "Frenos" "Luces" "Suspension"
#   Replace the checklist; order follows the arguments.
#
# Stickers:
# - python -m flask stickers intake --workshop-id 1 --prefix AA --start 1 --count 100 --pad 4 --name "Lote 12"
# - python -m flask stickers summary --workshop-id 1
# - python -m flask stickers release --workshop-id 1 --plate AB123CD [--void]
#
# Applications:
# - python -m flask applications show 42
#   State, inspections and audit trail of one application.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import CheckRTOError
from .models import Workshop, Sticker, Application
from .services import inspection_service, sticker_service, step_service, workflow_service, workshop_service


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

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask workshops create' to add a workshop.")


@click.group('workshops')
def workshops_group():
    """Workshop (tenant) management commands."""


@workshops_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive workshops')
@with_appcontext
def list_workshops_cli(show_all):
    """List workshops with their sticker and application counts."""
    workshops = workshop_service.list_workshops(include_inactive=show_all)

    if not workshops:
        click.echo("No workshops found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Stickers':<10} {'Applications'}")
    click.echo("="*80)

    for workshop in workshops:
        sticker_count = db.session.query(Sticker).filter_by(workshop_id=workshop.id).count()
        app_count = db.session.query(Application).filter_by(workshop_id=workshop.id).count()
        active_str = "Yes" if workshop.is_active else "No"

        click.echo(
            f"{workshop.id:<5} {workshop.name:<30} {workshop.code or '-':<15} {active_str:<8} "
            f"{sticker_count:<10} {app_count}"
        )

    click.echo("="*80 + "\n")


@workshops_group.command('create')
@click.option('--name', required=True, help='Workshop name')
@click.option('--code', default=None, help='Short code (unique)')
@with_appcontext
def create_workshop_cli(name, code):
    """Create a new workshop (tenant)."""
    try:
        workshop = workshop_service.create_workshop(name, code)
    except CheckRTOError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created workshop: {workshop.name} (ID: {workshop.id}, Code: {workshop.code or '-'})")


@click.group('steps')
def steps_group():
    """Inspection step configuration commands."""


@steps_group.command('list')
@click.option('--workshop-id', type=int, required=True)
@click.option('--all', 'show_all', is_flag=True, help='Include deactivated steps')
@with_appcontext
def list_steps_cli(workshop_id, show_all):
    steps = step_service.get_steps(workshop_id, include_inactive=show_all)
    if not steps:
        click.echo("No steps configured.")
        return

    for step in steps:
        flag = "" if step.is_active else "  (inactive)"
        click.echo(f"{step.position:>3}. [{step.id}] {step.name}{flag}")


@steps_group.command('set')
@click.option('--workshop-id', type=int, required=True)
@click.argument('names', nargs=-1, required=True)
@with_appcontext
def set_steps_cli(workshop_id, names):
    """Replace the checklist of a workshop; steps are ordered as given."""
    try:
        steps = step_service.set_steps(
            workshop_id,
            [{"name": name, "order": index + 1} for index, name in enumerate(names)],
        )
    except CheckRTOError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS {len(steps)} active steps configured for workshop {workshop_id}")


@click.group('stickers')
def stickers_group():
    """Sticker (oblea) intake and inspection commands."""


@stickers_group.command('intake')
@click.option('--workshop-id', type=int, required=True)
@click.option('--prefix', default='', help='Prefix printed on every sticker of the batch')
@click.option('--start', type=int, default=1, show_default=True)
@click.option('--count', type=int, required=True)
@click.option('--pad', type=int, default=0, help='Zero-pad the counter to this width')
@click.option('--name', default=None, help='Batch name')
@with_appcontext
def intake_stickers_cli(workshop_id, prefix, start, count, pad, name):
    """Register a delivered batch of stickers as Disponible."""
    try:
        numbers = sticker_service.build_sticker_numbers(prefix, start, count, pad=pad)
        order = sticker_service.register_stickers(workshop_id, numbers, name=name, actor="cli")
    except CheckRTOError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Registered {order.amount} stickers ({numbers[0]} .. {numbers[-1]}) as order {order.id}")


@stickers_group.command('summary')
@click.option('--workshop-id', type=int, required=True)
@with_appcontext
def sticker_summary_cli(workshop_id):
    workshop = db.session.get(Workshop, workshop_id)
    if workshop is None:
        click.echo(f"FAIL Workshop {workshop_id} not found")
        return

    summary = sticker_service.status_summary(workshop_id)
    click.echo(f"\nStickers of {workshop.name}:")
    for status, count in summary.items():
        click.echo(f"  {status:<15} {count}")

    for order in sticker_service.list_sticker_orders(workshop_id):
        click.echo(f"  order {order['id']:<5} {order['name'] or '-':<20} {order['available']}/{order['amount']} available")


@stickers_group.command('release')
@click.option('--workshop-id', type=int, required=True)
@click.option('--plate', required=True)
@click.option('--void', 'void', is_flag=True, help='Mark the sticker No Disponible instead of Disponible')
@with_appcontext
def release_sticker_cli(workshop_id, plate, void):
    """Unbind the sticker currently assigned to a plate."""
    try:
        sticker = sticker_service.release(plate, void, workshop_id=workshop_id, actor="cli")
    except CheckRTOError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Sticker {sticker.sticker_number} is now {sticker.status}")


@click.group('applications')
def applications_group():
    """Application inspection commands."""


@applications_group.command('show')
@click.argument('application_id', type=int)
@with_appcontext
def show_application_cli(application_id):
    """Print state, attempts and audit trail of an application."""
    try:
        application = workflow_service.get_application(application_id)
    except CheckRTOError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo("\n" + "="*80)
    click.echo(f"Application {application.id}  plate {application.license_plate}  workshop {application.workshop_id}")
    click.echo(f"status={application.status}  result={application.result or '-'}  result_2={application.result_2 or '-'}")

    sticker = sticker_service.find_by_plate(application.license_plate, workshop_id=application.workshop_id)
    click.echo(f"sticker={sticker.sticker_number if sticker else '-'}")

    for is_second in (False, True):
        inspection = inspection_service.get_attempt(application.id, is_second)
        if inspection is None:
            continue
        label = "second" if is_second else "first"
        click.echo(f"\n{label} inspection [{inspection.id}] -> {inspection_service.attempt_result(inspection.id)}")
        for row in inspection.step_results:
            click.echo(f"  {row.position:>3}. {row.step.name:<30} {row.status or 'Unset'}")

    click.echo("\nHistory:")
    for event in workflow_service.application_history(application.id):
        click.echo(
            f"  {event.id:<6} {event.event_type:<40} {event.from_status or '-'} -> {event.to_status or '-'}"
            f"  {event.actor or ''}"
        )
    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(workshops_group)
    app.cli.add_command(steps_group)
    app.cli.add_command(stickers_group)
    app.cli.add_command(applications_group)
