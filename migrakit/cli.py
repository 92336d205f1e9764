import click
from flask import current_app
from flask.cli import with_appcontext

from migrakit.config import transactional_ddl_override
from migrakit.errors import MigrationError
from migrakit.extensions import db
from migrakit.models.ledger import STATUS_APPLIED, STATUS_PENDING
from migrakit.services.registry import load_units
from migrakit.services.runner import MigrationRunner


def _runner() -> MigrationRunner:
    cfg = current_app.config
    return MigrationRunner(
        db.engine,
        load_units(cfg["MIGRATION_UNITS_PACKAGE"]),
        lock_key=cfg["MIGRATION_LOCK_KEY"],
        transactional_ddl=transactional_ddl_override(cfg.get("MIGRATION_TRANSACTIONAL_DDL")),
    )


def _echo_results(results, verb):
    if not results:
        click.echo(f"Nothing to {verb}.")
    for r in results:
        click.echo(f"{r.direction} {r.identifier}: {r.status} ({r.statements} statements)")


@click.group()
def units():
    """Schema migration units (apply/revert against the configured database)."""

@units.command("status")
@with_appcontext
def units_status():
    try:
        rows = _runner().status()
    except MigrationError as e:
        raise click.ClickException(str(e))
    for unit, status, applied_at in rows:
        when = applied_at.isoformat() if applied_at else "-"
        line = f"{unit.identifier}  {status:<8} {when}  {unit.name}"
        if unit.description:
            line += f"  ({unit.description})"
        click.echo(line)

@units.command("upgrade")
@click.option("--to", "target", default=None, help="Stop after this unit identifier")
@with_appcontext
def units_upgrade(target):
    try:
        results = _runner().upgrade(target)
    except MigrationError as e:
        raise click.ClickException(str(e))
    _echo_results(results, "apply")

@units.command("apply")
@click.argument("identifier")
@with_appcontext
def units_apply(identifier):
    try:
        result = _runner().apply(identifier)
    except MigrationError as e:
        raise click.ClickException(str(e))
    _echo_results([result], "apply")

@units.command("downgrade")
@click.option("--steps", type=click.IntRange(min=1), default=1, show_default=True)
@with_appcontext
def units_downgrade(steps):
    try:
        results = _runner().downgrade(steps)
    except MigrationError as e:
        raise click.ClickException(str(e))
    _echo_results(results, "revert")

@units.command("revert")
@click.argument("identifier")
@with_appcontext
def units_revert(identifier):
    try:
        result = _runner().revert(identifier)
    except MigrationError as e:
        raise click.ClickException(str(e))
    _echo_results([result], "revert")

@units.command("resolve")
@click.argument("identifier")
@click.option("--status", type=click.Choice([STATUS_PENDING, STATUS_APPLIED]), required=True)
@with_appcontext
def units_resolve(identifier, status):
    # Only after checking the schema by hand: this rewrites the ledger, not the schema
    try:
        entry = _runner().resolve(identifier, status)
    except MigrationError as e:
        raise click.ClickException(str(e))
    click.echo(f"Unit {entry.identifier} marked {entry.status}")

def register_cli(app):
    app.cli.add_command(units)
