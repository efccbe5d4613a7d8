"""
Custom Flask CLI commands.

These commands are registered with the app via ``register_commands()``
in the application factory.  Run them with ``flask <command_name>``.

Usage::

    flask db-check             # Verify database connectivity and tables
    flask hierarchy-audit 3    # Report structural findings for hierarchy 3
    flask rebuild-paths 3      # Recompute cached levels and paths
"""

import click
from flask.cli import with_appcontext
from sqlalchemy import inspect

from orgtree.extensions import db

EXPECTED_TABLES = (
    "hierarchy_definition",
    "hierarchy_node",
    "hierarchy_relationship",
    "dynamic_role",
    "contextual_permission",
    "app_user",
    "audit_log",
)


@click.command("db-check")
@with_appcontext
def db_check_command():
    """
    Verify database connectivity and confirm the expected tables exist.

    Useful for confirming DATABASE_URL is correct and migrations have
    been applied (``flask db upgrade``).
    """
    click.echo("=" * 60)
    click.echo("  OrgTree Database Connectivity Check")
    click.echo("=" * 60)

    # Show the connection string with any password masked.
    db_url = db.engine.url.render_as_string(hide_password=True)
    click.echo(f"\n  Connection string: {db_url}\n")

    # -- Step 1: Basic connectivity ----------------------------------------
    click.echo("[1/2] Testing connection...")
    try:
        row = db.session.execute(db.text("SELECT 1 AS connected")).fetchone()
        if not row or row[0] != 1:
            click.secho("      ✗ Unexpected result from test query.", fg="red")
            return
        click.secho("      ✓ Connected successfully.", fg="green")
    except Exception as exc:  # pylint: disable=broad-exception-caught
        click.secho(f"      ✗ Connection failed: {exc}", fg="red")
        click.echo("\n  Troubleshooting tips:")
        click.echo("    - Is the database server running?")
        click.echo("    - Does your .env DATABASE_URL match your server config?")
        return

    # -- Step 2: Tables ----------------------------------------------------
    click.echo("[2/2] Checking tables...\n")
    existing = set(inspect(db.engine).get_table_names())
    missing = [table for table in EXPECTED_TABLES if table not in existing]
    for table in EXPECTED_TABLES:
        mark = "✗" if table in missing else "✓"
        click.echo(f"      {mark} {table}")

    if missing:
        click.secho(
            f"\n      {len(missing)} table(s) missing. Run 'flask db upgrade'.",
            fg="red",
        )
        return

    click.echo("\n" + "=" * 60)
    click.secho("  All checks passed. Database is ready.", fg="green", bold=True)
    click.echo("=" * 60)


@click.command("hierarchy-audit")
@click.argument("hierarchy_id", type=int)
@with_appcontext
def hierarchy_audit_command(hierarchy_id):
    """Report position, orphan, depth and edge findings for a hierarchy."""
    # pylint: disable=import-outside-toplevel
    from orgtree.services import hierarchy_service, relationship_service

    audit = hierarchy_service.audit_hierarchy(hierarchy_id)
    integrity = relationship_service.validate_hierarchy_integrity(hierarchy_id)

    click.echo(
        f"Hierarchy {hierarchy_id}: {audit.summary['nodes_checked']} nodes, "
        f"{integrity.summary['relationships_checked']} relationships checked"
    )
    findings = audit.issues + integrity.issues
    for finding in findings:
        click.secho(f"  ✗ {finding.type}: {finding.message}", fg="red")
    for warning in audit.warnings:
        click.secho(f"  ⚠ {warning.type}: {warning.message}", fg="yellow")

    if findings:
        raise SystemExit(1)
    click.secho("  ✓ No structural issues found.", fg="green")


@click.command("rebuild-paths")
@click.argument("hierarchy_id", type=int)
@with_appcontext
def rebuild_paths_command(hierarchy_id):
    """Recompute cached levels and materialized paths from parent pointers."""
    from orgtree.services import node_service  # pylint: disable=import-outside-toplevel

    count = node_service.rebuild_materialized_paths(hierarchy_id)
    click.echo(f"Rebuilt {count} node(s) in hierarchy {hierarchy_id}.")


def register_commands(app):
    """Register all custom CLI commands with the Flask application."""
    app.cli.add_command(db_check_command)
    app.cli.add_command(hierarchy_audit_command)
    app.cli.add_command(rebuild_paths_command)
