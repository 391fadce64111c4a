"""Main CLI entry point."""

import logging

import click
from reconciler.database.factories import create_sqlite_database

# Import and register all commands at module level
from reconciler.cli.commands import (
    datasource,
    schema,
    import_cmd,
    rule,
    matchset,
    match,
    role,
)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides RECONCILER_DB_PATH environment variable)",
    envvar="RECONCILER_DB_PATH",
)
@click.option("--tenant", help="Tenant to work in", envvar="RECONCILER_TENANT")
@click.option("--user", help="Acting user ID", envvar="RECONCILER_USER")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity",
    envvar="RECONCILER_LOG_LEVEL",
)
@click.pass_context
def cli(ctx, db_path: str | None, tenant: str | None, user: str | None, log_level: str):
    """Reconciler - Transaction matching and reconciliation.

    Import transactions from several data sources, match them with
    configurable rules and review the resulting matches.
    """
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        ctx.obj["db"] = db
        ctx.obj["tenant"] = tenant
        ctx.obj["user"] = user


# Register all commands
datasource.register_commands(cli)
schema.register_commands(cli)
import_cmd.register_commands(cli)
rule.register_commands(cli)
matchset.register_commands(cli)
match.register_commands(cli)
role.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
