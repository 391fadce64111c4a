"""Data source management commands."""

import json

import click
from reconciler.cli.context import require_tenant, require_user, resolve_or_exit
from reconciler.cli.error_handling import handle_domain_error
from reconciler.domain.authorization import RoleAuthorizer
from reconciler.domain.entities import TransactionStatus
from reconciler.domain.errors import DomainError
from reconciler.domain.ingestion import IngestionService
from reconciler.domain.schema import SchemaService


@click.group()
def datasource_group():
    """Manage data sources."""
    pass


@datasource_group.command("create")
@click.argument("name", metavar="DATA_SOURCE_NAME")
@click.option("--description", help="Data source description")
@click.option("--schema", "schema_ref", help="Schema name or ID used to map imported columns")
@click.option(
    "--definition",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with an inline schema definition",
)
@click.pass_context
def create_data_source(
    ctx, name: str, description: str | None, schema_ref: str | None, definition: str | None
):
    """Create a new data source.

    Examples:
        reconciler datasource create "Bank Statement" --schema bank-csv
        reconciler datasource create "General Ledger" --definition ledger.json
    """
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = SchemaService(db, authorizer=RoleAuthorizer(db))

    schema_id = None
    if schema_ref:
        schema_id = resolve_or_exit(ctx, schema_ref, service.list_schemas(tenant), "Schema")

    schema_definition = None
    if definition:
        with open(definition, "r", encoding="utf-8") as f:
            try:
                schema_definition = json.load(f)
            except json.JSONDecodeError as e:
                click.echo(f"Error: Invalid definition file: {e}", err=True)
                ctx.exit(1)

    try:
        data_source_id = service.create_data_source(
            tenant_id=tenant,
            name=name,
            description=description,
            schema_id=schema_id,
            schema_definition=schema_definition,
            created_by=user,
        )
        click.echo(f"Created data source '{name}' (ID: {data_source_id})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@datasource_group.command("list")
@click.pass_context
def list_data_sources(ctx):
    """List data sources."""
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    service = SchemaService(db)

    sources = service.list_data_sources(tenant)
    if not sources:
        click.echo("No data sources found.")
        return

    click.echo("\nData Sources:")
    click.echo("-" * 60)
    for source in sources:
        schema = f"Schema: {source.schema_id}" if source.schema_id is not None else "No schema"
        click.echo(f"ID: {source.id:3d} | {source.name:25s} | {schema}")


@datasource_group.command("transactions")
@click.argument("data_source")
@click.option(
    "--status",
    type=click.Choice([s.value for s in TransactionStatus], case_sensitive=False),
    help="Only show transactions with this status",
)
@click.pass_context
def list_transactions(ctx, data_source: str, status: str | None):
    """List the transactions of a data source."""
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    data_source_id = resolve_or_exit(ctx, data_source, SchemaService(db).list_data_sources(tenant), "Data source")
    service = IngestionService(db)

    if status is not None:
        status = next(s for s in TransactionStatus if s.value.lower() == status.lower())
    try:
        transactions = service.list_transactions(data_source_id, tenant, status=status)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not transactions:
        click.echo("No transactions found.")
        return

    for txn in transactions:
        click.echo(
            f"ID: {txn.id:5d} | {txn.transaction_date} | {txn.amount:>12} {txn.currency} | "
            f"{txn.status.value:9s} | {txn.reference or '-':15s} | {txn.description or ''}"
        )


def register_commands(cli):
    """Register data source commands with main CLI."""
    cli.add_command(datasource_group, name="datasource")
