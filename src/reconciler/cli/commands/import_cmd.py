"""File import commands."""

import click
from reconciler.cli.context import require_tenant, require_user, resolve_or_exit
from reconciler.cli.error_handling import handle_domain_error
from reconciler.domain.entities import CANONICAL_FIELDS
from reconciler.domain.errors import DomainError
from reconciler.domain.ingestion import IngestionService
from reconciler.domain.schema import SchemaService


def _parse_mapping(ctx, pairs: tuple[str, ...]) -> dict[str, int] | None:
    """Parse FIELD=INDEX pairs; column indexes on the command line are 1-based."""
    if not pairs:
        return None
    mapping = {}
    for pair in pairs:
        field_name, sep, index = pair.partition("=")
        field_name = field_name.strip()
        if not sep or field_name not in CANONICAL_FIELDS or not index.strip().isdigit() or int(index) < 1:
            click.echo(
                f"Error: Invalid mapping '{pair}'. Use FIELD=COLUMN with FIELD one of "
                f"{', '.join(CANONICAL_FIELDS)} and COLUMN a 1-based column number",
                err=True,
            )
            ctx.exit(1)
        mapping[field_name] = int(index) - 1
    return mapping


@click.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--data-source", help="Data source name or ID")
@click.option(
    "--map",
    "mappings",
    multiple=True,
    metavar="FIELD=COLUMN",
    help="Explicit column mapping, e.g. --map date=1 --map amount=3 (overrides the schema)",
)
@click.option("--suggest", is_flag=True, help="Only show a suggested column mapping")
@click.pass_context
def import_file(ctx, file: str, data_source: str, mappings: tuple[str, ...], suggest: bool):
    """Import transactions from a CSV file."""
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    service = IngestionService(db)

    if suggest:
        headers = service.read_headers(file)
        suggestions = service.suggest_column_mapping(headers)
        if not suggestions:
            click.echo("No column mapping could be suggested.")
            return
        click.echo("Suggested mapping:")
        for field_name, index in suggestions.items():
            click.echo(f"  {field_name}={index + 1}  ({headers[index]})")
        return

    if not data_source:
        click.echo("Error: Missing option '--data-source'", err=True)
        ctx.exit(1)
    user = require_user(ctx)
    data_source_id = resolve_or_exit(
        ctx, data_source, SchemaService(db).list_data_sources(tenant), "Data source"
    )
    column_mapping = _parse_mapping(ctx, mappings)

    try:
        record = service.import_file(file, data_source_id, tenant, user, column_mapping=column_mapping)
    except (DomainError, FileNotFoundError) as e:
        handle_domain_error(ctx, e)

    click.echo(f"\nImport {record.id} {record.status.value.lower()}:")
    click.echo(f"  Rows: {record.row_count}")
    click.echo(f"  Imported: {record.success_count}")
    click.echo(f"  Errors: {record.error_count}")
    if record.error_message:
        click.echo(f"  {record.error_message}", err=True)
    if record.error_count:
        click.echo(f"Use 'imports errors {record.id}' to see the failed rows.")


@click.group()
def imports_group():
    """Inspect imports."""
    pass


@imports_group.command("list")
@click.option("--data-source", help="Filter by data source name or ID")
@click.pass_context
def list_imports(ctx, data_source: str | None):
    """List imports, newest first."""
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    service = IngestionService(db)

    data_source_id = None
    if data_source:
        data_source_id = resolve_or_exit(
            ctx, data_source, SchemaService(db).list_data_sources(tenant), "Data source"
        )

    records = service.list_imports(tenant, data_source_id=data_source_id)
    if not records:
        click.echo("No imports found.")
        return

    for record in records:
        click.echo(
            f"ID: {record.id:3d} | {record.file_name:25s} | {record.status.value:10s} | "
            f"{record.success_count}/{record.row_count} rows"
        )


@imports_group.command("errors")
@click.argument("import_id", type=int)
@click.pass_context
def list_errors(ctx, import_id: int):
    """Show the rows of an import that failed."""
    tenant = require_tenant(ctx)
    service = IngestionService(ctx.obj["db"])

    try:
        rows = service.list_raw_transactions(import_id, tenant, errors_only=True)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not rows:
        click.echo("No failed rows.")
        return
    for row in rows:
        click.echo(f"Row {row.row_number}: {row.error_message}")


@imports_group.command("delete")
@click.argument("import_id", type=int)
@click.pass_context
def delete_import(ctx, import_id: int):
    """Delete an import and its raw rows; imported transactions are kept."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = IngestionService(ctx.obj["db"])

    try:
        service.delete_import(import_id, tenant, user)
        click.echo(f"Deleted import {import_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


def register_commands(cli):
    """Register import commands with main CLI."""
    cli.add_command(import_file)
    cli.add_command(imports_group, name="imports")
