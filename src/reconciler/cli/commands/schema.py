"""Schema management commands."""

import click
from reconciler.cli.context import require_tenant, require_user, resolve_or_exit
from reconciler.cli.error_handling import handle_domain_error
from reconciler.domain.authorization import RoleAuthorizer
from reconciler.domain.entities import CANONICAL_FIELDS, FieldType
from reconciler.domain.errors import DomainError
from reconciler.domain.schema import NUMBER_FORMATS, TRANSFORMATIONS, SchemaService


@click.group()
def schema_group():
    """Manage data source schemas and column mappings."""
    pass


def _service(ctx) -> SchemaService:
    db = ctx.obj["db"]
    return SchemaService(db, authorizer=RoleAuthorizer(db))


@schema_group.command("create")
@click.argument("name", metavar="SCHEMA_NAME")
@click.option("--description", help="Schema description")
@click.pass_context
def create_schema(ctx, name: str, description: str | None):
    """Create a new schema."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = _service(ctx)

    try:
        schema_id = service.create_schema(tenant, name, description=description, created_by=user)
        click.echo(f"Created schema '{name}' (ID: {schema_id})")
        click.echo("Use 'schema map' to add column mappings.")
    except DomainError as e:
        handle_domain_error(ctx, e)


@schema_group.command("add-field")
@click.argument("schema")
@click.argument("name")
@click.option(
    "--type",
    "field_type",
    type=click.Choice([t.value for t in FieldType]),
    default=FieldType.STRING.value,
    show_default=True,
)
@click.option("--required", is_flag=True, help="Mark this field as required")
@click.option("--display-name", help="Human readable field name")
@click.option("--default", "default_value", help="Default value")
@click.pass_context
def add_field(
    ctx,
    schema: str,
    name: str,
    field_type: str,
    required: bool,
    display_name: str | None,
    default_value: str | None,
):
    """Add a field to a schema."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = _service(ctx)
    schema_id = resolve_or_exit(ctx, schema, service.list_schemas(tenant), "Schema")

    try:
        field_id = service.add_field(
            schema_id,
            tenant,
            name,
            field_type=field_type,
            required=required,
            display_name=display_name,
            default_value=default_value,
            user_id=user,
        )
        click.echo(f"Added field '{name}' (ID: {field_id}, Type: {field_type}, Required: {required})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@schema_group.command("map")
@click.argument("schema")
@click.argument("source_column")
@click.argument("target_field", type=click.Choice(CANONICAL_FIELDS))
@click.option(
    "--transform",
    type=click.Choice(sorted(TRANSFORMATIONS)),
    help="Transformation applied while importing",
)
@click.pass_context
def map_column(ctx, schema: str, source_column: str, target_field: str, transform: str | None):
    """Map a source column to a transaction field."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = _service(ctx)
    schema_id = resolve_or_exit(ctx, schema, service.list_schemas(tenant), "Schema")

    try:
        mapping_id = service.add_mapping(
            schema_id, tenant, source_column, target_field, transformation=transform, user_id=user
        )
        suffix = f", Transform: {transform}" if transform else ""
        click.echo(f"Mapped column '{source_column}' to '{target_field}' (ID: {mapping_id}{suffix})")
    except DomainError as e:
        handle_domain_error(ctx, e)


@schema_group.command("unmap")
@click.argument("schema")
@click.argument("mapping_id", type=int)
@click.pass_context
def unmap_column(ctx, schema: str, mapping_id: int):
    """Remove a column mapping."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = _service(ctx)
    schema_id = resolve_or_exit(ctx, schema, service.list_schemas(tenant), "Schema")

    try:
        service.delete_mapping(mapping_id, schema_id, tenant, user_id=user)
        click.echo(f"Removed mapping {mapping_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@schema_group.command("config")
@click.argument("schema")
@click.option("--delimiter", help="Column delimiter (sniffed when not set)")
@click.option("--header/--no-header", default=True, help="Whether files start with a header row")
@click.option("--date-format", help="strptime pattern for dates, e.g. %d/%m/%Y")
@click.option("--time-format", help="strptime pattern for times")
@click.option("--number-format", type=click.Choice(NUMBER_FORMATS), help="Number format")
@click.option("--quote-char", help="Quote character")
@click.pass_context
def configure_parsing(
    ctx,
    schema: str,
    delimiter: str | None,
    header: bool,
    date_format: str | None,
    time_format: str | None,
    number_format: str | None,
    quote_char: str | None,
):
    """Set how CSV files of a schema are parsed."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = _service(ctx)
    schema_id = resolve_or_exit(ctx, schema, service.list_schemas(tenant), "Schema")

    options = {
        "has_header_row": header,
        "delimiter": delimiter,
        "date_format": date_format,
        "time_format": time_format,
        "number_format": number_format,
        "quote_char": quote_char,
    }
    try:
        if service.get_parsing_config(schema_id, tenant) is None:
            service.create_parsing_config(schema_id, tenant, user_id=user, **options)
            click.echo(f"Created CSV parsing config for schema '{schema}'")
        else:
            changes = {k: v for k, v in options.items() if v is not None}
            service.update_parsing_config(schema_id, tenant, user_id=user, **changes)
            click.echo(f"Updated CSV parsing config for schema '{schema}'")
    except DomainError as e:
        handle_domain_error(ctx, e)


@schema_group.command("list")
@click.pass_context
def list_schemas(ctx):
    """List schemas with their fields and mappings."""
    tenant = require_tenant(ctx)
    service = SchemaService(ctx.obj["db"])

    schemas = service.list_schemas(tenant)
    if not schemas:
        click.echo("No schemas found.")
        return

    click.echo("\nSchemas:")
    click.echo("-" * 60)
    for schema in schemas:
        is_valid, missing = service.validate_mappings(schema.id, tenant)
        status = "✓" if is_valid else "✗"
        click.echo(f"{status} {schema.name} (ID: {schema.id})")
        for schema_field in service.list_fields(schema.id, tenant):
            required = " (required)" if schema_field.required else ""
            click.echo(f"  Field: {schema_field.name} [{schema_field.type.value}]{required}")
        for mapping in service.get_mappings(schema.id, tenant):
            transform = f" [{mapping.transformation}]" if mapping.transformation else ""
            click.echo(
                f"  Map {mapping.id}: '{mapping.source_field_name}' -> {mapping.target_field_name}{transform}"
            )
        if missing:
            click.echo(f"  Missing required mappings: {', '.join(missing)}")


def register_commands(cli):
    """Register schema commands with main CLI."""
    cli.add_command(schema_group, name="schema")
