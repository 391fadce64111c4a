"""Role assignment commands."""

import click
from reconciler.cli.context import require_tenant
from reconciler.cli.error_handling import handle_domain_error
from reconciler.domain.authorization import ROLE_CAPABILITIES, RoleAuthorizer
from reconciler.domain.entities import Role
from reconciler.domain.errors import DomainError


@click.group()
def role_group():
    """Manage user roles."""
    pass


@role_group.command("assign")
@click.argument("user_id")
@click.argument("role", type=click.Choice([r.value for r in Role]))
@click.pass_context
def assign_role(ctx, user_id: str, role: str):
    """Grant a role to a user in the current tenant."""
    tenant = require_tenant(ctx)
    authorizer = RoleAuthorizer(ctx.obj["db"])

    try:
        authorizer.assign_role(user_id, tenant, role)
        click.echo(f"Granted role '{role}' to '{user_id}' in tenant '{tenant}'")
    except DomainError as e:
        handle_domain_error(ctx, e)


@role_group.command("list")
@click.argument("user_id", required=False)
@click.pass_context
def list_roles(ctx, user_id: str | None):
    """List a user's roles and permissions (defaults to the acting user)."""
    tenant = require_tenant(ctx)
    user_id = user_id or ctx.obj.get("user")
    if not user_id:
        click.echo("Error: No user given. Pass USER_ID or use --user.", err=True)
        ctx.exit(1)
    authorizer = RoleAuthorizer(ctx.obj["db"])

    roles = authorizer.list_roles(user_id, tenant)
    if not roles:
        click.echo(f"'{user_id}' has no roles in tenant '{tenant}'.")
        return
    for role in roles:
        permissions = ", ".join(sorted(p.value for p in ROLE_CAPABILITIES[role]))
        click.echo(f"{role.value}: {permissions}")


def register_commands(cli):
    """Register role commands with main CLI."""
    cli.add_command(role_group, name="role")
