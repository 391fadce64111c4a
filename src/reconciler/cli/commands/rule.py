"""Match rule commands."""

import click
from reconciler.cli.context import require_tenant, require_user, resolve_or_exit
from reconciler.cli.error_handling import handle_domain_error
from reconciler.domain.authorization import RoleAuthorizer
from reconciler.domain.errors import DomainError
from reconciler.domain.rules import RuleService


@click.group()
def rule_group():
    """Manage match rules."""
    pass


@rule_group.command("create")
@click.argument("name", metavar="RULE_NAME")
@click.option("--amount", is_flag=True, help="Require offsetting amounts in the same currency")
@click.option("--date", is_flag=True, help="Require dates within the tolerance")
@click.option("--tolerance", type=int, default=0, show_default=True, help="Date tolerance in days")
@click.option("--reference", is_flag=True, help="Require matching references")
@click.option("--description", help="Rule description")
@click.pass_context
def create_rule(
    ctx, name: str, amount: bool, date: bool, tolerance: int, reference: bool, description: str | None
):
    """Create a match rule.

    Examples:
        reconciler rule create "Amount and date" --amount --date --tolerance 2
    """
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = RuleService(db, authorizer=RoleAuthorizer(db))

    try:
        rule_id = service.create_rule(
            tenant,
            name,
            match_by_amount=amount,
            match_by_date=date,
            date_tolerance_days=tolerance,
            match_by_reference=reference,
            description=description,
            created_by=user,
        )
        click.echo(f"Created match rule '{name}' (ID: {rule_id})")
        if not (amount or date or reference):
            click.echo("Warning: rule has no criteria and cannot be used for runs", err=True)
    except DomainError as e:
        handle_domain_error(ctx, e)


@rule_group.command("list")
@click.pass_context
def list_rules(ctx):
    """List match rules."""
    tenant = require_tenant(ctx)
    service = RuleService(ctx.obj["db"])

    rules = service.list_rules(tenant)
    if not rules:
        click.echo("No match rules found.")
        return

    click.echo("\nMatch Rules:")
    click.echo("-" * 60)
    for rule in rules:
        criteria = []
        if rule.match_by_amount:
            criteria.append("amount")
        if rule.match_by_date:
            criteria.append(f"date±{rule.date_tolerance_days}d")
        if rule.match_by_reference:
            criteria.append("reference")
        state = "active" if rule.active else "inactive"
        click.echo(f"ID: {rule.id:3d} | {rule.name:25s} | {', '.join(criteria) or 'none':25s} | {state}")


@rule_group.command("deactivate")
@click.argument("rule")
@click.pass_context
def deactivate_rule(ctx, rule: str):
    """Deactivate a match rule."""
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = RuleService(db, authorizer=RoleAuthorizer(db))
    rule_id = resolve_or_exit(ctx, rule, service.list_rules(tenant), "Match rule")

    try:
        service.deactivate_rule(rule_id, tenant, user_id=user)
        click.echo(f"Deactivated match rule {rule_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


def register_commands(cli):
    """Register rule commands with main CLI."""
    cli.add_command(rule_group, name="rule")
