"""Match set and run commands."""

import click
from reconciler.cli.context import require_tenant, require_user, resolve_or_exit
from reconciler.cli.error_handling import handle_domain_error
from reconciler.domain.errors import DomainError
from reconciler.domain.matching import MatchingService
from reconciler.domain.rules import RuleService
from reconciler.domain.schema import SchemaService


@click.group()
def matchset_group():
    """Manage match sets and run matching."""
    pass


def _resolve_match_set(ctx, service: MatchingService, tenant: str, match_set: str) -> int:
    return resolve_or_exit(ctx, match_set, service.list_match_sets(tenant), "Match set")


@matchset_group.command("create")
@click.argument("name", metavar="MATCH_SET_NAME")
@click.option("--rule", required=True, help="Match rule name or ID")
@click.option(
    "--source",
    "sources",
    multiple=True,
    help="Data source name or ID; repeat in chain order",
)
@click.option("--description", help="Match set description")
@click.pass_context
def create_match_set(ctx, name: str, rule: str, sources: tuple[str, ...], description: str | None):
    """Create a match set.

    Examples:
        reconciler matchset create "Bank vs Ledger" --rule default --source Bank --source Ledger
    """
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = MatchingService(db)

    rule_id = resolve_or_exit(ctx, rule, RuleService(db).list_rules(tenant), "Match rule")
    all_sources = SchemaService(db).list_data_sources(tenant)
    source_ids = [resolve_or_exit(ctx, source, all_sources, "Data source") for source in sources]

    try:
        match_set_id = service.create_match_set(
            tenant, name, rule_id, description=description, created_by=user
        )
        for source_id in source_ids:
            service.add_data_source(match_set_id, source_id, tenant)
        click.echo(f"Created match set '{name}' (ID: {match_set_id})")
        if len(source_ids) < 2:
            click.echo("Use 'matchset add-source' to attach at least two data sources.")
    except DomainError as e:
        handle_domain_error(ctx, e)


@matchset_group.command("add-source")
@click.argument("match_set")
@click.argument("data_source")
@click.pass_context
def add_source(ctx, match_set: str, data_source: str):
    """Attach a data source to a match set."""
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    service = MatchingService(db)
    match_set_id = _resolve_match_set(ctx, service, tenant, match_set)
    data_source_id = resolve_or_exit(
        ctx, data_source, SchemaService(db).list_data_sources(tenant), "Data source"
    )

    try:
        service.add_data_source(match_set_id, data_source_id, tenant)
        click.echo(f"Added data source {data_source_id} to match set {match_set_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@matchset_group.command("list")
@click.pass_context
def list_match_sets(ctx):
    """List match sets."""
    tenant = require_tenant(ctx)
    service = MatchingService(ctx.obj["db"])

    match_sets = service.list_match_sets(tenant)
    if not match_sets:
        click.echo("No match sets found.")
        return

    for match_set in match_sets:
        sources = service.get_match_set_data_sources(match_set.id, tenant)
        names = " -> ".join(s.name for s in sources) or "no data sources"
        click.echo(
            f"ID: {match_set.id:3d} | {match_set.name:25s} | {match_set.run_status.value:9s} | {names}"
        )


@matchset_group.command("run")
@click.argument("match_set")
@click.pass_context
def run_match_set(ctx, match_set: str):
    """Run automatic matching for a match set."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = MatchingService(ctx.obj["db"])
    match_set_id = _resolve_match_set(ctx, service, tenant, match_set)

    try:
        summary = service.run_match_set(match_set_id, tenant, user)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"\nRun {summary.run_id} {summary.status.value.lower()}:")
    click.echo(f"  Groups: {summary.group_count}")
    click.echo(f"  Matched transactions: {summary.matched_count}")
    click.echo(f"  Unmatched transactions: {summary.unmatched_count}")
    if summary.conflict_count:
        click.echo(f"  Skipped groups: {summary.conflict_count}")


@matchset_group.command("abort")
@click.argument("match_set")
@click.option("--reason", default="aborted by operator", show_default=True)
@click.pass_context
def abort_run(ctx, match_set: str, reason: str):
    """Fail the current run of a match set and roll back its matches."""
    tenant = require_tenant(ctx)
    service = MatchingService(ctx.obj["db"])
    match_set_id = _resolve_match_set(ctx, service, tenant, match_set)

    try:
        run = service.abort_run(match_set_id, tenant, reason=reason)
        click.echo(f"Aborted run {run.id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@matchset_group.command("status")
@click.argument("match_set")
@click.pass_context
def show_status(ctx, match_set: str):
    """Show match counts and the latest run of a match set."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = MatchingService(ctx.obj["db"])
    match_set_id = _resolve_match_set(ctx, service, tenant, match_set)

    try:
        status = service.get_match_set_status(match_set_id, tenant, user)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"\n{status.name} (ID: {status.match_set_id})")
    click.echo("-" * 60)
    click.echo(f"Status: {status.status.value}")
    click.echo(f"Data sources: {', '.join(s.name for s in status.data_sources) or 'none'}")
    click.echo(f"Total transactions: {status.total_transactions}")
    click.echo(f"Matched: {status.matched_count}")
    click.echo(f"Unmatched: {status.unmatched_count}")
    if status.last_run is not None:
        run = status.last_run
        click.echo(f"Last run: {run.id} ({run.status.value}) started {run.started_at:%Y-%m-%d %H:%M}")
        if run.error_message:
            click.echo(f"  {run.error_message}")


@matchset_group.command("unmatched")
@click.argument("match_set")
@click.pass_context
def list_unmatched(ctx, match_set: str):
    """List transactions left unmatched by the last run, with reasons."""
    tenant = require_tenant(ctx)
    service = MatchingService(ctx.obj["db"])
    match_set_id = _resolve_match_set(ctx, service, tenant, match_set)

    entries = service.list_unmatched(match_set_id, tenant)
    if not entries:
        click.echo("No unmatched transactions.")
        return
    for entry in entries:
        click.echo(f"Transaction {entry.transaction_id}: {entry.reason}")


@matchset_group.command("runs")
@click.argument("match_set")
@click.pass_context
def list_runs(ctx, match_set: str):
    """List the runs of a match set, newest first."""
    tenant = require_tenant(ctx)
    service = MatchingService(ctx.obj["db"])
    match_set_id = _resolve_match_set(ctx, service, tenant, match_set)

    runs = service.list_runs(match_set_id, tenant)
    if not runs:
        click.echo("No runs yet.")
        return
    for run in runs:
        click.echo(
            f"Run {run.id:3d} | {run.status.value:9s} | {run.started_at:%Y-%m-%d %H:%M} | "
            f"{run.group_count} groups, {run.matched_count} matched, {run.unmatched_count} unmatched"
        )


def register_commands(cli):
    """Register match set commands with main CLI."""
    cli.add_command(matchset_group, name="matchset")
