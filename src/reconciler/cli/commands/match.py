"""Match review commands."""

import click
from reconciler.cli.context import require_tenant, require_user, resolve_or_exit
from reconciler.cli.error_handling import handle_domain_error
from reconciler.domain.approval import ApprovalService
from reconciler.domain.entities import MatchStatus, MatchType
from reconciler.domain.errors import DomainError
from reconciler.domain.matching import MatchingService


@click.group()
def match_group():
    """Create and review matches."""
    pass


@match_group.command("manual")
@click.argument("transaction_ids", nargs=-1, type=int, required=True)
@click.option("--match-set", required=True, help="Match set name or ID")
@click.pass_context
def create_manual_match(ctx, transaction_ids: tuple[int, ...], match_set: str):
    """Group transactions by hand.

    Examples:
        reconciler match manual 12 31 --match-set "Bank vs Ledger"
    """
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = MatchingService(ctx.obj["db"])
    match_set_id = resolve_or_exit(ctx, match_set, service.list_match_sets(tenant), "Match set")

    try:
        match = service.create_manual_match(list(transaction_ids), match_set_id, tenant, user)
        click.echo(f"Created manual match {match.id} (group {match.match_group_id}), pending approval")
    except DomainError as e:
        handle_domain_error(ctx, e)


@match_group.command("approve")
@click.argument("match_id", type=int)
@click.pass_context
def approve_match(ctx, match_id: int):
    """Approve a pending match."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = ApprovalService(ctx.obj["db"])

    try:
        service.approve_match(match_id, tenant, user)
        click.echo(f"Approved match {match_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@match_group.command("reject")
@click.argument("match_id", type=int)
@click.option("--reason", required=True, help="Why the match is wrong")
@click.pass_context
def reject_match(ctx, match_id: int, reason: str):
    """Reject a pending match; its transactions become unmatched again."""
    tenant = require_tenant(ctx)
    user = require_user(ctx)
    service = ApprovalService(ctx.obj["db"])

    try:
        service.reject_match(match_id, tenant, user, reason)
        click.echo(f"Rejected match {match_id}")
    except DomainError as e:
        handle_domain_error(ctx, e)


@match_group.command("list")
@click.option("--status", type=click.Choice([s.value for s in MatchStatus]), help="Filter by status")
@click.option("--type", "match_type", type=click.Choice([t.value for t in MatchType]), help="Filter by type")
@click.option("--match-set", help="Filter by match set name or ID")
@click.option("--limit", type=int, default=20, show_default=True)
@click.option("--offset", type=int, default=0, show_default=True)
@click.pass_context
def list_matches(
    ctx, status: str | None, match_type: str | None, match_set: str | None, limit: int, offset: int
):
    """List matches, newest first."""
    db = ctx.obj["db"]
    tenant = require_tenant(ctx)
    service = ApprovalService(db)

    match_set_id = None
    if match_set:
        match_set_id = resolve_or_exit(
            ctx, match_set, MatchingService(db).list_match_sets(tenant), "Match set"
        )

    try:
        matches, total = service.search_matches(
            tenant,
            status=status,
            match_type=match_type,
            match_set_id=match_set_id,
            limit=limit,
            offset=offset,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    if not matches:
        click.echo("No matches found.")
        return

    click.echo(f"\nMatches {offset + 1}-{offset + len(matches)} of {total}:")
    click.echo("-" * 60)
    for match in matches:
        click.echo(
            f"ID: {match.id:4d} | {match.match_status.value:8s} | {match.match_type.value:9s} | "
            f"by {match.matched_by} | set {match.match_set_id}"
        )


@match_group.command("show")
@click.argument("match_id", type=int)
@click.pass_context
def show_match(ctx, match_id: int):
    """Show a match and its transactions."""
    tenant = require_tenant(ctx)
    service = ApprovalService(ctx.obj["db"])

    try:
        match, transactions = service.get_match_details(match_id, tenant)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"\nMatch {match.id} ({match.match_type.value}, {match.match_status.value})")
    click.echo("-" * 60)
    click.echo(f"Group: {match.match_group_id}")
    click.echo(f"Matched by: {match.matched_by}")
    if match.approved_by:
        click.echo(f"Reviewed by: {match.approved_by}")
    if match.rejection_reason:
        click.echo(f"Rejection reason: {match.rejection_reason}")
    for txn in transactions:
        click.echo(
            f"  ID: {txn.id:5d} | source {txn.data_source_id} | {txn.transaction_date} | "
            f"{txn.amount:>12} {txn.currency} | {txn.reference or '-'}"
        )


def register_commands(cli):
    """Register match commands with main CLI."""
    cli.add_command(match_group, name="match")
