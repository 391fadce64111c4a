"""CLI helpers for the acting tenant and user, and name-or-ID resolution."""

from __future__ import annotations

from typing import Iterable

import click


def require_tenant(ctx: click.Context) -> str:
    """Return the tenant given on the command line, or exit with a CLI error."""
    tenant = ctx.obj.get("tenant")
    if not tenant:
        click.echo("Error: No tenant given. Use --tenant or set RECONCILER_TENANT.", err=True)
        ctx.exit(1)
    return tenant


def require_user(ctx: click.Context) -> str:
    """Return the acting user, or exit with a CLI error."""
    user = ctx.obj.get("user")
    if not user:
        click.echo("Error: No user given. Use --user or set RECONCILER_USER.", err=True)
        ctx.exit(1)
    return user


def resolve_or_exit(ctx: click.Context, value: str, entities: Iterable, label: str) -> int:
    """Resolve an entity name or ID to its ID, or exit with a CLI error.

    Names win over IDs, so an entity named "7" is found by name.
    """
    entities = list(entities)
    for entity in entities:
        if entity.name == value:
            return entity.id
    if value.isdigit():
        for entity in entities:
            if entity.id == int(value):
                return entity.id
    click.echo(f"Error: {label} '{value}' not found", err=True)
    ctx.exit(1)
