"""Domain layer for reconciler application."""

# Services import the database layer, which in turn imports entities from
# this package, so they are resolved on first access.
_SERVICES = {
    "SchemaService": "reconciler.domain.schema",
    "IngestionService": "reconciler.domain.ingestion",
    "RuleService": "reconciler.domain.rules",
    "MatchingService": "reconciler.domain.matching",
    "ApprovalService": "reconciler.domain.approval",
    "RoleAuthorizer": "reconciler.domain.authorization",
}

__all__ = list(_SERVICES)


def __getattr__(name):
    if name in _SERVICES:
        import importlib

        return getattr(importlib.import_module(_SERVICES[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
