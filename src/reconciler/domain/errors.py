"""Shared domain error messages and error types."""


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed precondition; raised before any side effect."""


class NotFoundError(DomainError):
    """Requested entity does not exist or belongs to another tenant."""


class ConflictError(DomainError):
    """Domain conflict, such as a run already in progress or a terminal match."""


class RunAbortedError(ConflictError):
    """A match run was closed by someone else while it was still writing."""


class PermissionDeniedError(DomainError):
    """Acting user lacks the permission required for the operation."""


def not_found(entity: str, entity_id: int) -> str:
    """Return message for a missing (or foreign-tenant) entity."""
    return f"{entity} {entity_id} not found"


def permission_denied(user_id: str, permission: str) -> str:
    """Return message for a failed permission check."""
    return f"User '{user_id}' is not allowed to perform '{permission}'"


def run_already_in_progress(match_set_id: int) -> str:
    """Return message when a second run is started for a running match set."""
    return f"A run is already in progress for match set {match_set_id}"


def run_aborted(run_id: int, match_set_id: int) -> str:
    """Return message for a run that was aborted before it completed."""
    return f"Run {run_id} for match set {match_set_id} was aborted"


def run_no_longer_running(run_id: int) -> str:
    """Return message when a run writes after it was aborted or finished."""
    return f"Run {run_id} is no longer running"


def match_already_terminal(match_id: int, status: str) -> str:
    """Return message when approving or rejecting a finalized match."""
    return f"Match {match_id} is already {status}"


def transactions_already_matched(transaction_ids: list[int]) -> str:
    """Return message when transactions are already part of a match group."""
    ids = ", ".join(str(tid) for tid in transaction_ids)
    return f"Transaction{'s' if len(transaction_ids) != 1 else ''} {ids} already matched"


def missing_required_mappings(missing: list[str]) -> str:
    """Return message for a column mapping lacking required canonical fields."""
    return f"Column mapping is missing required fields: {', '.join(sorted(missing))}"
