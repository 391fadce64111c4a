"""Approval domain service.

A match is born Pending and ends Approved or Rejected. Terminal matches
never change again; rejecting returns the group's transactions to the
unmatched pool.
"""

import logging
from typing import Optional

from reconciler.database.base import Database
from reconciler.domain.authorization import (
    Authorizer,
    Permission,
    RoleAuthorizer,
    require_permission,
)
from reconciler.domain.entities import MatchStatus, MatchType, Transaction, TransactionMatch
from reconciler.domain.errors import NotFoundError, ValidationError, not_found

logger = logging.getLogger(__name__)


class ApprovalService:
    """Service for reviewing matches."""

    def __init__(self, db: Database, authorizer: Optional[Authorizer] = None):
        """Initialize approval service.

        Args:
            db: Database instance
            authorizer: Permission source; defaults to role assignments in db
        """
        self.db = db
        self.authorizer = authorizer or RoleAuthorizer(db)

    def _get_match(self, match_id: int, tenant_id: str) -> TransactionMatch:
        match = self.db.get_match(match_id, tenant_id)
        if match is None:
            raise NotFoundError(not_found("Match", match_id))
        return match

    def approve_match(self, match_id: int, tenant_id: str, user_id: str) -> TransactionMatch:
        """Approve a Pending match.

        Raises:
            PermissionDeniedError: If the user may not approve
            NotFoundError: If the match does not exist in the tenant
            ConflictError: If the match is already Approved or Rejected
        """
        require_permission(self.authorizer, user_id, Permission.APPROVE_MATCHES, tenant_id)
        self._get_match(match_id, tenant_id)
        match = self.db.approve_match(match_id, tenant_id, approved_by=user_id)
        logger.info("User %s approved match %s", user_id, match_id)
        return match

    def reject_match(self, match_id: int, tenant_id: str, user_id: str, reason: str) -> TransactionMatch:
        """Reject a Pending match and release its transactions.

        The status change, the removal of the group's members and the revert
        of their transactions to Unmatched are committed together.

        Raises:
            PermissionDeniedError: If the user may not approve
            ValidationError: If the reason is blank
            NotFoundError: If the match does not exist in the tenant
            ConflictError: If the match is already Approved or Rejected
        """
        require_permission(self.authorizer, user_id, Permission.APPROVE_MATCHES, tenant_id)
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        self._get_match(match_id, tenant_id)
        match = self.db.reject_match(match_id, tenant_id, rejected_by=user_id, reason=reason.strip())
        logger.info("User %s rejected match %s: %s", user_id, match_id, reason.strip())
        return match

    def get_match_details(self, match_id: int, tenant_id: str) -> tuple[TransactionMatch, list[Transaction]]:
        """Get a match and its member transactions.

        Rejected matches have no members left.
        """
        match = self._get_match(match_id, tenant_id)
        return match, self.db.get_match_transactions(match_id, tenant_id)

    def search_matches(
        self,
        tenant_id: str,
        status: MatchStatus | str | None = None,
        match_type: MatchType | str | None = None,
        matched_by: Optional[str] = None,
        approved_by: Optional[str] = None,
        match_set_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TransactionMatch], int]:
        """Search matches, newest first.

        Returns:
            Tuple of (page of matches, total matching count)
        """
        if limit < 1 or offset < 0:
            raise ValidationError("Limit must be positive and offset must not be negative")
        try:
            status = MatchStatus(status) if status is not None else None
            match_type = MatchType(match_type) if match_type is not None else None
        except ValueError as e:
            raise ValidationError(str(e))
        return self.db.search_matches(
            tenant_id,
            status=status,
            match_type=match_type,
            matched_by=matched_by,
            approved_by=approved_by,
            match_set_id=match_set_id,
            limit=limit,
            offset=offset,
        )

    def list_pending(self, tenant_id: str, limit: int = 20, offset: int = 0) -> tuple[list[TransactionMatch], int]:
        return self.search_matches(tenant_id, status=MatchStatus.PENDING, limit=limit, offset=offset)
