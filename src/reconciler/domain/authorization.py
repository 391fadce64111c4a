"""Roles, permissions and the authorization collaborator."""

import logging
from abc import ABC, abstractmethod
from enum import Enum

from reconciler.database.base import Database
from reconciler.domain.entities import Role
from reconciler.domain.errors import PermissionDeniedError, ValidationError, permission_denied

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    MATCH_TRANSACTIONS = "match:transactions"
    APPROVE_MATCHES = "approve:matches"
    VIEW_MATCHSET = "view:matchset"
    UPLOAD_DATASOURCE = "upload:datasource"
    MANAGE_SCHEMAS = "manage:schemas"
    MANAGE_RULES = "manage:rules"


ROLE_CAPABILITIES: dict[Role, frozenset[Permission]] = {
    Role.PREPARER: frozenset(
        {
            Permission.MATCH_TRANSACTIONS,
            Permission.VIEW_MATCHSET,
            Permission.UPLOAD_DATASOURCE,
        }
    ),
    Role.APPROVER: frozenset({Permission.APPROVE_MATCHES, Permission.VIEW_MATCHSET}),
    Role.ADMIN: frozenset(Permission),
}


class Authorizer(ABC):
    """Answers whether a user holds a permission within a tenant."""

    @abstractmethod
    def has_permission(self, user_id: str, permission: Permission, tenant_id: str) -> bool:
        pass


class RoleAuthorizer(Authorizer):
    """Authorizer backed by tenant-scoped role assignments in the database."""

    def __init__(self, db: Database):
        self.db = db

    def has_permission(self, user_id: str, permission: Permission, tenant_id: str) -> bool:
        roles = self.db.get_user_roles(user_id, tenant_id)
        return any(permission in ROLE_CAPABILITIES[role] for role in roles)

    def assign_role(self, user_id: str, tenant_id: str, role: Role | str) -> None:
        """Grant a role to a user within a tenant. Assigning twice is harmless."""
        if not user_id or not user_id.strip():
            raise ValidationError("User ID is required")
        try:
            role = Role(role)
        except ValueError:
            raise ValidationError(
                f"Invalid role '{role}'. Must be one of: {', '.join(r.value for r in Role)}"
            )
        self.db.add_user_role(user_id, tenant_id, role)
        logger.info("Granted role %s to user %s in tenant %s", role.value, user_id, tenant_id)

    def list_roles(self, user_id: str, tenant_id: str) -> list[Role]:
        return sorted(self.db.get_user_roles(user_id, tenant_id), key=lambda r: r.value)


def require_permission(
    authorizer: Authorizer, user_id: str, permission: Permission, tenant_id: str
) -> None:
    """Raise PermissionDeniedError unless the user holds the permission."""
    if not authorizer.has_permission(user_id, permission, tenant_id):
        logger.warning(
            "Denied %s to user %s in tenant %s", permission.value, user_id, tenant_id
        )
        raise PermissionDeniedError(permission_denied(user_id, permission.value))
