"""
Roles Module

Capability sets for the three kinds of user: super administrators, lenders
(loan officers) and borrowers. Workflows check permissions, never role names.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet


class Permission(Enum):
    """Loan engine permissions"""
    CREATE_LOAN = "create_loan"
    RECORD_PAYMENT = "record_payment"
    RECONCILE_LOAN = "reconcile_loan"
    VIEW_LOAN = "view_loan"
    MARK_DEFAULTED = "mark_defaulted"


class Role(Enum):
    """User roles"""
    SUPER_ADMIN = "super_admin"
    LENDER = "lender"
    BORROWER = "borrower"


ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.SUPER_ADMIN: frozenset(Permission),
    Role.LENDER: frozenset({
        Permission.CREATE_LOAN,
        Permission.RECORD_PAYMENT,
        Permission.RECONCILE_LOAN,
        Permission.VIEW_LOAN,
    }),
    Role.BORROWER: frozenset({
        Permission.VIEW_LOAN,
    }),
}


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf a workflow runs"""
    user_id: str
    role: Role

    @property
    def permissions(self) -> FrozenSet[Permission]:
        return ROLE_PERMISSIONS[self.role]

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.permissions


def check_permission(actor: Actor, permission: Permission) -> None:
    """
    Ensure the actor holds a permission

    Raises:
        PermissionError: If the actor's role does not grant it
    """
    if not actor.has_permission(permission):
        raise PermissionError(
            f"User {actor.user_id} ({actor.role.value}) lacks permission {permission.value}"
        )
