"""
Request dependencies: the loan manager and the calling user
"""

from fastapi import Header, HTTPException, Request, status

from ..loans import LoanManager
from ..roles import Actor, Role


def get_loan_manager(request: Request) -> LoanManager:
    return request.app.state.loan_manager


def get_actor(
    x_user_id: str = Header(..., description="Calling user ID"),
    x_user_role: str = Header(..., description="super_admin, lender or borrower")
) -> Actor:
    """Identify the caller from request headers"""
    try:
        role = Role(x_user_role)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_user_role}"
        )
    return Actor(user_id=x_user_id, role=role)
