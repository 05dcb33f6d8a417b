from collections.abc import Iterable

from fastapi import HTTPException, status

from app.core.auth import AuthUser
from app.core.config import get_settings


def require_any_role(user: AuthUser, roles: Iterable[str]) -> None:
    allowed = {role.lower() for role in roles}
    held = {role.lower() for role in user.roles}
    if not allowed & held:
        # TODO: Move to policy-backed permissions once roles are managed outside the JWT.
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing role: {' or '.join(sorted(allowed))}",
        )


def require_cross_sell_view(user: AuthUser) -> None:
    require_any_role(user, get_settings().cross_sell_view_role_set)


def ensure_business_unit_access(user: AuthUser, business_unit_id: str) -> None:
    """BU heads only see their own unit; admin and management see every unit."""
    held = {role.lower() for role in user.roles}
    if held & {"admin", "management"}:
        return
    if "bu_head" in held and user.business_unit_id == business_unit_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=f"Not allowed to view cross-sell data for business unit {business_unit_id}",
    )
