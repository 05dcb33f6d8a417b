from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    business_unit_id: str | None = None


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        subject = str(payload.get("sub", "anonymous"))
        roles = payload.get("roles", ["user"])
        if not isinstance(roles, list):
            roles = [str(roles)] if isinstance(roles, str) else ["user"]
        business_unit_id = payload.get("business_unit_id")
        request.state.user_id = subject
        return AuthUser(
            sub=subject,
            roles=[str(role) for role in roles],
            business_unit_id=str(business_unit_id) if business_unit_id is not None else None,
        )
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])
