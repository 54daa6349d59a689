from fastapi import Depends, Header

from app.core.auth import Principal, Role
from app.core.errors import ForbiddenError, UnauthenticatedError
from app.services.directory import get_identity_directory


def _parse_bearer(authorization: str) -> str:
    if not authorization.lower().startswith("bearer "):
        raise UnauthenticatedError("human auth requires bearer token")
    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise UnauthenticatedError("empty bearer token")
    return token


async def get_optional_principal(
    directory=Depends(get_identity_directory),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal | None:
    if authorization is None:
        return None
    return await directory.resolve(_parse_bearer(authorization))


async def get_human_principal(principal: Principal | None = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise UnauthenticatedError("human auth requires bearer token")
    return principal


async def get_admin_principal(principal: Principal = Depends(get_human_principal)) -> Principal:
    if principal.role is not Role.ADMIN:
        raise ForbiddenError("admin access required", reason="role_not_permitted")
    if not principal.is_active:
        raise ForbiddenError("inactive account", reason="inactive")
    return principal
