"""
Authentication dependencies for the webhook management API.

The bearer token's org_id claim is the tenant; every route scopes its
queries to it. Only admins may change endpoint configuration.
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from app.services.jwt_service import JWTService

bearer_scheme = HTTPBearer()

ADMIN_ROLE = "admin"


class TokenPayload(BaseModel):
    """Claims carried by a management API token."""
    sub: str
    org_id: str
    role: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> TokenPayload:
    """
    Resolve the caller from the bearer token.

    Raises 401 for a bad signature, an expired token or missing claims.
    The tenant is recorded on request.state for the request log.
    """
    claims = JWTService().verify_token(credentials.credentials)
    if claims is None:
        raise _unauthorized()

    try:
        token = TokenPayload(**claims)
    except ValidationError:
        raise _unauthorized()

    request.state.tenant_id = token.org_id
    return token


def require_admin(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    """Allow only tenant admins through (403 otherwise)."""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
