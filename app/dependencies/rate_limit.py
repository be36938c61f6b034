"""
Rate limit dependency for FastAPI routes.
"""
from fastapi import Depends, HTTPException

from app.dependencies.auth import TokenPayload, get_current_user
from app.routes.metrics import track_rate_limit_exceeded
from app.services.rate_limiter import rate_limiter


async def check_rate_limit(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
    """
    Check rate limit for the caller's tenant.

    Raises 429 if limit exceeded.
    """
    allowed, retry_after = await rate_limiter.is_allowed(current_user.org_id)

    if not allowed:
        track_rate_limit_exceeded(current_user.org_id)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )

    return current_user
