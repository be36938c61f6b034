"""
JWT token service for management API authentication.

The org_id claim identifies the tenant whose webhook endpoints the
caller may manage.
"""
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from app.config import settings


class JWTService:
    """Service for creating and verifying JWT tokens."""

    def create_token(self, user_id: str, org_id: str, role: str, email: str) -> str:
        """
        Create a JWT token with tenant context.

        Args:
            user_id: Caller's unique ID
            org_id: Tenant organisation ID
            role: Caller role (admin or member)
            email: Caller's email

        Returns:
            Encoded JWT token string
        """
        expires = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

        payload = {
            "sub": user_id,
            "org_id": org_id,
            "role": role,
            "email": email,
            "exp": expires
        }

        return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    def verify_token(self, token: str) -> dict | None:
        """
        Verify and decode a JWT token.

        Returns:
            Decoded payload dict or None if invalid
        """
        try:
            return jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError:
            return None
