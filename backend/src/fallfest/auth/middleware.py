"""Authentication dependencies for FastAPI.

Sign-in happens at the external identity provider; requests carry its
access token as a bearer credential. We only verify the token and read the
subject and email claims.
"""

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from fallfest.logging_config import bind_request_context, get_logger
from fallfest.referral.models import Identity
from fallfest.settings import settings

logger = get_logger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


def verify_token(token: str) -> dict[str, Any] | None:
    """Verify an access token issued by the identity provider.

    Args:
        token: Encoded JWT

    Returns:
        Token claims or None if invalid
    """
    options = {"verify_aud": settings.jwt_audience is not None}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options=options,
        )
    except JWTError as e:
        logger.debug("token_verification_failed", error=str(e))
        return None


async def get_current_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Identity | None:
    """Get the signed-in identity, or None for anonymous requests."""
    if not credentials:
        return None

    claims = verify_token(credentials.credentials)
    if not claims or not claims.get("sub"):
        return None

    identity = Identity(user_id=str(claims["sub"]), email=claims.get("email"))
    request.state.identity = identity
    bind_request_context(user_id=identity.user_id)
    return identity


def require_auth(identity: Identity | None = Depends(get_current_identity)) -> Identity:
    """Require authentication - raises 401 if not authenticated."""
    if not identity:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
