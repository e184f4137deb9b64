"""
Token Handling
==============
Bearer tokens identify the caller of the procurement API:
- HS256 JWTs signed with PROCUREMENT_SECRET_KEY
- `sub` carries the username; the actor is loaded fresh from the database

Issuing tokens for real logins lives outside this service; create_access_token
exists for bootstrap scripts and tests.
"""

import secrets
from datetime import datetime, timedelta
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from .config import get_settings
from .services.errors import UnauthorizedError


# =============================================================================
# TOKEN MANAGEMENT
# =============================================================================

def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    settings = get_settings()
    to_encode = data.copy()

    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
        "type": "access"
    })

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        UnauthorizedError: If token is invalid or expired
    """
    settings = get_settings()
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except JWTError:
        raise UnauthorizedError("Invalid token")
