"""
Marketplace — Security helper (JWT decode only, shared secret with the account service)
"""
from jose import jwt, JWTError
from typing import Any
from marketplace.core.config import get_settings

settings = get_settings()


def decode_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def account_id_from_claims(claims: dict[str, Any]) -> int:
    """Extract the numeric account id from the `sub` claim. Raises JWTError on failure."""
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise JWTError("Token subject is not an account id")
