"""FastAPI authentication dependencies.

Checkout works with or without a signed-in user, so there is only an
optional dependency: a valid access token makes the checkout authenticated,
anything else falls back to guest checkout.
"""

from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from homestay_checkout.auth.jwt import decode_token

# Optional bearer: returns None if no token provided
_bearer_scheme_optional = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """A verified platform user and the token to forward to the booking backend."""

    user_ref: str
    access_token: str


def auth_context_from_token(token: str | None) -> AuthContext | None:
    """Verify a raw access token. Returns ``None`` for anything unusable."""
    if not token:
        return None

    try:
        payload = decode_token(token)
    except JWTError:
        return None

    # Only accept access tokens, not refresh tokens
    token_type: str | None = payload.get("type")
    if token_type != "access":
        return None

    sub: str | None = payload.get("sub")
    if not sub:
        return None

    return AuthContext(user_ref=str(sub), access_token=token)


async def get_optional_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme_optional),
) -> AuthContext | None:
    """Optionally authenticate the caller from a Bearer token.

    Returns ``None`` instead of raising when no token (or an invalid one) is
    provided, which means the checkout proceeds as a guest.
    """
    if credentials is None:
        return None
    return auth_context_from_token(credentials.credentials)
