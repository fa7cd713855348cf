"""JWT bearer authentication for FastAPI.

Tokens are HS256, signed with ``JWT_SECRET`` by the auth service, and carry
``{"id", "email", "tier", "exp"}``.
"""

from dataclasses import dataclass

import jwt as pyjwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from crixen.core.config import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user extracted from a session JWT."""

    user_id: int
    email: str | None
    claims: dict


def decode_session_jwt(token: str, secret: str, algorithm: str = "HS256") -> AuthUser:
    """Verify and decode a session JWT.

    Raises ``HTTPException(401)`` on any validation failure.
    """
    try:
        payload = pyjwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            options={"verify_exp": True, "require": ["exp"]},
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    raw_id = payload.get("id", payload.get("sub"))
    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Token missing user id")

    return AuthUser(user_id=user_id, email=payload.get("email"), claims=payload)


async def require_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthUser:
    """FastAPI dependency that extracts and validates the bearer JWT.

    Usage::

        @router.get("/billing/status")
        async def status(user: AuthUser = Depends(require_auth)):
            ...
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    settings = get_settings()
    if not settings.jwt_secret:
        raise HTTPException(status_code=500, detail="Authentication is misconfigured")

    user = decode_session_jwt(credentials.credentials, settings.jwt_secret, settings.jwt_algorithm)

    # For error handlers and audit logging
    request.state.user_id = user.user_id

    return user
