"""
Shared bearer-authentication utilities.

Why:
    Every provisioning endpoint authenticates the caller the same way:
    extract a `Bearer` token, then resolve it to an identity through the
    identity store. Keeping this in one place avoids drift between routes
    and keeps the resolved caller an explicit value instead of ambient state.

Design:
    Framework-agnostic: callers pass the raw header value and the identity
    store; the helpers raise `Unauthenticated` on any failure.
"""

from __future__ import annotations

import logging

from backend.identity_access.domain import Identity
from backend.identity_access.guard import Unauthenticated
from backend.identity_access.stores import IdentityStoreProtocol
from backend.identity_access.tokens import AccessTokenVerificationError, verify_access_token


logger = logging.getLogger("campus.web.auth")


def extract_bearer_token(header_value: str | None) -> str:
    """Return the token from an `Authorization: Bearer <token>` header.

    Raises `Unauthenticated("no_token")` when the header is absent or not a
    bearer credential.
    """
    value = (header_value or "").strip()
    if not value.startswith("Bearer "):
        raise Unauthenticated("no_token")
    token = value[len("Bearer "):].strip()
    if not token:
        raise Unauthenticated("no_token")
    return token


def resolve_caller(token: str, *, identity: IdentityStoreProtocol, jwt_secret: str | None = None) -> Identity:
    """Resolve a bearer token to the caller identity.

    Behavior:
        - With `jwt_secret`: verify signature/expiry locally, then confirm the
          `sub` still exists in the identity store.
        - Without: ask the identity store to resolve the token.
        - Raises `Unauthenticated("invalid_token")` when either path fails.
    """
    if jwt_secret:
        try:
            claims = verify_access_token(token=token, secret=jwt_secret)
        except AccessTokenVerificationError as exc:
            logger.info("Access token rejected: %s", exc.code)
            raise Unauthenticated("invalid_token") from exc
        caller = identity.get_user(str(claims["sub"]))
    else:
        caller = identity.get_user_for_token(token)
    if caller is None or not caller.id:
        raise Unauthenticated("invalid_token")
    return caller


__all__ = ["extract_bearer_token", "resolve_caller"]
