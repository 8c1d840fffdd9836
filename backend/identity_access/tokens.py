"""
Access token verification helpers for the identity_access bounded context.

Why: Keep cryptographic validation of bearer tokens outside the web adapter so
we can unit test it independently. Supabase signs user access tokens with the
project JWT secret (HS256), so a configured secret lets us reject forged or
expired tokens before any call to the identity store.

Security: Only HS256 is accepted; audience and expiration are enforced.
"""
from __future__ import annotations

from typing import Dict
import time

from jose import jwt
from jose.exceptions import JOSEError


class AccessTokenVerificationError(Exception):
    """Raised when the access token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers
DEFAULT_AUDIENCE = "authenticated"


def verify_access_token(
    *,
    token: str,
    secret: str,
    audience: str = DEFAULT_AUDIENCE,
) -> Dict[str, object]:
    """Validate a Supabase access token and return its claims.

    Parameters
    ----------
    token:
        The raw JWT from the `Authorization: Bearer` header.
    secret:
        Project JWT secret used by Supabase Auth to sign tokens.
    audience:
        Expected `aud` claim (Supabase uses ``authenticated``).

    Raises
    ------
    AccessTokenVerificationError:
        When the token is malformed, badly signed, expired or lacks `sub`.
    """
    if not token or not secret:
        raise AccessTokenVerificationError("missing_token")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_access_token") from exc

    _validate_temporal_claims(claims)

    sub = claims.get("sub")
    if not isinstance(sub, str) or not sub:
        raise AccessTokenVerificationError("missing_sub")
    return claims


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise AccessTokenVerificationError("invalid_access_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise AccessTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)):
        if iat - MAX_CLOCK_SKEW_SECONDS > now:
            raise AccessTokenVerificationError("invalid_access_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_access_token")
