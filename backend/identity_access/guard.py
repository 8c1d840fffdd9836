"""
Authorization guard: the single role gate in front of provisioning.

Why:
    Role checks used to be scattered across call sites. Every provisioning
    entry point (HTTP routes, CLI) calls `authorize` with an explicit set of
    allowed roles before the orchestrator runs. The orchestrator itself does
    not re-check roles.

Behavior:
    - `Unauthenticated` when no caller id is given.
    - `ProfileNotFound` when the caller has no profile.
    - returns False when the role is not allowed or the profile is inactive.
    - read-only; never mutates either store.
"""
from __future__ import annotations

from typing import Iterable, Optional, Protocol


class ProfileLookup(Protocol):
    def get_profile(self, profile_id: str) -> Optional[dict]: ...


class Unauthenticated(Exception):
    """No caller identity could be established."""

    code = "unauthenticated"


class ProfileNotFound(Exception):
    """The caller identity exists but has no application profile."""

    code = "profile_not_found"


def authorize(caller_id: str | None, allowed_roles: Iterable[str], *, profiles: ProfileLookup) -> bool:
    if not caller_id:
        raise Unauthenticated("caller id missing")
    profile = profiles.get_profile(caller_id)
    if not profile:
        raise ProfileNotFound(caller_id)
    if profile.get("is_active") is False:
        return False
    return profile.get("role") in frozenset(allowed_roles)


__all__ = ["ProfileLookup", "ProfileNotFound", "Unauthenticated", "authorize"]
