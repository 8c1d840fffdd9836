"""
Identity domain constants and simple helpers.

Why:
- Centralize role names to avoid drift between the web layer, the CLI and
  the provisioning orchestrator.
- Keep a single `Identity` shape for every identity store adapter.
"""

from __future__ import annotations

from dataclasses import dataclass

SUPER_ADMIN = "super_admin"
TEACHER = "teacher"
STUDENT = "student"
PARENT = "parent"

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({SUPER_ADMIN, TEACHER, STUDENT, PARENT})


@dataclass(frozen=True)
class Identity:
    """Sign-in capable account as reported by the identity store."""

    id: str
    email: str | None
    email_confirmed: bool = False
    full_name: str | None = None


def mask_email(email: str | None) -> str:
    """Mask email for logs to reduce PII exposure."""
    try:
        local, _, domain = (email or "").partition("@")
        if not domain:
            return "***"
        return f"{local[:2]}***@{domain}"
    except Exception:
        return "***"


__all__ = ["ALLOWED_ROLES", "Identity", "PARENT", "STUDENT", "SUPER_ADMIN", "TEACHER", "mask_email"]
