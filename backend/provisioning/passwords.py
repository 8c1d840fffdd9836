"""Temporary credential generation for accounts provisioned in bulk."""
from __future__ import annotations

import secrets

TEMPORARY_PASSWORD_CHARSET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!@#$%^&*"
DEFAULT_LENGTH = 12


def generate_temporary_password(length: int = DEFAULT_LENGTH) -> str:
    if length < 1:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(TEMPORARY_PASSWORD_CHARSET) for _ in range(length))


__all__ = ["DEFAULT_LENGTH", "TEMPORARY_PASSWORD_CHARSET", "generate_temporary_password"]
