"""
Identity store contract and an in-memory store for development and tests.

Why: The orchestrator and the web layer only need a handful of admin
operations. Keeping them behind a protocol lets tests run without a live
Supabase project and keeps the HTTP adapter swappable.

Security: Passwords are kept only to mimic the write-only credential of the
real store; they are never returned by any method.
"""
from __future__ import annotations

from typing import Dict, Optional, Protocol
import secrets
import uuid

from .admin_client import DuplicateEmailError
from .domain import Identity


class IdentityStoreProtocol(Protocol):
    def create_user(
        self, *, email: str, password: str, email_confirm: bool = True, full_name: str | None = None
    ) -> Identity: ...

    def delete_user(self, user_id: str) -> None: ...

    def get_user(self, user_id: str) -> Optional[Identity]: ...

    def find_user_by_email(self, email: str) -> Optional[Identity]: ...

    def get_user_for_token(self, access_token: str) -> Optional[Identity]: ...


class InMemoryIdentityStore:
    """Identity store kept in process memory. Email is unique (case-insensitive)."""

    def __init__(self) -> None:
        self._users: Dict[str, Identity] = {}
        self._passwords: Dict[str, str] = {}
        self._tokens: Dict[str, str] = {}

    def create_user(
        self, *, email: str, password: str, email_confirm: bool = True, full_name: str | None = None
    ) -> Identity:
        if self._by_email(email) is not None:
            raise DuplicateEmailError("email_exists", "A user with this email address has already been registered")
        rec = Identity(id=str(uuid.uuid4()), email=email, email_confirmed=email_confirm, full_name=full_name)
        self._users[rec.id] = rec
        self._passwords[rec.id] = password
        return rec

    def delete_user(self, user_id: str) -> None:
        self._users.pop(user_id, None)
        self._passwords.pop(user_id, None)
        self._tokens = {t: uid for t, uid in self._tokens.items() if uid != user_id}

    def get_user(self, user_id: str) -> Optional[Identity]:
        return self._users.get(user_id)

    def find_user_by_email(self, email: str) -> Optional[Identity]:
        return self._by_email(email)

    def get_user_for_token(self, access_token: str) -> Optional[Identity]:
        uid = self._tokens.get(access_token)
        return self._users.get(uid) if uid else None

    # --- Dev/test helpers ----------------------------------------------------

    def issue_token(self, user_id: str) -> str:
        """Mint an opaque access token for an existing identity."""
        if user_id not in self._users:
            raise KeyError(user_id)
        token = secrets.token_urlsafe(24)
        self._tokens[token] = user_id
        return token

    def check_password(self, user_id: str, password: str) -> bool:
        return self._passwords.get(user_id) == password

    def count_by_email(self, email: str) -> int:
        wanted = (email or "").lower()
        return sum(1 for u in self._users.values() if (u.email or "").lower() == wanted)

    def __len__(self) -> int:
        return len(self._users)

    def _by_email(self, email: str) -> Optional[Identity]:
        wanted = (email or "").strip().lower()
        for u in self._users.values():
            if (u.email or "").lower() == wanted:
                return u
        return None


__all__ = ["IdentityStoreProtocol", "InMemoryIdentityStore"]
