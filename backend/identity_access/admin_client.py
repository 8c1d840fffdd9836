"""
Supabase Auth (GoTrue) admin client for identity provisioning.

Design:
- Framework-agnostic, callable from the orchestrator, the web adapter and CLI tools.
- Uses requests under the hood; failures surface as `IdentityStoreError`
  so callers can decide whether a step failed or needs compensation.

Security:
- Do not log credentials, service keys or tokens.
- Expects the service-role key from environment; never expose it to clients.
"""

from __future__ import annotations

from typing import Any, Dict
import logging
import os

import requests

from .domain import Identity, mask_email


logger = logging.getLogger("campus.identity_access")

DEFAULT_TIMEOUT = 10.0
_PAGE_SIZE = 200
# Bound paging so a misbehaving server cannot loop us forever.
_MAX_PAGES = 500


class IdentityStoreError(Exception):
    """Raised when the identity store rejects or fails a request."""

    def __init__(self, code: str, message: str | None = None, *, status_code: int | None = None):
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.status_code = status_code


class DuplicateEmailError(IdentityStoreError):
    """The identity store already holds an account for this email."""


def identity_from_json(body: Dict[str, Any]) -> Identity:
    meta = body.get("user_metadata") or {}
    full_name = meta.get("full_name") if isinstance(meta, dict) else None
    return Identity(
        id=str(body.get("id") or ""),
        email=body.get("email"),
        email_confirmed=bool(body.get("email_confirmed_at") or body.get("confirmed_at")),
        full_name=str(full_name) if full_name else None,
    )


def _error_message(resp: requests.Response) -> tuple[str, str]:
    """Return (error_code, human message) from a GoTrue error response."""
    try:
        body = resp.json() or {}
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = str(body.get("error_code") or body.get("error") or f"http_{resp.status_code}")
    message = str(body.get("msg") or body.get("message") or body.get("error_description") or code)
    return code, message


def _is_duplicate_email(status: int, code: str, message: str) -> bool:
    if code in {"email_exists", "user_already_exists"}:
        return True
    return status in (400, 409, 422) and "already been registered" in message.lower()


class GoTrueAdminClient:
    """Identity store client backed by the GoTrue admin REST API.

    Parameters
    ----------
    base_url:
        Supabase project URL, e.g. ``https://xyz.supabase.co``.
    service_key:
        Service-role key; grants the admin capability.
    anon_key:
        Optional public key sent as ``apikey`` when resolving user tokens.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        anon_key: str | None = None,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._anon_key = anon_key or service_key
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "GoTrueAdminClient":
        url = (os.getenv("SUPABASE_URL") or "").strip()
        key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
        if not url or not key:
            raise RuntimeError("Supabase admin credentials missing: set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        anon = (os.getenv("SUPABASE_ANON_KEY") or "").strip() or None
        timeout = float(os.getenv("IDENTITY_HTTP_TIMEOUT", str(DEFAULT_TIMEOUT)))
        return cls(url, key, anon_key=anon, timeout=timeout)

    def _admin(self) -> Dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}/auth/v1{path}"

    # --- Admin operations --------------------------------------------------

    def create_user(
        self,
        *,
        email: str,
        password: str,
        email_confirm: bool = True,
        full_name: str | None = None,
    ) -> Identity:
        payload: Dict[str, Any] = {
            "email": email,
            "password": password,
            "email_confirm": email_confirm,
            **({"user_metadata": {"full_name": full_name}} if full_name else {}),
        }
        r = self.session.post(self._url("/admin/users"), headers=self._admin(), json=payload, timeout=self.timeout)
        if r.status_code not in (200, 201):
            code, message = _error_message(r)
            if _is_duplicate_email(r.status_code, code, message):
                raise DuplicateEmailError("email_exists", message, status_code=r.status_code)
            raise IdentityStoreError(code, message, status_code=r.status_code)
        identity = identity_from_json(r.json() or {})
        if not identity.id:
            raise IdentityStoreError("user_id_missing", "Failed to create auth user")
        logger.info("identity.created email=%s id=%s", mask_email(email), identity.id)
        return identity

    def delete_user(self, user_id: str) -> None:
        """Delete an identity; a missing identity counts as already deleted."""
        r = self.session.delete(self._url(f"/admin/users/{user_id}"), headers=self._admin(), timeout=self.timeout)
        if r.status_code == 404:
            logger.info("identity.delete_missing id=%s", user_id)
            return
        if r.status_code not in (200, 204):
            code, message = _error_message(r)
            raise IdentityStoreError(code, message, status_code=r.status_code)
        logger.info("identity.deleted id=%s", user_id)

    def get_user(self, user_id: str) -> Identity | None:
        r = self.session.get(self._url(f"/admin/users/{user_id}"), headers=self._admin(), timeout=self.timeout)
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            code, message = _error_message(r)
            raise IdentityStoreError(code, message, status_code=r.status_code)
        return identity_from_json(r.json() or {})

    def find_user_by_email(self, email: str) -> Identity | None:
        """Page over the admin user listing and return the exact email match."""
        wanted = (email or "").strip().lower()
        if not wanted:
            return None
        for page in range(1, _MAX_PAGES + 1):
            r = self.session.get(
                self._url("/admin/users"),
                headers=self._admin(),
                params={"page": page, "per_page": _PAGE_SIZE},
                timeout=self.timeout,
            )
            if r.status_code != 200:
                code, message = _error_message(r)
                raise IdentityStoreError(code, message, status_code=r.status_code)
            body = r.json() or {}
            users = body.get("users") if isinstance(body, dict) else body
            users = users or []
            for u in users:
                if str(u.get("email") or "").lower() == wanted:
                    return identity_from_json(u)
            if len(users) < _PAGE_SIZE:
                break
        return None

    # --- Caller resolution -------------------------------------------------

    def get_user_for_token(self, access_token: str) -> Identity | None:
        """Resolve a user access token to its identity (None when rejected)."""
        headers = {"apikey": self._anon_key, "Authorization": f"Bearer {access_token}"}
        r = self.session.get(self._url("/user"), headers=headers, timeout=self.timeout)
        if r.status_code in (401, 403, 404):
            return None
        if r.status_code != 200:
            code, message = _error_message(r)
            raise IdentityStoreError(code, message, status_code=r.status_code)
        identity = identity_from_json(r.json() or {})
        return identity if identity.id else None


__all__ = ["DuplicateEmailError", "GoTrueAdminClient", "IdentityStoreError", "identity_from_json"]
