"""
Configuration and startup security checks for Campusdesk provisioning.

Why: Provisioning holds the Supabase service-role key and writes accounts on
behalf of others. This module provides a single guard that enforces minimal
production safety constraints without burdening local development, plus the
settings object the web layer reads at request time.

Permissions: The caller needs no special privileges. The guard simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

from dataclasses import dataclass
import os


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


@dataclass(frozen=True)
class ProvisioningSettings:
    environment: str
    supabase_url: str
    service_role_key: str
    anon_key: str | None
    jwt_secret: str | None
    backend: str
    identity_timeout: float

    @property
    def prod_like(self) -> bool:
        return _is_prod_like(self.environment)


def load_settings() -> ProvisioningSettings:
    """Read provisioning settings from the environment (no caching)."""
    try:
        timeout = float(os.getenv("IDENTITY_HTTP_TIMEOUT", "10"))
    except ValueError:
        timeout = 10.0
    return ProvisioningSettings(
        environment=(os.getenv("CAMPUS_ENV", "dev") or "dev").lower(),
        supabase_url=(os.getenv("SUPABASE_URL") or "").strip(),
        service_role_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip(),
        anon_key=(os.getenv("SUPABASE_ANON_KEY") or "").strip() or None,
        jwt_secret=(os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None,
        backend=(os.getenv("PROVISIONING_BACKEND", "db") or "db").strip().lower(),
        identity_timeout=timeout,
    )


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - Supabase Service Role key must be set and not a known dummy placeholder.
    - SUPABASE_URL must use https.
    - DATABASE_URL must not explicitly disable TLS.
    - The in-memory provisioning backend is forbidden.
    """

    env = os.getenv("CAMPUS_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    # 1) Supabase Service Role key
    srole = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE" or srole.upper().startswith("CHANGE_ME"):
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    # 2) Identity store endpoint must use HTTPS
    url = (os.getenv("SUPABASE_URL", "") or "").strip().lower()
    if not url.startswith("https://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production.")

    # 3) Postgres TLS: basic guard to avoid explicit disable
    for key in ("DATABASE_URL", "PROVISIONING_DATABASE_URL"):
        dsn = os.getenv(key, "")
        if "sslmode=disable" in dsn:
            raise SystemExit(
                f"Refusing to start: {key} contains sslmode=disable in production. Use sslmode=require or verify TLS."
            )

    # 4) In-memory stores lose accounts on restart
    backend = (os.getenv("PROVISIONING_BACKEND", "db") or "").strip().lower()
    if backend == "memory":
        raise SystemExit(
            "Refusing to start: PROVISIONING_BACKEND=memory is not allowed in production/staging."
        )


__all__ = ["ProvisioningSettings", "ensure_secure_config_on_startup", "load_settings"]
