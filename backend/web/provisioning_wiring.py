"""
Shared helper for wiring the provisioning adapters (identity + relational).

Why:
    Routes, the bearer middleware and the CLI need the same pair of stores.
    App startup may happen before Supabase/Postgres are configured locally, so
    the services are built lazily on first use and can be replaced by tests.

Security:
    Requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY for the `db` backend.
    The service key stays server-side; nothing here is exposed to clients.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging

from backend.identity_access.admin_client import GoTrueAdminClient
from backend.identity_access.stores import IdentityStoreProtocol, InMemoryIdentityStore
from backend.provisioning.orchestrator import ProvisioningOrchestrator
from backend.provisioning.repo import InMemoryProvisioningRepo, ProvisioningRepoProtocol
from backend.provisioning.validation import min_password_length

from .config import ProvisioningSettings, load_settings


logger = logging.getLogger("campus.web")


@dataclass
class ProvisioningServices:
    identity: IdentityStoreProtocol
    repo: ProvisioningRepoProtocol
    jwt_secret: str | None = None

    def orchestrator(self) -> ProvisioningOrchestrator:
        return ProvisioningOrchestrator(self.identity, self.repo, min_password_length=min_password_length())


def build_services(settings: ProvisioningSettings | None = None) -> ProvisioningServices:
    """Build the adapters selected by `PROVISIONING_BACKEND`.

    Behavior:
        - `memory`: in-process stores (dev/test only; refused in prod-like envs).
        - `db` (default): GoTrue admin REST client + Postgres repository.
        - Raises RuntimeError when the selected backend is not configured.
    """
    settings = settings or load_settings()
    if settings.backend == "memory":
        if settings.prod_like:
            raise RuntimeError("PROVISIONING_BACKEND=memory is not allowed in production/staging")
        logger.warning("Provisioning uses in-memory stores (data is lost on restart)")
        return ProvisioningServices(InMemoryIdentityStore(), InMemoryProvisioningRepo(), settings.jwt_secret)
    if settings.backend != "db":
        raise RuntimeError(f"Unknown PROVISIONING_BACKEND: {settings.backend}")

    # Lazy import keeps psycopg out of memory-only test paths.
    from backend.provisioning.repo_db import DBProvisioningRepo

    if not settings.supabase_url or not settings.service_role_key:
        raise RuntimeError("Supabase admin credentials missing: set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
    identity = GoTrueAdminClient(
        settings.supabase_url,
        settings.service_role_key,
        anon_key=settings.anon_key,
        timeout=settings.identity_timeout,
    )
    return ProvisioningServices(identity, DBProvisioningRepo(), settings.jwt_secret)


_SERVICES: ProvisioningServices | None = None


def get_services() -> ProvisioningServices:
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = build_services()
        logger.info("Provisioning services wired: identity=%s repo=%s",
                    type(_SERVICES.identity).__name__, type(_SERVICES.repo).__name__)
    return _SERVICES


def set_services(services: ProvisioningServices | None) -> None:
    """Allow tests to swap the provisioning adapters (None forces a rebuild)."""
    global _SERVICES
    _SERVICES = services


__all__ = ["ProvisioningServices", "build_services", "get_services", "set_services"]
