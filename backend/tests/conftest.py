"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors).
Every test runs against in-memory provisioning stores unless it wires its own.
"""
import sys
from pathlib import Path

import pytest

# Ensure `backend.*` and the shared test utilities are importable
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

from backend.identity_access.stores import InMemoryIdentityStore  # noqa: E402
from backend.provisioning.repo import InMemoryProvisioningRepo  # noqa: E402


_ENV_KEYS = (
    "CAMPUS_ENV",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_ANON_KEY",
    "SUPABASE_JWT_SECRET",
    "DATABASE_URL",
    "PROVISIONING_DATABASE_URL",
    "SUPABASE_DB_URL",
    "IDENTITY_HTTP_TIMEOUT",
    "PROVISIONING_MIN_PASSWORD_LENGTH",
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolate_provisioning_env(monkeypatch: pytest.MonkeyPatch):
    """Start each test from a dev environment with the in-memory backend.

    Why:
        A developer shell may export real Supabase/Postgres credentials; tests
        must never provision against them by accident.
    Behavior:
        - Clears provisioning-related variables and selects `memory`.
        - Resets the wired web services so each test builds (or injects) its own.
    """
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CAMPUS_ENV", "dev")
    monkeypatch.setenv("PROVISIONING_BACKEND", "memory")
    from backend.web import provisioning_wiring

    provisioning_wiring.set_services(None)
    yield
    provisioning_wiring.set_services(None)


@pytest.fixture
def identity_store() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def repo() -> InMemoryProvisioningRepo:
    return InMemoryProvisioningRepo()
