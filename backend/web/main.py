"Campusdesk provisioning API"
from __future__ import annotations

import logging
import os
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import requests

from backend.identity_access.admin_client import IdentityStoreError
from backend.identity_access.guard import Unauthenticated
from backend.web.auth_utils import extract_bearer_token, resolve_caller


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via CAMPUS_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in _sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("CAMPUS_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


from dotenv import load_dotenv

if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
from backend.web import config as _cfg

_cfg.ensure_secure_config_on_startup()
_PROD_LIKE = _cfg.load_settings().prod_like

from backend.web.provisioning_wiring import get_services
from backend.web.routes.users import users_router


logger = logging.getLogger("campus.web")

app = FastAPI(
    title="Campusdesk provisioning",
    description="Account provisioning for school administrators",
    version="0.1.0",
)
app.include_router(users_router)


# --- Auth Middleware ------------------------------------------------------------

def _is_public_path(path: str) -> bool:
    return not path.startswith("/api/")


def _unauthorized(message: str) -> JSONResponse:
    headers = {"Cache-Control": "private, no-store"}
    return JSONResponse({"error": message}, status_code=401, headers=headers)


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    """Resolve the bearer credential of every `/api/` request to a caller.

    The resolved `Identity` is exposed read-only as `request.state.caller`;
    role checks stay in the routes.
    """
    if _is_public_path(request.url.path):
        return await call_next(request)

    try:
        token = extract_bearer_token(request.headers.get("authorization"))
    except Unauthenticated:
        return _unauthorized("Unauthorized - No token provided")

    try:
        services = get_services()
    except RuntimeError as exc:
        logger.error("Provisioning services unavailable: %s", exc)
        return JSONResponse(
            {"error": "Internal server error"}, status_code=500, headers={"Cache-Control": "private, no-store"}
        )

    try:
        request.state.caller = resolve_caller(token, identity=services.identity, jwt_secret=services.jwt_secret)
    except Unauthenticated:
        return _unauthorized("Unauthorized - Invalid token")
    except (IdentityStoreError, requests.RequestException) as exc:
        logger.warning("Caller resolution failed: %s", getattr(exc, "code", exc.__class__.__name__))
        return _unauthorized("Unauthorized - Invalid token")
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------

@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    if _PROD_LIKE:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# --- Health -------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "backend.web.main:app",
        host=os.getenv("CAMPUS_HOST", "127.0.0.1"),
        port=int(os.getenv("CAMPUS_PORT", "8000")),
        reload=not _PROD_LIKE,
    )
