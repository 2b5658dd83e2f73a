# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
FastAPI application factory.

Responsibilities
----------------
* Build the process-wide ``MasterKeyVault`` from configuration.  A missing
  or malformed master key raises ``ConfigError`` and the app is never
  created.
* Register CORS and request-logging middleware.
* Map ``DeviceTrustError`` variants to JSON error responses.
* Mount the three feature routers (auth, keys, devices).
* Expose a /health endpoint for container liveness checks.

Run with::

    uvicorn main:app --app-dir backend

Production note
---------------
CORS allow_origins defaults to ``app_url`` only.  Browser extensions call
the API with their own origin and bearer tokens, not cookies.
"""

import time

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from auth.router import router as auth_router
from keys.router import router as keys_router
from devices.router import router as devices_router
from core.config import settings
from core.crypto import MasterKeyVault
from core.errors import DeviceGrantError, DeviceTrustError
from core.logger import logger


# ---------------------------------------------------------------------------
# Request-logging middleware
# ---------------------------------------------------------------------------
# Logs every inbound request: method, path, client IP, status, latency.
# Bodies are never echoed – they carry public keys, device codes and wrapped
# key material.


class _RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, client IP, response status and latency (ms)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        client_ip = request.client.host if request.client else "unknown"

        logger.info(
            "%s %s | client=%s status=%d latency=%.1fms",
            request.method,
            request.url.path,
            client_ip,
            response.status_code,
            elapsed_ms,
        )
        return response


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


async def _device_trust_error_handler(request: Request, exc: DeviceTrustError) -> JSONResponse:
    """Map an error variant to its status and stable code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s | %s", exc.code, request.method, request.url.path, exc.message)
    else:
        logger.warning("%s on %s %s | %s", exc.code, request.method, request.url.path, exc.message)

    # Device clients poll /auth/device/token and expect the RFC 8628 shape.
    if isinstance(exc, DeviceGrantError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "error_description": exc.message},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_app(master_vault: MasterKeyVault | None = None) -> FastAPI:
    """
    Build the application.  *master_vault* overrides the configured master
    key (tests); otherwise it is loaded from ``settings`` exactly once.
    """
    if master_vault is None:
        master_vault = MasterKeyVault.from_hex(
            settings.key_material_master_key,
            settings.key_material_key_id,
        )

    app = FastAPI(title="Device Trust", version="1.0.0")
    app.state.master_vault = master_vault

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.app_url],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.add_middleware(_RequestLogMiddleware)
    app.add_exception_handler(DeviceTrustError, _device_trust_error_handler)

    app.include_router(auth_router)
    app.include_router(keys_router)
    app.include_router(devices_router)

    @app.on_event("startup")
    async def _on_startup():
        logger.info("Device Trust service starting up | key_id=%s", master_vault.key_id)

    @app.on_event("shutdown")
    async def _on_shutdown():
        logger.info("Device Trust service shutting down")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
