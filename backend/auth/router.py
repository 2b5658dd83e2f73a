# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Auth endpoints – device authorization grant, session refresh with token
rotation, current-session info.

Security notes
--------------
* Refresh rotates the session's secret, so the previous access token is
  rejected from then on.  ``created_at`` never moves: a session cannot be
  kept alive past ``session_max_age_days`` by refreshing it.
* A deleted session (device removed, revoke-all) stops resolving on the very
  next request – the guard re-reads the row every time.
* The device token response is the only place an access token, device id
  and wrapped key material are issued together; the device code behind it
  is spent on first use.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from core.clock import as_utc
from core.config import settings
from core.crypto import MasterKeyVault
from core.security import AuthContext, get_client_ip, get_current_session, get_master_vault
from auth.schemas import (
    DeviceApproveRequest,
    DeviceCodeRequest,
    DeviceCodeResponse,
    DeviceTokenRequest,
    DeviceTokenResponse,
    RefreshResponse,
    SessionInfo,
    SessionResponse,
    UserInfo,
)
from auth.service import DeviceGrantService, SessionService
from keys.router import get_wrapping_service
from keys.service import DeviceWrappingService, KeyMaterialStore

router = APIRouter(prefix="/auth", tags=["auth"])


def get_session_service(db: Session = Depends(get_db)) -> SessionService:
    return SessionService(db)


def get_grant_service(
    db: Session = Depends(get_db),
    sessions: SessionService = Depends(get_session_service),
    wrapping: DeviceWrappingService = Depends(get_wrapping_service),
) -> DeviceGrantService:
    return DeviceGrantService(db, sessions, wrapping)


# ---------------------------------------------------------------------------
# POST /auth/device/code
# ---------------------------------------------------------------------------


@router.post("/device/code", response_model=DeviceCodeResponse)
def request_device_code(body: DeviceCodeRequest, grants: DeviceGrantService = Depends(get_grant_service)):
    """Start a device authorization grant for an allowed client."""
    code = grants.request_code(body.client_id)
    verification_uri = f"{settings.app_url}/device"
    return DeviceCodeResponse(
        device_code=code.device_code,
        user_code=code.user_code,
        verification_uri=verification_uri,
        verification_uri_complete=f"{verification_uri}?user_code={code.user_code}",
        expires_in=int(timedelta(minutes=settings.device_code_expire_minutes).total_seconds()),
        interval=settings.device_code_interval_seconds,
    )


# ---------------------------------------------------------------------------
# POST /auth/device/approve
# ---------------------------------------------------------------------------


@router.post("/device/approve")
def approve_device_code(
    body: DeviceApproveRequest,
    auth: AuthContext = Depends(get_current_session),
    grants: DeviceGrantService = Depends(get_grant_service),
):
    """The signed-in user approves (or denies) the code their device shows."""
    code = grants.decide(body.user_code, auth.user.id, body.approve)
    return {"detail": f"Device code {code.status}"}


# ---------------------------------------------------------------------------
# POST /auth/device/token
# ---------------------------------------------------------------------------


@router.post("/device/token", response_model=DeviceTokenResponse)
def device_token(
    body: DeviceTokenRequest,
    request: Request,
    grants: DeviceGrantService = Depends(get_grant_service),
):
    """
    Redeem an approved device code.  Returns the access token, the new
    device id, the owning user id and the session's wrapped key material.
    """
    result = grants.redeem(
        body.device_code,
        body.client_id,
        body.public_key,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return DeviceTokenResponse(
        access_token=result.access_token,
        token_type="bearer",
        device_id=result.device_id,
        user_id=result.user_id,
        wrapped_key_material=result.wrapped_key_material,
    )


# ---------------------------------------------------------------------------
# POST /auth/session/refresh
# ---------------------------------------------------------------------------


@router.post("/session/refresh", response_model=RefreshResponse)
def refresh_session(
    request: Request,
    auth: AuthContext = Depends(get_current_session),
    sessions: SessionService = Depends(get_session_service),
):
    """Rotate the bearer token.  The token presented here is dead afterwards."""
    session, token = sessions.refresh(
        auth.session,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return RefreshResponse(access_token=token, token_type="bearer", expires_at=as_utc(session.expires_at))


# ---------------------------------------------------------------------------
# GET /auth/session
# ---------------------------------------------------------------------------


@router.get("/session", response_model=SessionResponse)
def current_session(
    auth: AuthContext = Depends(get_current_session),
    db: Session = Depends(get_db),
    vault: MasterKeyVault = Depends(get_master_vault),
):
    """Return the sanitized session and user (no keys, no envelope fields)."""
    return SessionResponse(
        session=SessionInfo.model_validate(auth.session),
        user=UserInfo.model_validate(auth.user),
        key_material_initialized=KeyMaterialStore(db, vault).exists(auth.user.id),
    )
