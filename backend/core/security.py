# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Central security module.  Token handling and every auth guard live here.

Responsibilities
----------------
1. JWT creation / decoding                  (PyJWT / HS256)
2. FastAPI dependency guards                (get_current_session)
3. Master key vault dependency              (get_master_vault)
4. Client IP extraction

Access tokens are *references* to a server-side session row: the token
carries the session id and the session's current rotating secret, so
deleting or rotating the row invalidates every outstanding copy.
"""

import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import jwt as _jwt        # PyJWT
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session as DbSession

from core.clock import as_utc, utcnow
from core.config import settings
from core.crypto import MasterKeyVault
from core.logger import logger
from database import get_db
from models.device import Device
from models.session import Session
from models.user import User

# ---------------------------------------------------------------------------
# 1.  JWT – access tokens
# ---------------------------------------------------------------------------


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a JWT with HS256.

    *data* should contain at minimum: sub (user id), sid (session id) and
    jti (the session's current token).  An ``exp`` claim is added
    automatically.
    """
    to_encode = data.copy()
    expire = utcnow() + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode["exp"] = expire
    return _jwt.encode(to_encode, settings.secret_key, algorithm="HS256")


def issue_session_token(session: Session) -> str:
    """Sign an access token for *session* that expires with the session row."""
    return create_access_token(
        {"sub": session.user_id, "sid": session.id, "jti": session.token},
        expires_delta=as_utc(session.expires_at) - utcnow(),
    )


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT.  Raises HTTP 401 on any failure (expired,
    bad signature, malformed).
    """
    try:
        return _jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    except (_jwt.ExpiredSignatureError, _jwt.InvalidTokenError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def session_deadline(created_at: datetime) -> datetime:
    """Absolute end of life for a session, independent of rotation."""
    return as_utc(created_at) + timedelta(days=settings.session_max_age_days)


# ---------------------------------------------------------------------------
# 2.  FastAPI dependency guards
# ---------------------------------------------------------------------------

# The tokenUrl here is only used by the auto-generated OpenAPI docs;
# device clients obtain tokens from POST /auth/device/token.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/device/token")

_UNAUTHORIZED = "Session not found or expired"


@dataclass
class AuthContext:
    session: Session
    user: User
    device: Optional[Device]


def get_current_session(
    token: str = Depends(oauth2_scheme),
    db: DbSession = Depends(get_db),
) -> AuthContext:
    """
    Dependency: decode the JWT, then load and re-check the session row on
    every request.  A session that was deleted (device removed, revoke-all)
    or rotated no longer resolves, so the request fails closed with 401.

    Raises 403 if the session's device is gone or revoked.
    """
    payload = decode_access_token(token)
    if not payload.get("sid"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_UNAUTHORIZED)

    session = db.get(Session, payload["sid"])
    if session is None or not hmac.compare_digest(
        session.token.encode(), str(payload.get("jti", "")).encode()
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_UNAUTHORIZED)

    now = utcnow()
    if as_utc(session.expires_at) <= now or session_deadline(session.created_at) <= now:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_UNAUTHORIZED)

    user = db.get(User, session.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_UNAUTHORIZED)

    device = None
    if session.device_id:
        device = db.get(Device, session.device_id)
        if device is None or device.revoked or device.user_id != session.user_id:
            logger.warning(
                "Access attempt with deleted or revoked device | user=%s session=%s device=%s",
                session.user_id,
                session.id,
                session.device_id,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Device not found - may have been deleted",
            )

    return AuthContext(session=session, user=user, device=device)


# ---------------------------------------------------------------------------
# 3.  Master key vault
# ---------------------------------------------------------------------------


def get_master_vault(request: Request) -> MasterKeyVault:
    """Dependency: the process-wide vault built once by ``create_app``."""
    return request.app.state.master_vault


# -- IP Address extraction ----------------------------------------------------


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from the request.
    Checks X-Forwarded-For header first (for proxies), then falls back to client host.
    Returns the IP address as a string (supports both IPv4 and IPv6).
    """
    # Check X-Forwarded-For header (common when behind proxy/load balancer)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, take the first (original client)
        return forwarded.split(",")[0].strip()

    # Fall back to direct client address
    if request.client:
        return request.client.host

    return "unknown"
