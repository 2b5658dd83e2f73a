# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Session and device-grant services.

SessionService
    Opens device-bound sessions (the hook the external sign-in layer calls)
    and rotates their tokens.  Absolute session age is always measured from
    ``created_at``, which rotation never touches.

DeviceGrantService
    OAuth 2.0 device authorization grant (RFC 8628) for non-browser clients.
    Redeeming an approved code creates the extension device, its session and
    the session's one wrapped key material in a single response.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session as DbSession

from core.clock import as_utc, utcnow
from core.config import settings
from core.crypto import load_device_public_key
from core.errors import DeviceGrantError, SessionExpired, UserNotFound
from core.logger import logger
from core.security import issue_session_token, session_deadline
from devices.service import DeviceMeta, DeviceRegistry
from keys.service import DeviceWrappingService
from models.audit_log import AuditLog
from models.device import Device
from models.device_code import DeviceCode
from models.session import Session
from models.user import User

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

# No 0/O or 1/I – user codes are typed by hand.
_USER_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_USER_CODE_LENGTH = 8


def web_device_id(user_id: str) -> str:
    return f"{user_id}-web"


def new_extension_device_id() -> str:
    return f"ext-{secrets.token_urlsafe(9)}"


def log_new_device_login(user: User, device: Device) -> None:
    """Default notifier; the real one hands the event to the email queue."""
    logger.info("New device login | user=%s device=%s type=%s", user.id, device.id, device.type)


@dataclass
class StagedSession:
    user: User
    device: Device
    session: Session
    is_new_device: bool


class SessionService:
    def __init__(
        self,
        db: DbSession,
        registry: DeviceRegistry | None = None,
        notifier: Callable[[User, Device], None] = log_new_device_login,
    ):
        self.db = db
        self.registry = registry or DeviceRegistry(db)
        self.notifier = notifier

    def _expiry(self, created_at, now):
        sliding = now + timedelta(minutes=settings.access_token_expire_minutes)
        return min(sliding, session_deadline(created_at))

    def open_session(
        self,
        user_id: str,
        session_type: str = "web",
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[Session, str]:
        """
        Bind a new session to the caller's device and return it with its
        access token.  Web sessions share the user's single web device;
        every extension sign-in is a new device installation.
        """
        staged = self.stage_session(user_id, session_type, ip_address, user_agent)
        self.db.commit()
        return staged.session, self.finish_session(staged)

    def stage_session(
        self,
        user_id: str,
        session_type: str = "web",
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> StagedSession:
        """
        Flush the device and session rows without committing.  The caller
        commits, then calls ``finish_session`` for the token.
        """
        user = self.db.get(User, user_id)
        if user is None:
            raise UserNotFound()

        if session_type == "extension":
            device_id = new_extension_device_id()
            name = f"Extension - {utcnow():%Y-%m-%d}"
        else:
            device_id = web_device_id(user_id)
            name = "Web Device"

        is_new_device = self.registry.get(device_id) is None
        device = self.registry.ensure_exists(
            device_id,
            user_id,
            session_type,
            DeviceMeta(name=name, last_ip_address=ip_address, last_user_agent=user_agent),
        )

        now = utcnow()
        session = Session(
            id=uuid.uuid4().hex,
            user_id=user_id,
            device_id=device.id,
            token=secrets.token_urlsafe(32),
            session_type=session_type,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
            expires_at=self._expiry(now, now),
        )
        self.db.add(session)
        self.db.flush()
        return StagedSession(user=user, device=device, session=session, is_new_device=is_new_device)

    def finish_session(self, staged: StagedSession) -> str:
        """Notify about a new device and sign the access token of a committed session."""
        user, device, session = staged.user, staged.device, staged.session
        if staged.is_new_device and user.preferences.new_device_login:
            self.notifier(user, device)

        logger.info("Session opened | user=%s device=%s type=%s", user.id, device.id, session.session_type)
        return issue_session_token(session)

    def refresh(
        self,
        session: Session,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[Session, str]:
        """
        Rotate the session token.  The previous access token stops resolving
        immediately; ``created_at`` is left alone so rotation can never
        extend a session past its absolute maximum age.
        """
        now = utcnow()
        if session_deadline(session.created_at) <= now:
            logger.warning("Refresh refused – session past maximum age | session=%s", session.id)
            raise SessionExpired()

        session.token = secrets.token_urlsafe(32)
        session.expires_at = self._expiry(session.created_at, now)
        if ip_address:
            session.ip_address = ip_address
        if user_agent:
            session.user_agent = user_agent
        if session.device_id:
            self.registry.touch(session.device_id, ip_address, user_agent)
        self.db.add(AuditLog(
            user_id=session.user_id,
            device_id=session.device_id,
            action="session_refreshed",
            request_ip=ip_address,
        ))
        self.db.commit()
        return session, issue_session_token(session)


@dataclass
class DeviceTokenResult:
    access_token: str
    device_id: str
    user_id: str
    wrapped_key_material: str


class DeviceGrantService:
    def __init__(self, db: DbSession, sessions: SessionService, wrapping: DeviceWrappingService):
        self.db = db
        self.sessions = sessions
        self.wrapping = wrapping

    def request_code(self, client_id: str) -> DeviceCode:
        if client_id not in settings.allowed_device_clients:
            raise DeviceGrantError("invalid_client", "Unknown client")
        code = DeviceCode(
            device_code=secrets.token_urlsafe(32),
            user_code="".join(secrets.choice(_USER_CODE_ALPHABET) for _ in range(_USER_CODE_LENGTH)),
            client_id=client_id,
            status="pending",
            expires_at=utcnow() + timedelta(minutes=settings.device_code_expire_minutes),
        )
        self.db.add(code)
        self.db.commit()
        return code

    def decide(self, user_code: str, user_id: str, approve: bool = True) -> DeviceCode:
        """The signed-in user approves (or denies) a code shown on the device."""
        code = self.db.scalar(
            select(DeviceCode).where(DeviceCode.user_code == user_code.strip().upper().replace("-", ""))
        )
        if code is None or code.status != "pending" or as_utc(code.expires_at) <= utcnow():
            raise DeviceGrantError("invalid_grant", "Unknown or expired user code")
        code.status = "approved" if approve else "denied"
        code.user_id = user_id
        self.db.commit()
        logger.info("Device code %s | user=%s client=%s", code.status, user_id, code.client_id)
        return code

    def redeem(
        self,
        device_code: str,
        client_id: str,
        public_key_pem: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> DeviceTokenResult:
        """
        Exchange an approved device code for an access token, a new device
        id and the wrapped key material.  Each code is redeemable once.

        Spending the code, the new device and session, and the delivered
        flag commit together.  Any failure leaves the code approved and no
        device behind, so the client can simply retry.
        """
        code = self.db.scalar(select(DeviceCode).where(DeviceCode.device_code == device_code))
        if code is None or code.client_id != client_id:
            raise DeviceGrantError("invalid_grant", "Unknown device code")

        now = utcnow()
        if as_utc(code.expires_at) <= now:
            raise DeviceGrantError("expired_token", "Device code has expired")
        if code.status == "pending":
            last = as_utc(code.last_polled_at)
            code.last_polled_at = now
            self.db.commit()
            if last is not None and (now - last).total_seconds() < settings.device_code_interval_seconds:
                raise DeviceGrantError("slow_down", "Polling too frequently")
            raise DeviceGrantError("authorization_pending", "Waiting for the user to approve")
        if code.status == "denied":
            raise DeviceGrantError("access_denied", "The user denied the request")
        if code.status != "approved":
            raise DeviceGrantError("invalid_grant", "Device code already used")

        # Reject a bad key before the code is spent.
        load_device_public_key(public_key_pem)
        code_id, user_id = code.id, code.user_id

        # First-use creation commits on its own, so it runs before anything
        # is staged.  A corrupt envelope fails here with the code untouched.
        self.wrapping.store.get_or_create(user_id)

        try:
            consumed = self.db.execute(
                update(DeviceCode)
                .where(DeviceCode.id == code_id, DeviceCode.status == "approved")
                .values(status="consumed")
                .execution_options(synchronize_session=False)
            )
            if consumed.rowcount != 1:
                raise DeviceGrantError("invalid_grant", "Device code already used")

            staged = self.sessions.stage_session(user_id, "extension", ip_address, user_agent)
            session_id, device_id = staged.session.id, staged.device.id
            wrapped = self.wrapping.wrap_for_session(session_id, public_key_pem, ip_address, commit=False)

            self.db.add(AuditLog(
                user_id=user_id,
                device_id=device_id,
                action="device_token_issued",
                detail=f"client={client_id}",
                request_ip=ip_address,
            ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Key material delivered | user=%s device=%s session=%s", user_id, device_id, session_id)
        access_token = self.sessions.finish_session(staged)
        return DeviceTokenResult(
            access_token=access_token,
            device_id=device_id,
            user_id=user_id,
            wrapped_key_material=wrapped,
        )
