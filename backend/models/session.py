# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Session ORM model – one row per signed-in device session."""

from sqlalchemy import Column, String, Text, Boolean, Enum, DateTime, ForeignKey

from core.clock import utcnow
from database import Base

SESSION_TYPES = ("web", "extension")


class Session(Base):
    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # NULL for sessions that are not bound to a device.
    device_id = Column(
        String(64),
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    # Rotating secret; the access token's ``jti`` must match it.
    token = Column(String(128), unique=True, nullable=False)
    session_type = Column(Enum(*SESSION_TYPES, name="session_type"), nullable=False, default="web")
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    # Wrapping key the device presented; recorded for audit only.
    public_key = Column(Text, nullable=True)
    # One-time delivery flag: false → true exactly once, never reset.
    key_material_delivered = Column(Boolean, nullable=False, default=False)
    key_material_delivered_at = Column(DateTime(timezone=True), nullable=True)
    # Immutable across token rotation; absolute age is measured from here.
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
