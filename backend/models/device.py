# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Device ORM model."""

from sqlalchemy import Column, String, Boolean, Enum, DateTime, ForeignKey

from core.clock import utcnow
from database import Base

DEVICE_TYPES = ("web", "extension")


class Device(Base):
    __tablename__ = "devices"

    # Stable per installation: "<user id>-web" or "ext-<random>".
    id = Column(String(64), primary_key=True)
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = Column(Enum(*DEVICE_TYPES, name="device_type"), nullable=False, default="extension")
    name = Column(String(255), nullable=False)
    last_ip_address = Column(String(45), nullable=True)   # supports IPv6
    last_user_agent = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_seen_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    # Kept for forward compatibility; revocation is currently a hard delete.
    revoked = Column(Boolean, nullable=False, default=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
