# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""DeviceCode ORM model – pending device authorization grants (RFC 8628)."""

from sqlalchemy import Column, Integer, String, Enum, DateTime, ForeignKey

from core.clock import utcnow
from database import Base

GRANT_STATUSES = ("pending", "approved", "denied", "consumed")


class DeviceCode(Base):
    __tablename__ = "device_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_code = Column(String(128), unique=True, nullable=False, index=True)
    user_code = Column(String(16), unique=True, nullable=False, index=True)
    # Set when a signed-in user approves (or denies) the code.
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    client_id = Column(String(64), nullable=False)
    status = Column(Enum(*GRANT_STATUSES, name="grant_status"), nullable=False, default="pending")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_polled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
