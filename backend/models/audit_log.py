# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""AuditLog ORM model – tracks every key-material and device-trust event."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey

from core.clock import utcnow
from database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # The user the event concerns
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # No FK: the row must outlive the device it describes (device_deleted).
    device_id = Column(String(64), nullable=True)
    action = Column(String(64), nullable=False, index=True)   # e.g. "key_material_delivered"
    detail = Column(Text, nullable=True)                      # human-readable note, never secrets
    request_ip = Column(String(45), nullable=True)            # Client IP address (supports IPv6)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
