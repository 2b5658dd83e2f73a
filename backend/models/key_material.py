# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""UserKeyMaterial ORM model – the envelope-encrypted per-user secret."""

from sqlalchemy import Column, String, Text, DateTime, ForeignKey

from core.clock import utcnow
from database import Base


class UserKeyMaterial(Base):
    __tablename__ = "user_key_material"

    # The primary key doubles as the uniqueness guard for concurrent first
    # use: exactly one insert per user can ever succeed.
    user_id = Column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    # base64( ciphertext || 16-byte GCM tag ) under the master key.
    ciphertext = Column(Text, nullable=False)
    # base64( 12-byte AES-GCM nonce ).
    iv = Column(String(64), nullable=False)
    # Which master key produced the envelope.
    key_id = Column(String(64), nullable=False, default="default")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
