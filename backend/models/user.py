# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""User ORM model and its typed notification preferences."""

import json

from pydantic import BaseModel, ValidationError
from sqlalchemy import Column, String, Text, DateTime

from core.clock import utcnow
from core.logger import logger
from database import Base


class NotificationPreferences(BaseModel):
    new_repo_added: bool = True
    new_device_login: bool = False

    @classmethod
    def parse(cls, raw: str | None) -> "NotificationPreferences":
        """
        Deserialize the stored JSON text.  Anything unreadable yields the
        defaults instead of an exception.
        """
        if not raw:
            return cls()
        try:
            return cls.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("Unreadable notification preferences – using defaults")
            return cls()

    def serialize(self) -> str:
        return self.model_dump_json()


class User(Base):
    __tablename__ = "users"

    # Identity is owned by the external auth layer; ids are opaque strings.
    id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    notification_preferences = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def preferences(self) -> NotificationPreferences:
        return NotificationPreferences.parse(self.notification_preferences)

    @preferences.setter
    def preferences(self, value: NotificationPreferences) -> None:
        self.notification_preferences = value.serialize()
