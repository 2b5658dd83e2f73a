# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
DeviceRegistry – lifecycle of the devices a user has signed in from.

Deletion is a hard delete that cascades to the device's sessions inside one
transaction.  Callers must check ownership (``get_owned``) before deleting.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session as DbSession

from core.clock import utcnow
from core.config import settings
from core.errors import DeviceLimitReached, DeviceNotFound, Forbidden
from models.device import Device
from models.session import Session


class DeviceMeta(BaseModel):
    """Optional activity metadata.  Only fields that are set get written."""

    name: Optional[str] = None
    last_ip_address: Optional[str] = None
    last_user_agent: Optional[str] = None


@dataclass
class DeletedDevice:
    device: Device
    sessions_deleted: int


@dataclass
class RevokeAllResult:
    devices: List[Device] = field(default_factory=list)
    devices_deleted: int = 0
    sessions_deleted: int = 0


class DeviceRegistry:
    def __init__(self, db: DbSession, max_devices: int | None = None):
        self.db = db
        self.max_devices = max_devices if max_devices is not None else settings.max_devices_per_user

    # -- queries ---------------------------------------------------------------

    def get(self, device_id: str) -> Device | None:
        return self.db.get(Device, device_id)

    def get_owned(self, device_id: str, user_id: str) -> Device:
        """Load a device and assert it belongs to *user_id* (404 / 403)."""
        device = self.get(device_id)
        if device is None:
            raise DeviceNotFound()
        if device.user_id != user_id:
            raise Forbidden("Device does not belong to user")
        return device

    def list(self, user_id: str) -> List[Device]:
        return list(
            self.db.scalars(
                select(Device).where(Device.user_id == user_id).order_by(Device.last_seen_at)
            )
        )

    def count(self, user_id: str) -> int:
        return self.db.scalar(select(func.count()).select_from(Device).where(Device.user_id == user_id))

    # -- upsert ----------------------------------------------------------------

    def ensure_exists(
        self,
        device_id: str,
        user_id: str,
        type: str = "extension",
        meta: DeviceMeta | None = None,
    ) -> Device:
        """
        Insert the device, or refresh an existing one.

        On refresh only the metadata fields the caller supplied are merged;
        omitted fields keep their stored value.  Changes are flushed, not
        committed – the caller owns the transaction.
        """
        meta = meta or DeviceMeta()
        supplied = meta.model_dump(exclude_none=True)

        device = self.get(device_id)
        if device is not None:
            if device.user_id != user_id:
                raise Forbidden("Device id belongs to another user")
            for key, value in supplied.items():
                setattr(device, key, value)
            device.last_seen_at = utcnow()
            self.db.flush()
            return device

        if self.count(user_id) >= self.max_devices:
            raise DeviceLimitReached(f"Device limit reached (max {self.max_devices})")

        parts = device_id.split("-")
        device = Device(
            id=device_id,
            user_id=user_id,
            type=type,
            name=supplied.get("name") or (parts[1] if len(parts) > 1 and parts[1] else device_id),
            last_ip_address=supplied.get("last_ip_address"),
            last_user_agent=supplied.get("last_user_agent"),
            last_seen_at=utcnow(),
        )
        self.db.add(device)
        self.db.flush()
        return device

    def touch(self, device_id: str, ip_address: str | None = None, user_agent: str | None = None) -> Device | None:
        """Record activity on session refresh.  Flushed, not committed."""
        device = self.get(device_id)
        if device is None:
            return None
        device.last_seen_at = utcnow()
        if ip_address:
            device.last_ip_address = ip_address
        if user_agent:
            device.last_user_agent = user_agent
        self.db.flush()
        return device

    # -- deletion --------------------------------------------------------------

    def delete(self, device_id: str) -> DeletedDevice:
        """Delete one device and all of its sessions atomically."""
        device = self.get(device_id)
        if device is None:
            raise DeviceNotFound()
        # Detach the row so the caller can still read it for audit logging
        # after the commit.
        self.db.expunge(device)
        try:
            sessions_deleted = self.db.execute(
                delete(Session)
                .where(Session.device_id == device_id)
                .execution_options(synchronize_session=False)
            ).rowcount
            self.db.execute(
                delete(Device)
                .where(Device.id == device_id)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return DeletedDevice(device=device, sessions_deleted=sessions_deleted)

    def delete_all_except(self, user_id: str, except_device_id: str) -> RevokeAllResult:
        """
        Kill switch for a compromised account: remove every device of
        *user_id* except *except_device_id*, and their sessions, as one
        transaction.  Either everything matched is gone or nothing is.
        """
        devices = list(
            self.db.scalars(
                select(Device).where(Device.user_id == user_id, Device.id != except_device_id)
            )
        )
        if not devices:
            return RevokeAllResult()

        device_ids = [d.id for d in devices]
        for device in devices:
            self.db.expunge(device)
        try:
            sessions_deleted = self.db.execute(
                delete(Session)
                .where(Session.device_id.in_(device_ids))
                .execution_options(synchronize_session=False)
            ).rowcount
            devices_deleted = self.db.execute(
                delete(Device)
                .where(Device.id.in_(device_ids), Device.user_id == user_id)
                .execution_options(synchronize_session=False)
            ).rowcount
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return RevokeAllResult(
            devices=devices,
            devices_deleted=devices_deleted,
            sessions_deleted=sessions_deleted,
        )
