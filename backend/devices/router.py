# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Device endpoints – list, delete one, revoke all but one.

Ownership is checked here, before the registry deletes anything.  Deleting
a device removes its sessions in the same transaction, so any token bound
to it stops resolving on its next request.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from core.logger import logger
from core.security import AuthContext, get_client_ip, get_current_session
from devices.schemas import (
    DeleteDeviceResponse,
    DeviceListResponse,
    DeviceRow,
    RevokeAllRequest,
    RevokeAllResponse,
)
from devices.service import DeviceRegistry
from models.audit_log import AuditLog

router = APIRouter(prefix="/devices", tags=["devices"])


def get_registry(db: Session = Depends(get_db)) -> DeviceRegistry:
    return DeviceRegistry(db)


# ---------------------------------------------------------------------------
# GET /devices
# ---------------------------------------------------------------------------


@router.get("", response_model=DeviceListResponse)
def list_devices(
    auth: AuthContext = Depends(get_current_session),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Caller's devices, least recently seen first."""
    return DeviceListResponse(
        devices=[DeviceRow.model_validate(d) for d in registry.list(auth.user.id)],
        current_device_id=auth.session.device_id,
    )


# ---------------------------------------------------------------------------
# DELETE /devices/{device_id}
# ---------------------------------------------------------------------------


@router.delete("/{device_id}", response_model=DeleteDeviceResponse)
def delete_device(
    device_id: str,
    request: Request,
    auth: AuthContext = Depends(get_current_session),
    registry: DeviceRegistry = Depends(get_registry),
    db: Session = Depends(get_db),
):
    """404 if the device does not exist, 403 if it belongs to someone else."""
    registry.get_owned(device_id, auth.user.id)
    deleted = registry.delete(device_id)

    db.add(AuditLog(
        user_id=auth.user.id,
        device_id=device_id,
        action="device_deleted",
        detail=f"sessions_deleted={deleted.sessions_deleted}",
        request_ip=get_client_ip(request),
    ))
    db.commit()

    logger.info(
        "Device deleted | user=%s device=%s sessions_deleted=%d",
        auth.user.id,
        device_id,
        deleted.sessions_deleted,
    )
    return DeleteDeviceResponse(
        success=True,
        device=DeviceRow.model_validate(deleted.device),
        sessions_deleted=deleted.sessions_deleted,
    )


# ---------------------------------------------------------------------------
# POST /devices/revoke-all
# ---------------------------------------------------------------------------


@router.post("/revoke-all", response_model=RevokeAllResponse)
def revoke_all_devices(
    body: RevokeAllRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_session),
    registry: DeviceRegistry = Depends(get_registry),
    db: Session = Depends(get_db),
):
    """
    Delete every device of the caller except ``except_device_id``, together
    with their sessions.  The kept device must be the caller's own (403).
    """
    registry.get_owned(body.except_device_id, auth.user.id)
    result = registry.delete_all_except(auth.user.id, body.except_device_id)

    db.add(AuditLog(
        user_id=auth.user.id,
        device_id=body.except_device_id,
        action="devices_revoked",
        detail=f"devices_deleted={result.devices_deleted} sessions_deleted={result.sessions_deleted}",
        request_ip=get_client_ip(request),
    ))
    db.commit()

    logger.warning(
        "All devices revoked | user=%s kept=%s devices_deleted=%d sessions_deleted=%d",
        auth.user.id,
        body.except_device_id,
        result.devices_deleted,
        result.sessions_deleted,
    )
    return RevokeAllResponse(
        success=True,
        devices_deleted=result.devices_deleted,
        sessions_deleted=result.sessions_deleted,
        deleted_devices=[DeviceRow.model_validate(d) for d in result.devices],
    )
