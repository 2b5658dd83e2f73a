# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the device endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# -- Requests --------------------------------------------------------------


class RevokeAllRequest(BaseModel):
    except_device_id: str = Field(min_length=1)  # the device to keep


# -- Responses -------------------------------------------------------------


class DeviceRow(BaseModel):
    id: str
    type: str
    name: Optional[str] = None
    last_ip_address: Optional[str] = None
    last_user_agent: Optional[str] = None
    created_at: datetime
    last_seen_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DeviceListResponse(BaseModel):
    devices: List[DeviceRow]
    current_device_id: Optional[str] = None


class DeleteDeviceResponse(BaseModel):
    success: bool
    device: DeviceRow
    sessions_deleted: int


class RevokeAllResponse(BaseModel):
    success: bool
    devices_deleted: int
    sessions_deleted: int
    deleted_devices: List[DeviceRow]
