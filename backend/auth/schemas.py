# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""Pydantic request / response models for the auth endpoints."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from auth.service import DEVICE_CODE_GRANT


# -- Requests --------------------------------------------------------------


class DeviceCodeRequest(BaseModel):
    client_id: str


class DeviceApproveRequest(BaseModel):
    user_code: str = Field(min_length=1)
    approve: bool = True


class DeviceTokenRequest(BaseModel):
    grant_type: Literal[DEVICE_CODE_GRANT]
    device_code: str
    client_id: str
    public_key: str = Field(min_length=1)  # device's RSA-OAEP public key, PEM


# -- Responses -------------------------------------------------------------


class DeviceCodeResponse(BaseModel):
    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int   # seconds
    interval: int     # seconds between polls


class DeviceTokenResponse(BaseModel):
    access_token: str
    token_type: str  # always "bearer"
    device_id: str
    user_id: str     # used client-side as the PBKDF2 salt
    wrapped_key_material: str


class RefreshResponse(BaseModel):
    access_token: str
    token_type: str  # always "bearer"
    expires_at: datetime


# Public key and delivery timestamp are deliberately absent.
class SessionInfo(BaseModel):
    id: str
    user_id: str
    device_id: Optional[str]
    session_type: str
    key_material_delivered: bool
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}


# Envelope fields never leave the server.
class UserInfo(BaseModel):
    id: str
    email: str
    name: str

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    session: SessionInfo
    user: UserInfo
    key_material_initialized: bool
