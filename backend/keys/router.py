# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Key-material endpoint – one wrapped delivery per session.

Security invariants enforced here
---------------------------------
* A valid session token is required (``get_current_session``); the session
  id is taken from the token, never from the request body.
* The response carries key material wrapped to the caller's public key
  only.  The server never returns, logs or caches the plaintext.
* A second request on the same session answers 409.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from core.crypto import MasterKeyVault
from core.security import AuthContext, get_client_ip, get_current_session, get_master_vault
from keys.schemas import KeyMaterialRequest, KeyMaterialResponse
from keys.service import DeviceWrappingService, KeyMaterialStore

router = APIRouter(prefix="/auth/device", tags=["keys"])


def get_wrapping_service(
    db: Session = Depends(get_db),
    vault: MasterKeyVault = Depends(get_master_vault),
) -> DeviceWrappingService:
    return DeviceWrappingService(db, KeyMaterialStore(db, vault))


# ---------------------------------------------------------------------------
# POST /auth/device/key-material
# ---------------------------------------------------------------------------


@router.post("/key-material", response_model=KeyMaterialResponse)
def get_key_material(
    body: KeyMaterialRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_session),
    wrapping: DeviceWrappingService = Depends(get_wrapping_service),
):
    """
    Wrap the user's key material for the device's RSA-OAEP public key.

    404 when the session or its user is gone, 409 once the session has
    already received its delivery, 400 for an unusable public key.
    """
    wrapped = wrapping.wrap_for_session(auth.session.id, body.public_key, get_client_ip(request))
    return KeyMaterialResponse(wrapped_user_key=wrapped)
