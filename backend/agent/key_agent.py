# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
DeviceKeyAgent – the device side of key-material distribution.

* ``register`` generates a fresh RSA-2048 keypair, sends only the public
  half to the server and stores the private key together with the wrapped
  key material it gets back.
* ``redeem_device_code`` does the same for non-browser clients through the
  device authorization grant.
* ``unwrap`` recovers the key material on demand.  The plaintext is held in
  memory only and dropped by ``clear``.

Any failure to recover the key material locally surfaces as
``IntegrityError`` asking the user to re-authenticate the device; retrying
the same bad input cannot succeed.
"""

from dataclasses import dataclass

import httpx
from cryptography.hazmat.primitives import serialization

from core.crypto import export_public_key_pem, generate_device_keypair, unwrap_key_material
from core.errors import (
    AlreadyDelivered,
    CorruptState,
    DeviceGrantError,
    DeviceLimitReached,
    DeviceNotFound,
    DeviceTrustError,
    Forbidden,
    IntegrityError,
    NotFound,
    ParseError,
    SessionExpired,
    SessionNotFound,
    UserNotFound,
)
from agent.store import DeviceKeys, LocalKeyStore

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
_REAUTHENTICATE = "Key material not available. Please re-authenticate your device."

# Server errors are matched on their stable ``code``; the status is only a
# fallback for bodies that carry none (the framework's own 401 and 422).
_CODE_ERRORS = {
    cls.code: cls
    for cls in (
        DeviceTrustError,
        NotFound,
        UserNotFound,
        SessionNotFound,
        DeviceNotFound,
        AlreadyDelivered,
        SessionExpired,
        DeviceLimitReached,
        Forbidden,
        IntegrityError,
        ParseError,
        CorruptState,
    )
}

_STATUS_ERRORS = {
    400: ParseError,
    401: Forbidden,
    403: Forbidden,
    404: NotFound,
    409: AlreadyDelivered,
}


@dataclass(frozen=True)
class DeviceGrant:
    access_token: str
    device_id: str
    user_id: str
    wrapped_key_material: str


def _raise_for_response(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    if "error_description" in body:
        raise DeviceGrantError(body.get("error", "invalid_request"), body["error_description"])

    error_cls = _CODE_ERRORS.get(body.get("code")) or _STATUS_ERRORS.get(response.status_code)
    if error_cls is None:
        response.raise_for_status()
    raise error_cls(body.get("error"))


class DeviceKeyAgent:
    def __init__(self, http: httpx.Client, store: LocalKeyStore, passphrase: bytes | None = None):
        """
        *http* must already point at the server (``base_url``) and, for
        ``register``, carry the session's bearer token.
        """
        self.http = http
        self.store = store
        self.passphrase = passphrase
        self._key_material: str | None = None

    # -- local state -----------------------------------------------------------

    def get_stored(self) -> str | None:
        """Wrapped key material from the local store, without contacting the server."""
        keys = self.store.load()
        return keys.wrapped_key_material if keys else None

    def clear(self) -> None:
        """Sign-out: forget the private key, the wrapped blob and the in-memory key material."""
        self._key_material = None
        self.store.clear()

    def _serialize_private_key(self, private_key) -> bytes:
        if self.passphrase:
            encryption = serialization.BestAvailableEncryption(self.passphrase)
        else:
            encryption = serialization.NoEncryption()
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )

    # -- registration ----------------------------------------------------------

    def register(self) -> str:
        """
        Register this device for the current session and return the wrapped
        key material.  The keypair is new on every call.
        """
        private_key = generate_device_keypair()
        response = self.http.post(
            "/auth/device/key-material",
            json={"publicKey": export_public_key_pem(private_key)},
        )
        _raise_for_response(response)
        wrapped = response.json()["wrappedUserKey"]

        previous = self.store.load()
        self.store.save(DeviceKeys(
            private_key_pem=self._serialize_private_key(private_key),
            wrapped_key_material=wrapped,
            user_id=previous.user_id if previous else None,
            device_id=previous.device_id if previous else None,
        ))
        self._key_material = None
        return wrapped

    def request_device_code(self, client_id: str) -> dict:
        """Start a device authorization grant.  Show ``user_code`` to the user."""
        response = self.http.post("/auth/device/code", json={"client_id": client_id})
        _raise_for_response(response)
        return response.json()

    def redeem_device_code(self, device_code: str, client_id: str) -> DeviceGrant:
        """
        Exchange an approved device code for an access token, device id and
        wrapped key material, and persist the new keypair with the blob.

        Raises ``DeviceGrantError`` carrying the server's RFC 8628 code
        (``authorization_pending``, ``slow_down``, ``expired_token`` ...).
        On success the access token is installed on ``self.http``.
        """
        private_key = generate_device_keypair()
        response = self.http.post(
            "/auth/device/token",
            json={
                "grant_type": DEVICE_CODE_GRANT,
                "device_code": device_code,
                "client_id": client_id,
                "public_key": export_public_key_pem(private_key),
            },
        )
        _raise_for_response(response)

        body = response.json()
        grant = DeviceGrant(
            access_token=body["access_token"],
            device_id=body["device_id"],
            user_id=body["user_id"],
            wrapped_key_material=body["wrapped_key_material"],
        )
        self.store.save(DeviceKeys(
            private_key_pem=self._serialize_private_key(private_key),
            wrapped_key_material=grant.wrapped_key_material,
            user_id=grant.user_id,
            device_id=grant.device_id,
        ))
        self._key_material = None
        self.http.headers["Authorization"] = f"Bearer {grant.access_token}"
        return grant

    # -- unwrap ----------------------------------------------------------------

    def unwrap(self) -> str:
        """Key material in plaintext, unwrapped on first use and kept in memory only."""
        if self._key_material is not None:
            return self._key_material

        keys = self.store.load()
        if keys is None:
            raise IntegrityError(_REAUTHENTICATE)
        try:
            private_key = serialization.load_pem_private_key(keys.private_key_pem, password=self.passphrase)
        except (ValueError, TypeError):
            raise IntegrityError(_REAUTHENTICATE) from None
        try:
            self._key_material = unwrap_key_material(private_key, keys.wrapped_key_material)
        except DeviceTrustError:
            raise IntegrityError(_REAUTHENTICATE) from None
        return self._key_material
