# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Error taxonomy shared by the server services, the API layer and the device
agent.

Every variant carries a stable machine-readable ``code`` and the HTTP status
the API boundary answers with.  Handlers map errors by *class*, never by
inspecting the message text.
"""

from fastapi import status


class DeviceTrustError(Exception):
    """Base class for every error this package raises on purpose."""

    code = "internal_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigError(DeviceTrustError):
    """Missing or malformed startup configuration.  Fatal."""

    code = "config_error"
    default_message = "Invalid configuration"


# -- 404 family --------------------------------------------------------------


class NotFound(DeviceTrustError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class UserNotFound(NotFound):
    code = "user_not_found"
    default_message = "User not found"


class SessionNotFound(NotFound):
    code = "session_not_found"
    default_message = "Session not found"


class DeviceNotFound(NotFound):
    code = "device_not_found"
    default_message = "Device not found"


# -- protocol violations -----------------------------------------------------


class AlreadyDelivered(DeviceTrustError):
    """The session already consumed its one key-material delivery."""

    code = "already_delivered"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Key material has already been delivered for this session"


class SessionExpired(DeviceTrustError):
    """Session row is past its sliding expiry or its absolute maximum age."""

    code = "session_expired"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Session has expired – sign in again"


class DeviceLimitReached(DeviceTrustError):
    code = "device_limit_reached"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Device limit reached"


class Forbidden(DeviceTrustError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


# -- cryptographic / data failures ---------------------------------------------


class IntegrityError(DeviceTrustError):
    """
    An AES-GCM tag (or RSA-OAEP padding) failed to verify.  Signals tampering
    or corruption; never retried.
    """

    code = "integrity_error"
    default_message = "Decryption failed – data may be tampered"


class ParseError(DeviceTrustError):
    """Malformed input detected before any cryptographic operation."""

    code = "parse_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Malformed input"


class CorruptState(DeviceTrustError):
    """Persisted envelope fields are inconsistent.  Needs an operator."""

    code = "corrupt_state"
    default_message = "Stored key material is in an inconsistent state"


# -- device authorization grant (RFC 8628 error codes) -------------------------


class DeviceGrantError(DeviceTrustError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, code: str, message: str):
        self.code = code
        super().__init__(message)
