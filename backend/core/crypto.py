# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Cryptographic primitives for key-material distribution.  Nothing else in
the server touches raw crypto directly.

Responsibilities
----------------
1. Key-material generation                  (256-bit, ``secrets``)
2. Envelope encryption at rest              (AES-256-GCM, MasterKeyVault)
3. Device wrapping / unwrapping             (RSA-OAEP 2048, SHA-256)

This module has no settings or database imports so the device agent can use
the same wrapping code as the server.
"""

import base64
import binascii
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.errors import ConfigError, IntegrityError, ParseError

MASTER_KEY_SIZE = 32       # AES-256
NONCE_SIZE = 12            # 96-bit nonce per NIST SP 800-38D
TAG_SIZE = 16              # GCM authentication tag
KEY_MATERIAL_SIZE = 32     # 256-bit per-user secret
DEVICE_KEY_BITS = 2048
DEFAULT_KEY_ID = "default"

# RSA-OAEP with SHA-256 for both the label hash and MGF1 – the parameters
# browser WebCrypto and Node's publicEncrypt(oaepHash="sha256") agree on.
_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def b64decode_strict(value: str) -> bytes:
    """base64 decode that rejects stray characters instead of skipping them."""
    return base64.b64decode(value, validate=True)


# ---------------------------------------------------------------------------
# 1.  Key material
# ---------------------------------------------------------------------------


def generate_key_material() -> str:
    """
    Generate a fresh per-user key material.

    The 32 random bytes travel as 64 lowercase hex characters; that text is
    what gets envelope-encrypted, wrapped for devices and fed to PBKDF2 on
    the client.
    """
    return secrets.token_bytes(KEY_MATERIAL_SIZE).hex()


# ---------------------------------------------------------------------------
# 2.  AES-256-GCM – envelope encryption under the server master key
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnvelopeCiphertext:
    ciphertext: str   # base64( ciphertext || 16-byte GCM tag )
    iv: str           # base64( 12-byte nonce )
    key_id: str


class MasterKeyVault:
    """
    Holds the server's long-lived master key and envelope-encrypts key
    material with it.

    Build exactly one instance at startup (see ``main.create_app``) and hand
    it to the services that need it.  The raw key is only kept inside the
    AESGCM object and never exposed again.
    """

    __slots__ = ("_aesgcm", "key_id")

    def __init__(self, key: bytes, key_id: str = DEFAULT_KEY_ID):
        if len(key) != MASTER_KEY_SIZE:
            raise ConfigError(f"Master key must be exactly {MASTER_KEY_SIZE} bytes")
        self._aesgcm = AESGCM(key)
        self.key_id = key_id

    @classmethod
    def from_hex(cls, hex_key: str | None, key_id: str = DEFAULT_KEY_ID) -> "MasterKeyVault":
        """Build from the hex-encoded KEY_MATERIAL_MASTER_KEY setting."""
        if not hex_key:
            raise ConfigError("KEY_MATERIAL_MASTER_KEY is required")
        hex_key = hex_key.strip()
        if len(hex_key) != MASTER_KEY_SIZE * 2:
            raise ConfigError("KEY_MATERIAL_MASTER_KEY must be 32 bytes hex (64 chars)")
        try:
            key = bytes.fromhex(hex_key)
        except ValueError:
            raise ConfigError("KEY_MATERIAL_MASTER_KEY is not valid hex") from None
        return cls(key, key_id)

    def encrypt(self, plaintext: bytes) -> EnvelopeCiphertext:
        """
        Encrypt *plaintext* with a fresh random nonce.  Nonce reuse under the
        same key would be catastrophic for GCM, so one is drawn per call.
        """
        iv = secrets.token_bytes(NONCE_SIZE)
        ct_and_tag = self._aesgcm.encrypt(iv, plaintext, None)
        return EnvelopeCiphertext(
            ciphertext=base64.b64encode(ct_and_tag).decode("ascii"),
            iv=base64.b64encode(iv).decode("ascii"),
            key_id=self.key_id,
        )

    def decrypt(self, ciphertext: str, iv: str) -> bytes:
        """
        Decrypt an envelope produced by :meth:`encrypt`.

        Raises ``IntegrityError`` when the input is malformed, shorter than
        the tag, or the tag does not verify.
        """
        try:
            buf = b64decode_strict(ciphertext)
            nonce = b64decode_strict(iv)
        except (binascii.Error, ValueError):
            raise IntegrityError("Envelope is not valid base64") from None
        if len(nonce) != NONCE_SIZE:
            raise IntegrityError("Envelope IV has the wrong length")
        if len(buf) < TAG_SIZE:
            raise IntegrityError("Envelope ciphertext is shorter than the authentication tag")

        data, tag = buf[:-TAG_SIZE], buf[-TAG_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, data + tag, None)
        except InvalidTag:
            raise IntegrityError() from None

    def __repr__(self) -> str:
        return f"MasterKeyVault(key_id={self.key_id!r}, key=[REDACTED])"


# ---------------------------------------------------------------------------
# 3.  RSA-OAEP – wrapping key material for one device
# ---------------------------------------------------------------------------


def generate_device_keypair() -> rsa.RSAPrivateKey:
    """Generate a device wrapping keypair (RSA 2048, e=65537)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=DEVICE_KEY_BITS)


def export_public_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    """SubjectPublicKeyInfo PEM – the only part of the keypair that leaves the device."""
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def load_device_public_key(public_key_pem: str) -> rsa.RSAPublicKey:
    """Parse a device's PEM public key; ``ParseError`` unless it is RSA >= 2048 bits."""
    try:
        key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    except (ValueError, UnicodeEncodeError, TypeError):
        raise ParseError("Public key is not a valid PEM SubjectPublicKeyInfo") from None
    if not isinstance(key, rsa.RSAPublicKey):
        raise ParseError("Public key must be an RSA key")
    if key.key_size < DEVICE_KEY_BITS:
        raise ParseError(f"Public key must be at least {DEVICE_KEY_BITS} bits")
    return key


def wrap_key_material(public_key: rsa.RSAPublicKey, key_material: str) -> str:
    """Encrypt key material for one device.  Returns base64 ciphertext."""
    wrapped = public_key.encrypt(key_material.encode("utf-8"), _OAEP)
    return base64.b64encode(wrapped).decode("ascii")


def unwrap_key_material(private_key: rsa.RSAPrivateKey, wrapped_b64: str) -> str:
    """
    Recover key material with the device's private key.

    ``ParseError`` for a blob that is not base64, ``IntegrityError`` when the
    OAEP padding does not check out (wrong key or tampered blob).
    """
    try:
        wrapped = b64decode_strict(wrapped_b64)
    except (binascii.Error, ValueError):
        raise ParseError("Wrapped key material is not valid base64") from None
    try:
        plaintext = private_key.decrypt(wrapped, _OAEP)
    except ValueError:
        raise IntegrityError("Failed to unwrap key material") from None
    return plaintext.decode("utf-8")
