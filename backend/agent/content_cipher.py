# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Client-side content decryption.

A device turns the unwrapped key material into a working AES-256 key with
PBKDF2-HMAC-SHA512 (100 000 iterations, salt = user id) and decrypts blobs
in the wire format::

    <base64 ciphertext>.<base64 tag>:<base64 iv>

The derived key is decrypt-only.  Producing new ciphertext is not a concern
of the device.
"""

import asyncio
import binascii

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.crypto import NONCE_SIZE, TAG_SIZE, b64decode_strict
from core.errors import IntegrityError, ParseError

PBKDF2_ITERATIONS = 100_000
DERIVED_KEY_SIZE = 32


class DecryptionKey:
    """AES-256-GCM key that can only decrypt.  Its bytes are never exposed."""

    __slots__ = ("_aesgcm",)

    def __init__(self, raw: bytes):
        self._aesgcm = AESGCM(raw)

    def decrypt(self, nonce: bytes, data: bytes) -> bytes:
        return self._aesgcm.decrypt(nonce, data, None)

    def __repr__(self) -> str:
        return "DecryptionKey([REDACTED])"


class ContentCipher:
    """Derive a working key from key material and decrypt content blobs."""

    iterations = PBKDF2_ITERATIONS

    def derive_key(self, key_material: str, user_id: str) -> DecryptionKey:
        """
        PBKDF2-HMAC-SHA512 over the key material text, salted with the user
        id.  Deliberately slow; use :meth:`derive_key_async` from an event
        loop.
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=DERIVED_KEY_SIZE,
            salt=user_id.encode("utf-8"),
            iterations=self.iterations,
        )
        return DecryptionKey(kdf.derive(key_material.encode("utf-8")))

    async def derive_key_async(self, key_material: str, user_id: str) -> DecryptionKey:
        return await asyncio.to_thread(self.derive_key, key_material, user_id)

    @staticmethod
    def parse(blob: str) -> tuple[bytes, bytes, bytes]:
        """
        Split a wire blob into (ciphertext, tag, iv).

        Raises ``ParseError`` on wrong part counts, bad base64, or a tag or
        IV of the wrong length.  No cryptography is attempted here.
        """
        if not isinstance(blob, str):
            raise ParseError("Encrypted content must be a string")
        outer = blob.split(":")
        if len(outer) != 2:
            raise ParseError("Encrypted content must have the form <ciphertext>.<tag>:<iv>")
        inner = outer[0].split(".")
        if len(inner) != 2:
            raise ParseError("Encrypted content must have the form <ciphertext>.<tag>:<iv>")
        try:
            ciphertext = b64decode_strict(inner[0])
            tag = b64decode_strict(inner[1])
            iv = b64decode_strict(outer[1])
        except (binascii.Error, ValueError):
            raise ParseError("Encrypted content is not valid base64") from None
        if len(tag) != TAG_SIZE:
            raise ParseError("Authentication tag has the wrong length")
        if len(iv) != NONCE_SIZE:
            raise ParseError("IV has the wrong length")
        return ciphertext, tag, iv

    def decrypt(self, blob: str, key: DecryptionKey) -> str:
        """Decrypt *blob*.  ``ParseError`` for bad input, ``IntegrityError`` for a bad key or tampering."""
        ciphertext, tag, iv = self.parse(blob)
        try:
            plaintext = key.decrypt(iv, ciphertext + tag)
        except InvalidTag:
            raise IntegrityError("Failed to decrypt content – re-authenticate your device") from None
        return plaintext.decode("utf-8")
