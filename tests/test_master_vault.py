"""
Tests for MasterKeyVault.

Tests cover:
- Startup validation of the hex master key
- Envelope layout (base64, 12-byte IV, tag appended)
- Tamper detection on ciphertext, tag and IV
- Redacted repr
"""
import base64

import pytest

from core.crypto import NONCE_SIZE, TAG_SIZE, MasterKeyVault
from core.errors import ConfigError, IntegrityError
from main import create_app


# --- Configuration ---

class TestMasterKeyConfiguration:
    """A missing or malformed master key is fatal."""

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing_key(self, value):
        with pytest.raises(ConfigError):
            MasterKeyVault.from_hex(value)

    def test_wrong_length(self):
        with pytest.raises(ConfigError):
            MasterKeyVault.from_hex("ab" * 16)

    def test_not_hex(self):
        with pytest.raises(ConfigError):
            MasterKeyVault.from_hex("zz" * 32)

    def test_raw_key_must_be_32_bytes(self):
        with pytest.raises(ConfigError):
            MasterKeyVault(b"\x00" * 31)

    def test_app_refuses_to_build_without_key(self, monkeypatch):
        """create_app() surfaces ConfigError instead of starting."""
        from core.config import settings
        monkeypatch.setattr(settings, "key_material_master_key", "")
        with pytest.raises(ConfigError):
            create_app()

    def test_key_id_is_carried(self):
        vault = MasterKeyVault.from_hex("11" * 32, key_id="k2")
        assert vault.encrypt(b"x").key_id == "k2"


# --- Envelope encryption ---

class TestEnvelope:
    def test_round_trip(self, vault):
        envelope = vault.encrypt(b"secret key material")
        assert vault.decrypt(envelope.ciphertext, envelope.iv) == b"secret key material"

    def test_layout(self, vault):
        envelope = vault.encrypt(b"abc")
        assert len(base64.b64decode(envelope.iv)) == NONCE_SIZE
        assert len(base64.b64decode(envelope.ciphertext)) == 3 + TAG_SIZE
        assert envelope.key_id == "default"

    def test_fresh_iv_per_call(self, vault):
        first = vault.encrypt(b"same")
        second = vault.encrypt(b"same")
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_other_key_cannot_decrypt(self, vault):
        envelope = vault.encrypt(b"data")
        other = MasterKeyVault.from_hex("22" * 32)
        with pytest.raises(IntegrityError):
            other.decrypt(envelope.ciphertext, envelope.iv)


# --- Tamper detection ---

class TestTamperDetection:
    """Flipping any bit must fail with IntegrityError, never return other plaintext."""

    @staticmethod
    def _flip(b64: str, index: int) -> str:
        raw = bytearray(base64.b64decode(b64))
        raw[index] ^= 0x01
        return base64.b64encode(bytes(raw)).decode()

    def test_every_byte_of_ciphertext_and_tag(self, vault):
        envelope = vault.encrypt(b"0123456789abcdef")
        length = len(base64.b64decode(envelope.ciphertext))
        for index in range(length):
            with pytest.raises(IntegrityError):
                vault.decrypt(self._flip(envelope.ciphertext, index), envelope.iv)

    def test_iv_bit_flip(self, vault):
        envelope = vault.encrypt(b"payload")
        with pytest.raises(IntegrityError):
            vault.decrypt(envelope.ciphertext, self._flip(envelope.iv, 0))

    def test_shorter_than_tag(self, vault):
        envelope = vault.encrypt(b"payload")
        with pytest.raises(IntegrityError):
            vault.decrypt(base64.b64encode(b"\x00" * (TAG_SIZE - 1)).decode(), envelope.iv)

    def test_wrong_iv_length(self, vault):
        envelope = vault.encrypt(b"payload")
        with pytest.raises(IntegrityError):
            vault.decrypt(envelope.ciphertext, base64.b64encode(b"\x00" * 8).decode())

    def test_not_base64(self, vault):
        envelope = vault.encrypt(b"payload")
        with pytest.raises(IntegrityError):
            vault.decrypt("not base64!!", envelope.iv)


def test_repr_is_redacted():
    vault = MasterKeyVault.from_hex("ab" * 32)
    assert "ab" * 4 not in repr(vault)
    assert "REDACTED" in repr(vault)
