"""
Tests for DeviceWrappingService and the RSA-OAEP helpers.

Tests cover:
- Wrap / unwrap round trip with a device keypair
- One-time delivery per session, including concurrent requests
- Session state recorded on delivery
- Rejection of unusable public keys
"""
import base64
import threading

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from sqlalchemy import select

from core.crypto import (
    export_public_key_pem,
    generate_device_keypair,
    load_device_public_key,
    unwrap_key_material,
    wrap_key_material,
)
from core.errors import AlreadyDelivered, IntegrityError, ParseError, SessionNotFound
from database import SessionLocal
from keys.service import DeviceWrappingService, KeyMaterialStore
from models.audit_log import AuditLog
from models.session import Session


# --- RSA-OAEP helpers ---

class TestWrapHelpers:
    def test_round_trip(self, device_keypair):
        private_key, public_pem = device_keypair
        blob = wrap_key_material(load_device_public_key(public_pem), "ab" * 32)
        assert unwrap_key_material(private_key, blob) == "ab" * 32

    def test_other_private_key_fails(self, device_keypair):
        _, public_pem = device_keypair
        blob = wrap_key_material(load_device_public_key(public_pem), "ab" * 32)
        with pytest.raises(IntegrityError):
            unwrap_key_material(generate_device_keypair(), blob)

    def test_tampered_blob_fails(self, device_keypair):
        private_key, public_pem = device_keypair
        raw = bytearray(base64.b64decode(wrap_key_material(load_device_public_key(public_pem), "cd" * 32)))
        raw[10] ^= 0x80
        with pytest.raises(IntegrityError):
            unwrap_key_material(private_key, base64.b64encode(bytes(raw)).decode())

    def test_blob_not_base64(self, device_keypair):
        private_key, _ = device_keypair
        with pytest.raises(ParseError):
            unwrap_key_material(private_key, "***")

    def test_rejects_garbage_pem(self):
        with pytest.raises(ParseError):
            load_device_public_key("-----BEGIN PUBLIC KEY-----\nnope\n-----END PUBLIC KEY-----")

    def test_rejects_small_rsa_key(self):
        small = rsa.generate_private_key(public_exponent=65537, key_size=1024)
        pem = small.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()
        with pytest.raises(ParseError):
            load_device_public_key(pem)

    def test_rejects_non_rsa_key(self):
        key = ec.generate_private_key(ec.SECP256R1())
        pem = key.public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        ).decode()
        with pytest.raises(ParseError):
            load_device_public_key(pem)


# --- One-time delivery ---

@pytest.fixture
def web_session(make_user, open_session):
    make_user("u1")
    session, _ = open_session("u1", "web")
    return session.id


class TestWrapForSession:
    def test_first_wrap_delivers_the_users_key_material(self, db, store, wrapping, web_session, device_keypair):
        private_key, public_pem = device_keypair

        blob = wrapping.wrap_for_session(web_session, public_pem)

        assert unwrap_key_material(private_key, blob) == store.get_or_create("u1")

    def test_session_marked_delivered(self, db, wrapping, web_session, device_keypair):
        _, public_pem = device_keypair
        wrapping.wrap_for_session(web_session, public_pem, request_ip="10.0.0.1")

        db.expire_all()
        session = db.get(Session, web_session)
        assert session.key_material_delivered is True
        assert session.key_material_delivered_at is not None
        assert session.public_key == public_pem

        audit = db.scalar(select(AuditLog).where(AuditLog.action == "key_material_delivered"))
        assert audit.request_ip == "10.0.0.1"
        assert public_pem not in (audit.detail or "")

    def test_second_wrap_is_refused(self, wrapping, web_session, device_keypair):
        _, public_pem = device_keypair
        wrapping.wrap_for_session(web_session, public_pem)

        with pytest.raises(AlreadyDelivered) as excinfo:
            wrapping.wrap_for_session(web_session, public_pem)
        assert "already been delivered" in str(excinfo.value)

    def test_new_keypair_does_not_reopen_delivery(self, wrapping, web_session, device_keypair):
        """Re-registering with another keypair on the same session is still refused."""
        _, public_pem = device_keypair
        wrapping.wrap_for_session(web_session, public_pem)

        with pytest.raises(AlreadyDelivered):
            wrapping.wrap_for_session(web_session, export_public_key_pem(generate_device_keypair()))

    def test_unknown_session(self, wrapping, device_keypair):
        with pytest.raises(SessionNotFound):
            wrapping.wrap_for_session("missing", device_keypair[1])

    def test_bad_public_key_leaves_session_undelivered(self, db, wrapping, web_session):
        with pytest.raises(ParseError):
            wrapping.wrap_for_session(web_session, "not a key")

        db.expire_all()
        assert db.get(Session, web_session).key_material_delivered is False

    def test_each_session_gets_one_delivery(self, store, wrapping, open_session, web_session, device_keypair):
        """A second session of the same user gets its own delivery of the same key material."""
        private_key, public_pem = device_keypair
        other, _ = open_session("u1", "web")

        first = wrapping.wrap_for_session(web_session, public_pem)
        second = wrapping.wrap_for_session(other.id, public_pem)

        assert unwrap_key_material(private_key, first) == unwrap_key_material(private_key, second)


class TestConcurrentDelivery:
    def test_at_most_one_success(self, vault, web_session, device_keypair):
        _, public_pem = device_keypair
        successes, refused, errors = [], [], []
        barrier = threading.Barrier(8)

        def worker():
            session = SessionLocal()
            try:
                service = DeviceWrappingService(session, KeyMaterialStore(session, vault))
                barrier.wait()
                successes.append(service.wrap_for_session(web_session, public_pem))
            except AlreadyDelivered:
                refused.append(True)
            except Exception as exc:  # collected and asserted below
                errors.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(successes) == 1
        assert len(refused) == 7
