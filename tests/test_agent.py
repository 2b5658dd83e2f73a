"""
Tests for the device side: LocalKeyStore and DeviceKeyAgent.

The agent talks to the real application through TestClient (an
httpx.Client), so these double as end-to-end tests of the protocol:

  no key material -> register -> wrap delivered once -> 409 on repeat
  -> local unwrap recovers the key material -> content decrypts
"""
import base64
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select, update

from agent.content_cipher import ContentCipher
from agent.key_agent import DeviceKeyAgent, _raise_for_response
from agent.store import DeviceKeys, LocalKeyStore
from conftest import bearer
from core.clock import utcnow
from core.config import settings
from core.errors import (
    AlreadyDelivered,
    CorruptState,
    DeviceGrantError,
    DeviceLimitReached,
    DeviceNotFound,
    Forbidden,
    IntegrityError,
    SessionExpired,
)
from models.device import Device
from models.device_code import DeviceCode
from models.key_material import UserKeyMaterial
from models.session import Session
from test_content_cipher import encrypt_blob


@pytest.fixture
def local_store(tmp_path):
    store = LocalKeyStore(tmp_path / "device.db")
    yield store
    store.close()


@pytest.fixture
def web_token(make_user, open_session):
    make_user("u1")
    _, token = open_session("u1", "web")
    return token


@pytest.fixture
def agent(app, local_store, web_token):
    http = TestClient(app, headers=bearer(web_token))
    return DeviceKeyAgent(http, local_store)


@pytest.fixture
def anonymous_agent(app, local_store):
    return DeviceKeyAgent(TestClient(app), local_store)


# --- Local store ---

class TestLocalKeyStore:
    def test_empty(self, local_store):
        assert local_store.load() is None
        assert local_store.clear() is False

    def test_save_load_clear(self, local_store):
        local_store.save(DeviceKeys(private_key_pem=b"PEM", wrapped_key_material="blob", user_id="u1"))

        keys = local_store.load()
        assert keys.private_key_pem == b"PEM"
        assert keys.wrapped_key_material == "blob"
        assert keys.user_id == "u1"
        assert keys.updated_at is not None

        assert local_store.clear() is True
        assert local_store.load() is None

    def test_save_replaces_pair(self, local_store):
        local_store.save(DeviceKeys(private_key_pem=b"old", wrapped_key_material="old"))
        local_store.save(DeviceKeys(private_key_pem=b"new", wrapped_key_material="new"))
        keys = local_store.load()
        assert (keys.private_key_pem, keys.wrapped_key_material) == (b"new", "new")

    def test_stores_are_isolated_by_name(self, tmp_path):
        first = LocalKeyStore(tmp_path / "shared.db", name="device-keys")
        second = LocalKeyStore(tmp_path / "shared.db", name="other")
        try:
            first.save(DeviceKeys(private_key_pem=b"a", wrapped_key_material="a"))
            assert second.load() is None
        finally:
            first.close()
            second.close()


# --- Registration ---

class TestRegister:
    def test_end_to_end(self, db, store, agent):
        """Register, get exactly one wrap, unwrap locally, decrypt content."""
        assert store.exists("u1") is False
        assert agent.get_stored() is None

        wrapped = agent.register()

        assert agent.get_stored() == wrapped
        key_material = agent.unwrap()
        assert key_material == store.get_or_create("u1")
        db.expire_all()
        assert db.scalars(select(Session)).one().key_material_delivered is True

        cipher = ContentCipher()
        key = cipher.derive_key(key_material, "u1")
        assert cipher.decrypt(encrypt_blob("API_KEY=123", key_material, "u1"), key) == "API_KEY=123"

    def test_second_register_conflicts_and_keeps_state(self, agent):
        wrapped = agent.register()

        with pytest.raises(AlreadyDelivered):
            agent.register()
        assert agent.get_stored() == wrapped
        agent.unwrap()

    def test_unauthenticated(self, anonymous_agent):
        with pytest.raises(Forbidden):
            anonymous_agent.register()

    def test_private_key_encrypted_with_passphrase(self, app, local_store, web_token):
        agent = DeviceKeyAgent(TestClient(app, headers=bearer(web_token)), local_store, passphrase=b"hunter2")
        agent.register()

        assert b"ENCRYPTED" in local_store.load().private_key_pem
        assert len(agent.unwrap()) == 64

        wrong = DeviceKeyAgent(agent.http, local_store, passphrase=b"wrong")
        with pytest.raises(IntegrityError):
            wrong.unwrap()


# --- Unwrap ---

class TestUnwrap:
    def test_nothing_stored(self, agent):
        with pytest.raises(IntegrityError) as excinfo:
            agent.unwrap()
        assert "re-authenticate your device" in str(excinfo.value)

    def test_clear_forgets_everything(self, agent, local_store):
        agent.register()
        agent.unwrap()

        agent.clear()

        assert agent.get_stored() is None
        assert local_store.load() is None
        with pytest.raises(IntegrityError):
            agent.unwrap()

    def test_tampered_blob(self, agent, local_store):
        agent.register()
        keys = local_store.load()
        raw = bytearray(base64.b64decode(keys.wrapped_key_material))
        raw[0] ^= 0x01
        local_store.save(DeviceKeys(
            private_key_pem=keys.private_key_pem,
            wrapped_key_material=base64.b64encode(bytes(raw)).decode(),
        ))

        with pytest.raises(IntegrityError):
            agent.unwrap()


# --- Device authorization grant ---

class TestDeviceGrant:
    CLIENT = "devicetrust-cli"

    def _approve(self, client, token, user_code, approve=True):
        return client.post(
            "/auth/device/approve",
            json={"user_code": user_code, "approve": approve},
            headers=bearer(token),
        )

    def test_happy_path(self, client, store, anonymous_agent, web_token):
        code = anonymous_agent.request_device_code(self.CLIENT)
        assert code["interval"] == 5
        assert code["verification_uri_complete"].endswith(code["user_code"])

        with pytest.raises(DeviceGrantError) as excinfo:
            anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)
        assert excinfo.value.code == "authorization_pending"

        assert self._approve(client, web_token, code["user_code"]).status_code == 200

        grant = anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)

        assert grant.user_id == "u1"
        assert grant.device_id.startswith("ext-")
        assert anonymous_agent.unwrap() == store.get_or_create("u1")
        stored = anonymous_agent.store.load()
        assert (stored.user_id, stored.device_id) == ("u1", grant.device_id)

        # The issued token is installed on the agent's client and bound to the new device.
        info = anonymous_agent.http.get("/auth/session").json()
        assert info["session"]["device_id"] == grant.device_id
        assert info["session"]["session_type"] == "extension"
        assert info["session"]["key_material_delivered"] is True

        # The session already received its one delivery.
        with pytest.raises(AlreadyDelivered):
            anonymous_agent.register()

    def test_code_is_single_use(self, client, anonymous_agent, web_token):
        code = anonymous_agent.request_device_code(self.CLIENT)
        self._approve(client, web_token, code["user_code"])
        anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)

        with pytest.raises(DeviceGrantError) as excinfo:
            anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)
        assert excinfo.value.code == "invalid_grant"

    def test_denied(self, client, anonymous_agent, web_token):
        code = anonymous_agent.request_device_code(self.CLIENT)
        self._approve(client, web_token, code["user_code"], approve=False)

        with pytest.raises(DeviceGrantError) as excinfo:
            anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)
        assert excinfo.value.code == "access_denied"

    def test_slow_down(self, anonymous_agent, web_token):
        code = anonymous_agent.request_device_code(self.CLIENT)
        for expected in ("authorization_pending", "slow_down"):
            with pytest.raises(DeviceGrantError) as excinfo:
                anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)
            assert excinfo.value.code == expected

    def test_expired(self, db, client, anonymous_agent, web_token):
        code = anonymous_agent.request_device_code(self.CLIENT)
        self._approve(client, web_token, code["user_code"])
        db.execute(update(DeviceCode).values(expires_at=utcnow() - timedelta(minutes=1)))
        db.commit()

        with pytest.raises(DeviceGrantError) as excinfo:
            anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)
        assert excinfo.value.code == "expired_token"

    def _device_count(self, db):
        db.expire_all()
        return len(db.scalars(select(Device)).all())

    def _code_status(self, db):
        db.expire_all()
        return db.scalars(select(DeviceCode.status)).one()

    def test_quota_failure_keeps_code_redeemable(self, db, client, anonymous_agent, web_token, monkeypatch):
        code = anonymous_agent.request_device_code(self.CLIENT)
        self._approve(client, web_token, code["user_code"])
        monkeypatch.setattr(settings, "max_devices_per_user", 1)

        with pytest.raises(DeviceLimitReached):
            anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)

        assert self._device_count(db) == 1
        assert self._code_status(db) == "approved"
        assert anonymous_agent.store.load() is None

        monkeypatch.setattr(settings, "max_devices_per_user", 5)
        grant = anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)
        assert self._device_count(db) == 2
        assert self._code_status(db) == "consumed"
        assert db.get(Device, grant.device_id) is not None

    def test_corrupt_key_material_leaves_nothing_behind(self, db, client, store, anonymous_agent, web_token):
        store.get_or_create("u1")
        db.execute(update(UserKeyMaterial).values(iv=""))
        db.commit()
        code = anonymous_agent.request_device_code(self.CLIENT)
        self._approve(client, web_token, code["user_code"])

        with pytest.raises(CorruptState):
            anonymous_agent.redeem_device_code(code["device_code"], self.CLIENT)

        assert self._device_count(db) == 1
        assert len(db.scalars(select(Session)).all()) == 1
        assert self._code_status(db) == "approved"

    def test_unknown_client(self, anonymous_agent):
        with pytest.raises(DeviceGrantError) as excinfo:
            anonymous_agent.request_device_code("someone-else")
        assert excinfo.value.code == "invalid_client"

    def test_error_body_shape(self, client, web_token):
        response = client.post("/auth/device/code", json={"client_id": "someone-else"})
        assert response.status_code == 400
        assert response.json() == {"error": "invalid_client", "error_description": "Unknown client"}

    def test_approve_unknown_code(self, client, web_token):
        response = self._approve(client, web_token, "ZZZZZZZZ")
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_new_device_notification(self, db, make_user):
        """open_session notifies only for new devices and only when the user opted in."""
        from auth.service import SessionService
        from models.user import NotificationPreferences

        user = make_user("u9")
        user.preferences = NotificationPreferences(new_device_login=True)
        db.commit()

        seen = []
        service = SessionService(db, notifier=lambda u, d: seen.append(d.id))
        service.open_session("u9", "web")
        service.open_session("u9", "web")
        service.open_session("u9", "extension")

        assert seen[0] == "u9-web"
        assert len(seen) == 2
        assert seen[1].startswith("ext-")


class TestServerErrors:
    @pytest.mark.parametrize("status, code, expected", [
        (409, "device_limit_reached", DeviceLimitReached),
        (409, "already_delivered", AlreadyDelivered),
        (404, "device_not_found", DeviceNotFound),
        (500, "corrupt_state", CorruptState),
        (401, "session_expired", SessionExpired),
    ])
    def test_mapped_by_code(self, status, code, expected):
        response = httpx.Response(status, json={"success": False, "error": "boom", "code": code})
        with pytest.raises(expected) as excinfo:
            _raise_for_response(response)
        assert type(excinfo.value) is expected
        assert excinfo.value.message == "boom"

    def test_status_fallback_without_code(self):
        with pytest.raises(Forbidden):
            _raise_for_response(httpx.Response(401, json={"detail": "Not authenticated"}))

    def test_unmapped_status(self):
        response = httpx.Response(502, request=httpx.Request("GET", "http://server/health"))
        with pytest.raises(httpx.HTTPStatusError):
            _raise_for_response(response)


def test_unreadable_preferences_fall_back_to_defaults(db, make_user):
    user = make_user("u1")
    user.notification_preferences = "{not json"
    db.commit()
    prefs = user.preferences
    assert prefs.new_device_login is False
    assert prefs.new_repo_added is True
