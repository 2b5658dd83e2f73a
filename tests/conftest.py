"""
Shared fixtures.

The environment is prepared before any application module is imported:
Settings and the SQLAlchemy engine are built at import time.  Every test
gets freshly created tables in a throw-away SQLite file.
"""
import os
import secrets
import tempfile

_TMP = tempfile.mkdtemp(prefix="devicetrust-tests-")
MASTER_KEY_HEX = secrets.token_hex(32)

os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-" + secrets.token_hex(16)
os.environ["KEY_MATERIAL_MASTER_KEY"] = MASTER_KEY_HEX
os.environ["KEY_MATERIAL_KEY_ID"] = "default"
os.environ["DEVICETRUST_LOG_DIR"] = os.path.join(_TMP, "log")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth.service import SessionService  # noqa: E402
from core.crypto import MasterKeyVault, export_public_key_pem, generate_device_keypair  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from keys.service import DeviceWrappingService, KeyMaterialStore  # noqa: E402
from main import create_app  # noqa: E402
from models.user import User  # noqa: E402


# --- Database ---

@pytest.fixture(autouse=True)
def tables():
    """Create all tables before each test and drop them afterwards."""
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# --- Crypto ---

@pytest.fixture
def vault():
    return MasterKeyVault.from_hex(MASTER_KEY_HEX)


@pytest.fixture(scope="session")
def device_keypair():
    """One RSA-2048 keypair shared across the run; generating them is slow."""
    private_key = generate_device_keypair()
    return private_key, export_public_key_pem(private_key)


@pytest.fixture
def store(db, vault):
    return KeyMaterialStore(db, vault)


@pytest.fixture
def wrapping(db, store):
    return DeviceWrappingService(db, store)


# --- Users & sessions ---

@pytest.fixture
def make_user(db):
    """Factory: insert a user row and return it."""
    def _make(user_id: str = "u1", email: str | None = None, name: str = "Test User") -> User:
        user = User(id=user_id, email=email or f"{user_id}@example.com", name=name)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def open_session(db):
    """Factory: open a session the way the sign-in layer would; returns (session, token)."""
    def _open(user_id: str = "u1", session_type: str = "web", **kwargs):
        return SessionService(db).open_session(user_id, session_type, **kwargs)
    return _open


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# --- HTTP ---

@pytest.fixture
def app(vault):
    return create_app(vault)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
