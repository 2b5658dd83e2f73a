# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Device-local persistence for the key agent.

One SQLite file per device installation, one row per logical store name.
The private key and the wrapped key material it unwraps are always written
and cleared together in a single transaction, so a crash can never leave
one without the other.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from core.clock import utcnow

DEFAULT_STORE_NAME = "device-keys"

# Kept apart from the server's Base: the agent never shares a database with it.
LocalBase = declarative_base()


class StoredDeviceKeys(LocalBase):
    __tablename__ = "device_keys"

    name = Column(String(64), primary_key=True)
    private_key_pem = Column(Text, nullable=False)     # PKCS#8, encrypted when a passphrase is set
    wrapped_key_material = Column(Text, nullable=False)
    user_id = Column(String(64), nullable=True)
    device_id = Column(String(64), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


@dataclass(frozen=True)
class DeviceKeys:
    private_key_pem: bytes
    wrapped_key_material: str
    user_id: Optional[str] = None
    device_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class LocalKeyStore:
    def __init__(self, path: str | Path, name: str = DEFAULT_STORE_NAME):
        self.name = name
        self.engine = create_engine(f"sqlite:///{Path(path).as_posix()}")
        LocalBase.metadata.create_all(self.engine)
        self._session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def save(self, keys: DeviceKeys) -> None:
        """Write private key and wrapped blob as one row, replacing any previous pair."""
        with self._session.begin() as db:
            row = db.get(StoredDeviceKeys, self.name)
            if row is None:
                row = StoredDeviceKeys(name=self.name)
                db.add(row)
            row.private_key_pem = keys.private_key_pem.decode("ascii")
            row.wrapped_key_material = keys.wrapped_key_material
            row.user_id = keys.user_id
            row.device_id = keys.device_id
            row.updated_at = utcnow()

    def load(self) -> DeviceKeys | None:
        with self._session() as db:
            row = db.get(StoredDeviceKeys, self.name)
            if row is None:
                return None
            return DeviceKeys(
                private_key_pem=row.private_key_pem.encode("ascii"),
                wrapped_key_material=row.wrapped_key_material,
                user_id=row.user_id,
                device_id=row.device_id,
                updated_at=row.updated_at,
            )

    def clear(self) -> bool:
        """Delete the pair.  Returns whether anything was stored."""
        with self._session.begin() as db:
            row = db.get(StoredDeviceKeys, self.name)
            if row is None:
                return False
            db.delete(row)
            return True

    def close(self) -> None:
        self.engine.dispose()
