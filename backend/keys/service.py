# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Key-material services.

KeyMaterialStore
    Lazily creates each user's 256-bit key material and keeps it only in
    envelope-encrypted form.

DeviceWrappingService
    Hands a session its one wrapped copy of the key material, encrypted to
    the public key the device presents.

Plaintext key material only ever lives in local variables of these
methods; nothing is cached between calls.
"""

import base64
import binascii

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError as DbIntegrityError
from sqlalchemy.orm import Session as DbSession

from core.clock import utcnow
from core.crypto import (
    NONCE_SIZE,
    TAG_SIZE,
    MasterKeyVault,
    generate_key_material,
    load_device_public_key,
    wrap_key_material,
)
from core.errors import AlreadyDelivered, CorruptState, SessionNotFound, UserNotFound
from core.logger import logger
from models.audit_log import AuditLog
from models.key_material import UserKeyMaterial
from models.session import Session
from models.user import User


class KeyMaterialStore:
    def __init__(self, db: DbSession, vault: MasterKeyVault):
        self.db = db
        self.vault = vault

    def exists(self, user_id: str) -> bool:
        return self.db.get(UserKeyMaterial, user_id) is not None

    def get_or_create(self, user_id: str) -> str:
        """
        Return the user's plaintext key material, creating it on first use.

        Commits on the create path, so call it before staging other changes
        on the same DB session.  Two racing first uses end with the same key
        material: the loser's insert hits the primary key, rolls back, and
        decrypts the winner's row.
        """
        row = self.db.get(UserKeyMaterial, user_id)
        if row is not None:
            return self._open(row)

        if self.db.get(User, user_id) is None:
            raise UserNotFound()

        key_material = generate_key_material()
        envelope = self.vault.encrypt(key_material.encode("utf-8"))
        self.db.add(UserKeyMaterial(
            user_id=user_id,
            ciphertext=envelope.ciphertext,
            iv=envelope.iv,
            key_id=envelope.key_id,
        ))
        self.db.add(AuditLog(user_id=user_id, action="key_material_created", detail=f"key_id={envelope.key_id}"))
        try:
            self.db.commit()
        except DbIntegrityError:
            self.db.rollback()
            logger.info("Key material for user %s created concurrently – using stored copy", user_id)
            row = self.db.get(UserKeyMaterial, user_id)
            if row is None:
                # The conflict was not on our row (e.g. the user vanished).
                raise UserNotFound()
            return self._open(row)

        logger.info("Key material created | user=%s key_id=%s", user_id, envelope.key_id)
        return key_material

    def _open(self, row: UserKeyMaterial) -> str:
        self._check_envelope(row)
        return self.vault.decrypt(row.ciphertext, row.iv).decode("utf-8")

    def _check_envelope(self, row: UserKeyMaterial) -> None:
        problem = None
        if not row.ciphertext or not row.iv:
            problem = "ciphertext/iv missing"
        elif row.key_id != self.vault.key_id:
            problem = f"unknown key_id {row.key_id!r}"
        else:
            try:
                iv = base64.b64decode(row.iv, validate=True)
                ct = base64.b64decode(row.ciphertext, validate=True)
            except (binascii.Error, ValueError):
                problem = "envelope is not base64"
            else:
                if len(iv) != NONCE_SIZE:
                    problem = f"iv is {len(iv)} bytes"
                elif len(ct) <= TAG_SIZE:
                    problem = "ciphertext shorter than tag"
        if problem:
            logger.error("Corrupt key material envelope | user=%s problem=%s", row.user_id, problem)
            raise CorruptState()


class DeviceWrappingService:
    def __init__(self, db: DbSession, store: KeyMaterialStore):
        self.db = db
        self.store = store

    def wrap_for_session(
        self,
        session_id: str,
        public_key_pem: str,
        request_ip: str | None = None,
        commit: bool = True,
    ) -> str:
        """
        Wrap the session owner's key material for the presenting device.

        The delivered flag is flipped by a single conditional UPDATE and
        committed before the blob is returned, so at most one caller per
        session ever receives a wrap.  With ``commit=False`` the changes are
        only flushed and the caller must commit before handing out the blob.
        """
        session = self.db.get(Session, session_id)
        if session is None:
            raise SessionNotFound()
        if session.key_material_delivered:
            raise AlreadyDelivered()

        public_key = load_device_public_key(public_key_pem)
        user_id = session.user_id
        device_id = session.device_id

        key_material = self.store.get_or_create(user_id)
        wrapped = wrap_key_material(public_key, key_material)

        result = self.db.execute(
            update(Session)
            .where(Session.id == session_id, Session.key_material_delivered.is_(False))
            .values(
                public_key=public_key_pem,
                key_material_delivered=True,
                key_material_delivered_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise AlreadyDelivered()

        self.db.add(AuditLog(
            user_id=user_id,
            device_id=device_id,
            action="key_material_delivered",
            detail=f"session={session_id}",
            request_ip=request_ip,
        ))
        if not commit:
            self.db.flush()
            return wrapped
        self.db.commit()

        logger.info("Key material delivered | user=%s device=%s session=%s", user_id, device_id, session_id)
        return wrapped
