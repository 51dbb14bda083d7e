# =============================================================================
# todo_core/auth/session_store.py
# Encrypted on-disk persistence of the auth session
# =============================================================================
"""
SessionStore - keeps the provider session across restarts.

The session is written to a single file encrypted with AES-256-GCM. The key
is derived from the app id, the host name and the data directory, so the file
is useless when copied to another machine or profile. The file holds::

    {"iv": <hex>, "authTag": <hex>, "encrypted": <hex>}

and decrypts to ``{"session": {...}, "expiresAt": ms, "createdAt": ms}``.
"""

from __future__ import annotations
import hashlib
import json
import math
import os
import socket
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from todo_core.errors import SessionError
from todo_core.models import now_ms

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
DAY_MS = 24 * 60 * 60 * 1000


def derive_key(app_id: str, data_dir: Path) -> bytes:
    """32-byte key bound to this app, host and profile directory."""
    material = f"{app_id}-{socket.gethostname()}-{data_dir}"
    return hashlib.sha256(material.encode("utf-8")).digest()


class SessionStore:
    """
    Encrypted session file with a fixed validity window.

    Usage:
        store = SessionStore(settings.session_path, settings.app_id)
        store.save_session({"access_token": ..., "refresh_token": ...})
        session = store.get_session()   # None when missing/expired/corrupt
    """

    def __init__(self, path: Path, app_id: str, validity_days: int = 10):
        self.path = Path(path)
        self.validity_days = validity_days
        self._aesgcm = AESGCM(derive_key(app_id, self.path.parent))

    # =========================================================================
    # ENCRYPTION
    # =========================================================================

    def _encrypt(self, payload: Dict[str, Any]) -> Dict[str, str]:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, json.dumps(payload).encode("utf-8"), None)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return {"iv": nonce.hex(), "authTag": tag.hex(), "encrypted": ciphertext.hex()}

    def _decrypt(self, envelope: Dict[str, Any]) -> Dict[str, Any]:
        try:
            nonce = bytes.fromhex(envelope["iv"])
            tag = bytes.fromhex(envelope["authTag"])
            ciphertext = bytes.fromhex(envelope["encrypted"])
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
            return json.loads(plaintext.decode("utf-8"))
        except (KeyError, TypeError, ValueError, InvalidTag) as e:
            raise SessionError(f"Session file cannot be decrypted: {e}") from e

    # =========================================================================
    # FILE ACCESS
    # =========================================================================

    def _read(self) -> Optional[Dict[str, Any]]:
        """Decrypted file content; a corrupt file is deleted and None returned."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                envelope = json.load(f)
            if not isinstance(envelope, dict):
                raise SessionError("Session file is not an object")
            data = self._decrypt(envelope)
            if not isinstance(data, dict):
                raise SessionError("Session content is not an object")
            return data
        except (OSError, ValueError, SessionError) as e:
            logger.warning(f"Discarding unreadable session file: {e}")
            self.clear_session()
            return None

    def save_session(self, session: Dict[str, Any]) -> bool:
        """Encrypt and persist ``session``; the validity window restarts."""
        created = now_ms()
        payload = {
            "session": session,
            "expiresAt": created + self.validity_days * DAY_MS,
            "createdAt": created,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            envelope = self._encrypt(payload)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(envelope, f)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save session: {e}")
            return False
        logger.info(f"Session saved (valid {self.validity_days} days)")
        return True

    def get_session(self) -> Optional[Dict[str, Any]]:
        """The stored session, or None if missing, expired or corrupt."""
        data = self._read()
        if data is None:
            return None
        if now_ms() > int(data.get("expiresAt") or 0):
            logger.info("Stored session expired")
            self.clear_session()
            return None
        return data.get("session")

    def is_session_valid(self) -> bool:
        return self.get_session() is not None

    def clear_session(self) -> bool:
        try:
            if self.path.exists():
                self.path.unlink()
        except OSError as e:
            logger.error(f"Failed to delete session file: {e}")
            return False
        return True

    def get_expiration_time(self) -> Optional[int]:
        """Expiry as epoch milliseconds, None without a readable session."""
        data = self._read()
        return int(data["expiresAt"]) if data and data.get("expiresAt") else None

    def get_remaining_days(self) -> int:
        """Whole days left (rounded up), 0 when missing or expired."""
        expires_at = self.get_expiration_time()
        if expires_at is None:
            return 0
        remaining = expires_at - now_ms()
        if remaining <= 0:
            return 0
        return math.ceil(remaining / DAY_MS)
