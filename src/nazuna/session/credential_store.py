"""
File-backed authentication material for one session.

Layout of a credential directory::

    <auth_dir>/creds.json                 identity and registration state
    <auth_dir>/keys/<category>-<id>.json  signal keys, sessions, sender keys

``creds.json`` is rewritten on every credential-rotation event. Writes go
through a temp file in the same directory followed by ``os.replace`` so a
crash mid-write never leaves a truncated file behind.
Writes never create the directory itself: once it has been purged only
``ensure_directory`` brings it back.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from nazuna.errors import StartupError
from nazuna.util.logger import get_logger

logger = get_logger("credential_store")

CREDS_FILENAME = "creds.json"
KEYS_DIRNAME = "keys"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _safe_name(value: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", value)


@dataclass
class AuthState:
    """Credentials loaded at bootstrap plus access to the key files."""

    creds: Dict[str, Any] = field(default_factory=dict)
    store: Optional["CredentialStore"] = None

    @property
    def registered(self) -> bool:
        return bool(self.creds.get("registered", False))

    def read_keys(self, category: str, key_ids: Iterable[str]) -> Dict[str, Any]:
        if self.store is None:
            return {}
        return {key_id: value for key_id in key_ids if (value := self.store.read_key(category, key_id)) is not None}

    def write_keys(self, category: str, values: Dict[str, Any]) -> None:
        if self.store is not None:
            self.store.write_keys(category, values)


class CredentialStore:
    """Owns one session's credential directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    @property
    def creds_path(self) -> Path:
        return self.directory / CREDS_FILENAME

    @property
    def keys_dir(self) -> Path:
        return self.directory / KEYS_DIRNAME

    def exists(self) -> bool:
        return self.directory.exists()

    def ensure_directory(self) -> None:
        """Create the credential directory, raising :class:`StartupError` on failure."""
        try:
            self.keys_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StartupError(f"Cannot create credential directory {self.directory}: {exc}") from exc

    # --------------------------
    # Private helpers
    # --------------------------
    def _atomic_write_json(self, path: Path, data: Any) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp", prefix=".nazuna_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                fd = -1  # fdopen took ownership of the descriptor
                json.dump(data, f)
            os.replace(tmp_path, path)
        except BaseException:
            if fd >= 0:
                os.close(fd)
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _read_json(self, path: Path) -> Optional[Any]:
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("[CREDENTIAL STORE] Unreadable credential file %s: %s", path, exc)
            return None

    def _key_path(self, category: str, key_id: str) -> Path:
        return self.keys_dir / f"{_safe_name(category)}-{_safe_name(key_id)}.json"

    def _writable(self) -> bool:
        if self.directory.is_dir():
            return True
        # purged while a write was still queued; only ensure_directory recreates it
        logger.debug("[CREDENTIAL STORE] Skipping write, %s no longer exists", self.directory)
        return False

    # --------------------------
    # Public API
    # --------------------------
    def load(self) -> AuthState:
        """Load ``creds.json``; a missing or corrupt file starts a fresh pairing."""
        creds = self._read_json(self.creds_path)
        if not isinstance(creds, dict):
            if self.creds_path.exists():
                logger.warning("[CREDENTIAL STORE] Discarding malformed credentials in %s", self.creds_path)
            creds = {}
        return AuthState(creds=creds, store=self)

    def save_creds(self, creds: Dict[str, Any]) -> None:
        """Persist rotated credentials, merged over what is already on disk."""
        with self._lock:
            if not self._writable():
                return
            current = self._read_json(self.creds_path)
            merged = current if isinstance(current, dict) else {}
            merged.update(creds)
            self._atomic_write_json(self.creds_path, merged)
        logger.debug("[CREDENTIAL STORE] Saved credentials to %s", self.creds_path)

    def read_key(self, category: str, key_id: str) -> Optional[Any]:
        return self._read_json(self._key_path(category, key_id))

    def write_keys(self, category: str, values: Dict[str, Any]) -> None:
        """Write key material; a ``None`` value deletes that key."""
        with self._lock:
            if not self._writable():
                return
            self.keys_dir.mkdir(exist_ok=True)
            for key_id, value in values.items():
                path = self._key_path(category, key_id)
                if value is None:
                    path.unlink(missing_ok=True)
                else:
                    self._atomic_write_json(path, value)

    def purge(self) -> None:
        """Delete the whole credential directory, forcing a fresh pairing."""
        with self._lock:
            shutil.rmtree(self.directory, ignore_errors=True)
        logger.info("[CREDENTIAL STORE] Removed credential directory %s", self.directory)
