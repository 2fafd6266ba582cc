"""Durable, encrypted MSAL token cache.

PersistentTokenCache is an msal.SerializableTokenCache that keeps a single
file in sync with the in-memory cache. MSAL calls search()/find() before
reading and add()/modify() when it mutates the cache; those calls are wrapped
with the two access hooks:

- on_before_access(): reload from disk when the file changed since the last
  sync (or empty the cache when the file is gone)
- on_after_access(has_state_changed): write back, but only when MSAL
  reported a change

File format: the MSAL JSON serialization, passed through a
TokenCacheProtector (see graphsession.auth.protection), written to a temp
file and renamed over the target.

Limitations:
- The lock is per instance. Two processes pointing at the same file can
  still race; the last writer wins.
- No lock timeout: a hung disk blocks later cache access.
"""

import json
import os
import stat
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import msal

from graphsession.auth.protection import TokenCacheProtector
from graphsession.core.errors import CacheCorruption
from graphsession.core.logging import get_logger

logger = get_logger(__name__)


def _check_cache_shape(state: Any) -> None:
    """Raise CacheCorruption unless state is {credential_type: {key: entry}}."""
    if not isinstance(state, dict):
        raise CacheCorruption(f"Token cache root is {type(state).__name__}, expected an object")
    for credential_type, entries in state.items():
        if not isinstance(entries, dict) or not all(isinstance(e, dict) for e in entries.values()):
            raise CacheCorruption(f"Token cache section {credential_type!r} is malformed")


class PersistentTokenCache(msal.SerializableTokenCache):
    """MSAL token cache persisted to one protected file.

    Attributes:
        path: Location of the cache file
        protector: Strategy used to encrypt/decrypt the file content

    Security notes:
        - The file is created with mode 600 (owner read/write only) on POSIX
        - Corrupt, malformed or undecryptable files are treated as an empty cache; the
          only consequence is a new sign-in
    """

    def __init__(self, path: str | Path, protector: TokenCacheProtector):
        super().__init__()
        self.path = Path(path)
        self.protector = protector
        self._file_lock = threading.RLock()
        # (inode, mtime, size) of the file as last read or written by this instance.
        # Atomic replace gives every write a new inode, so coarse mtimes are fine.
        self._synced_signature: tuple[int, int, int] | None = None
        self._mutation_depth = 0

        logger.debug(
            "Token cache initialized",
            path=str(self.path),
            encrypted=protector.is_encrypted,
        )

    # ------------------------------------------------------------------
    # Access hooks
    # ------------------------------------------------------------------

    def on_before_access(self) -> None:
        """Bring the in-memory cache up to date with the file on disk."""
        with self._file_lock:
            try:
                signature = self._file_signature()
            except FileNotFoundError:
                if self._synced_signature is not None:
                    logger.info("Token cache file removed, starting empty", path=str(self.path))
                    self.deserialize(None)
                    self._synced_signature = None
                return
            except OSError as e:
                logger.warning(
                    "Cannot stat token cache file, keeping in-memory cache",
                    path=str(self.path),
                    error=str(e),
                )
                return

            if signature == self._synced_signature:
                return

            self._synced_signature = signature
            try:
                data = self.path.read_bytes()
                state = self.protector.unprotect(data).decode("utf-8")
                _check_cache_shape(json.loads(state))
                self.deserialize(state)
                logger.debug("Token cache loaded", path=str(self.path))
            except (CacheCorruption, ValueError, OSError) as e:
                # ValueError covers JSON and UTF-8 decode errors
                logger.warning(
                    "Token cache unreadable, resetting to empty (sign-in will be required)",
                    path=str(self.path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.deserialize(None)

    def on_after_access(self, has_state_changed: bool) -> None:
        """Persist the in-memory cache if MSAL changed it."""
        if not has_state_changed:
            return

        with self._file_lock:
            try:
                data = self.protector.protect(self.serialize().encode("utf-8"))
                self._write_atomically(data)
                self._synced_signature = self._file_signature()
                logger.debug("Token cache saved", path=str(self.path), size=len(data))
            except OSError as e:
                # Don't raise - the token will just need to be re-acquired next time
                logger.error(
                    "Failed to save token cache",
                    path=str(self.path),
                    error=str(e),
                )

    def _file_signature(self) -> tuple[int, int, int]:
        st = self.path.stat()
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _write_atomically(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

        if os.name != "nt":
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)

    # ------------------------------------------------------------------
    # MSAL entry points
    # ------------------------------------------------------------------

    def search(self, credential_type, **kwargs: Any):
        with self._file_lock:
            if not self._mutation_depth:
                self.on_before_access()
        return super().search(credential_type, **kwargs)

    def find(self, credential_type, **kwargs: Any):
        with self._file_lock:
            if not self._mutation_depth:
                self.on_before_access()
            return super().find(credential_type, **kwargs)

    def add(self, event, **kwargs: Any) -> None:
        self._mutate(super().add, event, **kwargs)

    def modify(self, credential_type, old_entry, new_key_value_pairs=None) -> None:
        self._mutate(super().modify, credential_type, old_entry, new_key_value_pairs)

    def _mutate(self, operation: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        # MSAL's add() calls modify() once per credential type; only the
        # outermost call syncs with the file.
        with self._file_lock:
            outermost = self._mutation_depth == 0
            if outermost:
                self.on_before_access()
            self._mutation_depth += 1
            try:
                operation(*args, **kwargs)
            finally:
                self._mutation_depth -= 1
            if outermost:
                self.on_after_access(self.has_state_changed)

    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Forget every cached identity and delete the cache file."""
        with self._file_lock:
            self.deserialize(None)
            self._synced_signature = None
            try:
                self.path.unlink(missing_ok=True)
                logger.info("Token cache cleared", path=str(self.path))
            except OSError as e:
                logger.warning(
                    "Failed to delete token cache file",
                    path=str(self.path),
                    error=str(e),
                )
