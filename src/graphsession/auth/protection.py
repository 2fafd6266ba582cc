"""At-rest protection strategies for the serialized token cache.

The token cache holds refresh tokens, so the bytes written to disk go
through a TokenCacheProtector chosen once, at configuration time:

- KeyringFernetProtector: Fernet (AES-128-CBC + HMAC-SHA256) with a key kept
  in the current OS user's keyring (Windows Credential Manager, macOS
  Keychain, Secret Service). The closest equivalent of user-scoped OS data
  protection.
- FernetProtector: Fernet with a key supplied by the deployment (e.g. from
  an environment variable or a secret store).
- PlaintextProtector: no encryption. Only for platforms without either of
  the above, and only when configured explicitly.

Usage:
    from graphsession.auth.protection import create_protector

    protector = create_protector(config.token_cache)
    blob = protector.protect(cache.serialize().encode("utf-8"))
"""

import os
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import keyring
import keyring.backends.fail
import keyring.errors
from cryptography.fernet import Fernet, InvalidToken

from graphsession.core.errors import (
    CacheCorruption,
    ConfigurationError,
    PlatformCapabilityUnsupported,
)
from graphsession.core.logging import get_logger

if TYPE_CHECKING:
    from graphsession.config_schema import TokenCacheConfig

logger = get_logger(__name__)

DEFAULT_KEYRING_SERVICE = "graphsession"
DEFAULT_KEYRING_USERNAME = "token-cache-key"


@runtime_checkable
class TokenCacheProtector(Protocol):
    """Turns serialized cache bytes into stored bytes and back."""

    is_encrypted: bool

    def protect(self, data: bytes) -> bytes: ...

    def unprotect(self, data: bytes) -> bytes:
        """Reverse protect(). Raises CacheCorruption if data cannot be recovered."""
        ...


class FernetProtector:
    """Authenticated encryption with a caller-supplied Fernet key."""

    is_encrypted = True

    def __init__(self, key: bytes | str):
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                "Token cache key is not a valid Fernet key (32 url-safe base64-encoded bytes). "
                "Generate one with: python -c \"from cryptography.fernet import Fernet; "
                'print(Fernet.generate_key().decode())"'
            ) from e

    def protect(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def unprotect(self, data: bytes) -> bytes:
        try:
            return self._fernet.decrypt(data)
        except InvalidToken as e:
            raise CacheCorruption(
                "Token cache could not be decrypted (wrong key, tampered or truncated file)"
            ) from e


class KeyringFernetProtector(FernetProtector):
    """Fernet encryption whose key lives in the current OS user's keyring.

    The key is generated and stored on first use, so the cache file is only
    readable by the OS account that wrote it.
    """

    def __init__(
        self,
        service: str = DEFAULT_KEYRING_SERVICE,
        username: str = DEFAULT_KEYRING_USERNAME,
    ):
        if not self.is_supported():
            raise PlatformCapabilityUnsupported(
                "No OS keyring backend is available to hold the token cache key. "
                "Install/unlock a keyring (Secret Service, Keychain, Credential Manager) "
                "or set token_cache.protection to 'fernet' with an explicit key.",
                capability="keyring",
            )
        self.service = service
        self.username = username
        super().__init__(self._load_or_create_key())

    @staticmethod
    def is_supported() -> bool:
        """Check that keyring resolved to a real backend rather than the fail/null one."""
        try:
            backend = keyring.get_keyring()
        except Exception:
            return False
        if isinstance(backend, keyring.backends.fail.Keyring):
            return False
        return "null" not in type(backend).__name__.lower()

    def _load_or_create_key(self) -> str:
        try:
            key = keyring.get_password(self.service, self.username)
            if key:
                return key

            key = Fernet.generate_key().decode("ascii")
            keyring.set_password(self.service, self.username, key)
            logger.info("Token cache key created in OS keyring", service=self.service)
            return key
        except keyring.errors.KeyringError as e:
            raise PlatformCapabilityUnsupported(
                f"OS keyring refused access to the token cache key: {e}",
                capability="keyring",
            ) from e


class PlaintextProtector:
    """Insecure passthrough: the cache file holds refresh tokens in the clear.

    Only file permissions (0600 on POSIX) protect it.
    """

    is_encrypted = False

    def protect(self, data: bytes) -> bytes:
        return data

    def unprotect(self, data: bytes) -> bytes:
        return data


def create_protector(config: "TokenCacheConfig") -> TokenCacheProtector:
    """Build the protector selected by configuration.

    Args:
        config: Token cache section of the application config

    Returns:
        A ready-to-use protector

    Raises:
        ConfigurationError: 'keyring' mode on a platform without a usable keyring,
            or 'fernet' mode without a valid key in the environment
    """
    if config.protection == "keyring":
        try:
            return KeyringFernetProtector(service=config.keyring_service)
        except PlatformCapabilityUnsupported as e:
            raise ConfigurationError(
                f"token_cache.protection is 'keyring' but the keyring is unusable: {e} "
                "Choose 'fernet' with an explicit key, or 'plaintext' for development."
            ) from e

    if config.protection == "fernet":
        key = os.environ.get(config.key_env_var, "").strip()
        if not key:
            raise ConfigurationError(
                f"token_cache.protection is 'fernet' but {config.key_env_var} is not set. "
                "Export a Fernet key in that variable or switch protection to 'keyring'."
            )
        return FernetProtector(key)

    logger.warning(
        "Token cache is stored WITHOUT encryption",
        protection=config.protection,
        hint="Use 'keyring' or 'fernet' protection outside development",
    )
    return PlaintextProtector()
