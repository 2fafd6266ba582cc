"""Tests for auth/protection.py at-rest protection strategies."""

from collections.abc import Generator

import keyring
import keyring.backend
import keyring.backends.fail
import keyring.errors
import pytest
from cryptography.fernet import Fernet

from graphsession.auth.protection import (
    DEFAULT_KEYRING_USERNAME,
    FernetProtector,
    KeyringFernetProtector,
    PlaintextProtector,
    TokenCacheProtector,
    create_protector,
)
from graphsession.config_schema import TokenCacheConfig
from graphsession.core.errors import CacheCorruption, ConfigurationError, PlatformCapabilityUnsupported


class MemoryKeyring(keyring.backend.KeyringBackend):
    """In-process keyring backend."""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        self.passwords.pop((service, username), None)


class LockedKeyring(MemoryKeyring):
    """Backend whose vault refuses access."""

    def get_password(self, service: str, username: str) -> str | None:
        raise keyring.errors.KeyringLocked("vault is locked")


@pytest.fixture
def memory_keyring() -> Generator[MemoryKeyring, None, None]:
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture
def no_keyring() -> Generator[None, None, None]:
    previous = keyring.get_keyring()
    keyring.set_keyring(keyring.backends.fail.Keyring())
    yield
    keyring.set_keyring(previous)


class TestFernetProtector:
    """Tests for FernetProtector."""

    def test_round_trip(self) -> None:
        protector = FernetProtector(Fernet.generate_key())
        blob = protector.protect(b'{"Account": {}}')
        assert blob != b'{"Account": {}}'
        assert protector.unprotect(blob) == b'{"Account": {}}'

    def test_tampered_data_raises_cache_corruption(self) -> None:
        protector = FernetProtector(Fernet.generate_key())
        blob = bytearray(protector.protect(b"secret"))
        blob[-5] ^= 0x01
        with pytest.raises(CacheCorruption):
            protector.unprotect(bytes(blob))

    def test_invalid_key_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="Fernet key"):
            FernetProtector("not-a-key")

    def test_accepts_str_key(self) -> None:
        protector = FernetProtector(Fernet.generate_key().decode("ascii"))
        assert protector.is_encrypted

    def test_satisfies_protocol(self) -> None:
        assert isinstance(FernetProtector(Fernet.generate_key()), TokenCacheProtector)
        assert isinstance(PlaintextProtector(), TokenCacheProtector)


class TestKeyringFernetProtector:
    """Tests for KeyringFernetProtector."""

    def test_key_created_once_and_reused(self, memory_keyring: MemoryKeyring) -> None:
        first = KeyringFernetProtector(service="graphsession-test")
        stored = memory_keyring.passwords[("graphsession-test", DEFAULT_KEYRING_USERNAME)]

        second = KeyringFernetProtector(service="graphsession-test")

        assert memory_keyring.passwords[("graphsession-test", DEFAULT_KEYRING_USERNAME)] == stored
        assert second.unprotect(first.protect(b"cache")) == b"cache"

    def test_unsupported_without_backend(self, no_keyring: None) -> None:
        assert not KeyringFernetProtector.is_supported()
        with pytest.raises(PlatformCapabilityUnsupported) as exc_info:
            KeyringFernetProtector()
        assert exc_info.value.capability == "keyring"

    def test_locked_keyring_is_unsupported(self) -> None:
        previous = keyring.get_keyring()
        keyring.set_keyring(LockedKeyring())
        try:
            with pytest.raises(PlatformCapabilityUnsupported):
                KeyringFernetProtector()
        finally:
            keyring.set_keyring(previous)


class TestPlaintextProtector:
    def test_passthrough(self) -> None:
        protector = PlaintextProtector()
        assert not protector.is_encrypted
        assert protector.unprotect(protector.protect(b"data")) == b"data"


class TestCreateProtector:
    """Tests for create_protector()."""

    def test_plaintext(self) -> None:
        protector = create_protector(TokenCacheConfig(protection="plaintext"))
        assert isinstance(protector, PlaintextProtector)

    def test_fernet_reads_key_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        key = Fernet.generate_key().decode("ascii")
        monkeypatch.setenv("TEST_CACHE_KEY", key)

        protector = create_protector(TokenCacheConfig(protection="fernet", key_env_var="TEST_CACHE_KEY"))

        assert isinstance(protector, FernetProtector)
        assert FernetProtector(key).unprotect(protector.protect(b"x")) == b"x"

    def test_fernet_without_key_is_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TEST_CACHE_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="TEST_CACHE_KEY"):
            create_protector(TokenCacheConfig(protection="fernet", key_env_var="TEST_CACHE_KEY"))

    def test_keyring_mode_without_keyring_raises(self, no_keyring: None) -> None:
        """No silent downgrade to plaintext."""
        with pytest.raises(ConfigurationError, match="keyring is unusable"):
            create_protector(TokenCacheConfig(protection="keyring"))

    def test_keyring_mode(self, memory_keyring: MemoryKeyring) -> None:
        protector = create_protector(TokenCacheConfig(protection="keyring", keyring_service="svc"))
        assert isinstance(protector, KeyringFernetProtector)
        assert ("svc", DEFAULT_KEYRING_USERNAME) in memory_keyring.passwords
