"""Pytest fixtures and configuration for graphsession tests.

Provides a scripted MSAL application, a frozen clock, a notification recorder
and token cache fixtures.
"""

from pathlib import Path
from typing import Generator

import pytest
from cryptography.fernet import Fernet

from graphsession.auth.engine import TokenAcquisitionEngine
from graphsession.auth.events import AuthEvents
from graphsession.auth.protection import FernetProtector
from graphsession.auth.token_cache import PersistentTokenCache
from graphsession.config import reset_config

from fakes import NOW, EventRecorder, FakePublicClientApp


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make MSAL retry backoff instantaneous."""
    monkeypatch.setattr("graphsession.auth.engine.MSAL_RETRY_DELAYS", [0.0, 0.0, 0.0])


@pytest.fixture
def browser_available(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("graphsession.auth.engine.system_browser_available", lambda: True)


@pytest.fixture
def no_browser(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("graphsession.auth.engine.system_browser_available", lambda: False)


@pytest.fixture
def fake_app() -> FakePublicClientApp:
    return FakePublicClientApp()


@pytest.fixture
def events() -> AuthEvents:
    return AuthEvents()


@pytest.fixture
def recorder(events: AuthEvents) -> EventRecorder:
    return EventRecorder(events)


@pytest.fixture
def engine(fake_app: FakePublicClientApp, events: AuthEvents) -> TokenAcquisitionEngine:
    """Engine wired to the fake MSAL app with the clock frozen at NOW."""
    return TokenAcquisitionEngine(
        client_id="11111111-2222-3333-4444-555555555555",
        scopes=["User.Read", "Files.ReadWrite"],
        events=events,
        app=fake_app,
        clock=lambda: NOW,
    )


@pytest.fixture
def fernet_key() -> bytes:
    return Fernet.generate_key()


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    return tmp_path / "token" / "msal_token_cache.bin"


@pytest.fixture
def token_cache(cache_path: Path, fernet_key: bytes) -> PersistentTokenCache:
    return PersistentTokenCache(cache_path, FernetProtector(fernet_key))
