"""Authentication for Microsoft Graph.

Provides the MSAL sign-in state machine and the encrypted on-disk token cache.

Usage:
    from graphsession.auth import (
        PersistentTokenCache,
        TokenAcquisitionEngine,
        create_protector,
    )

    cache = PersistentTokenCache("data/token/msal_token_cache.bin", create_protector(config.token_cache))
    engine = TokenAcquisitionEngine.from_config(config.auth, token_cache=cache)

    record = engine.acquire_token_for_current_user()
"""

from graphsession.auth.engine import TokenAcquisitionEngine
from graphsession.auth.events import AuthEvents
from graphsession.auth.protection import (
    FernetProtector,
    KeyringFernetProtector,
    PlaintextProtector,
    TokenCacheProtector,
    create_protector,
)
from graphsession.auth.state import (
    Account,
    AuthenticationState,
    DeviceCodePrompt,
    TokenRecord,
)
from graphsession.auth.token_cache import PersistentTokenCache

__all__ = [
    "Account",
    "AuthEvents",
    "AuthenticationState",
    "DeviceCodePrompt",
    "FernetProtector",
    "KeyringFernetProtector",
    "PersistentTokenCache",
    "PlaintextProtector",
    "TokenAcquisitionEngine",
    "TokenCacheProtector",
    "TokenRecord",
    "create_protector",
]
