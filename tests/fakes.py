"""Test doubles and sample data shared by the test modules."""

import time
from datetime import UTC, datetime
from typing import Any

from graphsession.auth.events import AuthEvents
from graphsession.auth.state import AuthenticationState, DeviceCodePrompt

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

ACCOUNT = {
    "home_account_id": "uid-1.tenant-1",
    "environment": "login.microsoftonline.com",
    "realm": "tenant-1",
    "local_account_id": "uid-1",
    "username": "player@contoso.com",
    "authority_type": "MSSTS",
}


def token_result(
    access_token: str = "access-token-1",
    expires_in: int = 3600,
    username: str = "player@contoso.com",
) -> dict[str, Any]:
    """Build an MSAL-style successful token response."""
    return {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "id_token_claims": {"preferred_username": username},
    }


def device_flow(expires_in: int = 900) -> dict[str, Any]:
    """Build an MSAL-style device flow mapping."""
    return {
        "user_code": "ABCD-1234",
        "device_code": "device-code-xyz",
        "verification_uri": "https://microsoft.com/devicelogin",
        "expires_in": expires_in,
        "expires_at": time.time() + expires_in,
        "interval": 5,
        "message": "To sign in, use a web browser to open https://microsoft.com/devicelogin",
    }


class FakePublicClientApp:
    """Scripted replacement for msal.PublicClientApplication.

    Each *_result attribute is returned by the matching MSAL method, or
    raised if it is an exception. Successful interactive / device-code
    results add ACCOUNT to the account list, as MSAL would.
    """

    def __init__(self) -> None:
        self.accounts: list[dict[str, Any]] = []
        self.silent_result: Any = None
        self.interactive_result: Any = token_result()
        self.device_flow_result: Any = device_flow()
        self.device_token_result: Any = token_result(access_token="device-token")
        self.calls: list[str] = []
        self.interactive_kwargs: dict[str, Any] = {}
        self.last_flow: dict[str, Any] | None = None

    @staticmethod
    def _resolve(value: Any) -> Any:
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, list):
            item = value.pop(0)
            return FakePublicClientApp._resolve(item)
        return value

    def _sign_in(self, result: Any) -> Any:
        if isinstance(result, dict) and "access_token" in result and ACCOUNT not in self.accounts:
            self.accounts.append(dict(ACCOUNT))
        return result

    def get_accounts(self) -> list[dict[str, Any]]:
        return list(self.accounts)

    def acquire_token_silent(self, scopes: list[str], account: dict[str, Any]) -> Any:
        self.calls.append("silent")
        return self._resolve(self.silent_result)

    def acquire_token_interactive(self, scopes: list[str], prompt: str | None = None, **kwargs: Any) -> Any:
        self.calls.append("interactive")
        self.interactive_kwargs = kwargs
        return self._sign_in(self._resolve(self.interactive_result))

    def initiate_device_flow(self, scopes: list[str]) -> Any:
        self.calls.append("initiate_device_flow")
        return dict(self._resolve(self.device_flow_result))

    def acquire_token_by_device_flow(self, flow: dict[str, Any]) -> Any:
        self.calls.append("device_flow")
        self.last_flow = flow
        return self._sign_in(self._resolve(self.device_token_result))

    def remove_account(self, account: dict[str, Any]) -> None:
        self.calls.append("remove_account")
        self.accounts.remove(account)


class EventRecorder:
    """Collects every notification emitted through an AuthEvents instance."""

    def __init__(self, events: AuthEvents) -> None:
        self.states: list[AuthenticationState] = []
        self.prompts: list[DeviceCodePrompt] = []
        self.timeline: list[Any] = []
        events.subscribe_state(self._on_state)
        events.subscribe_device_code(self._on_prompt)

    def _on_state(self, state: AuthenticationState) -> None:
        self.states.append(state)
        self.timeline.append(state)

    def _on_prompt(self, prompt: DeviceCodePrompt) -> None:
        self.prompts.append(prompt)
        self.timeline.append(prompt)

