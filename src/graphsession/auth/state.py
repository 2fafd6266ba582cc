"""Value types shared by the token acquisition engine and its observers."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

# IsConnected requires the token to outlive now by this margin (clock skew, latency)
CONNECTION_SAFETY_MARGIN = timedelta(minutes=1)

EXPIRED = datetime.min.replace(tzinfo=UTC)


class AuthenticationState(Enum):
    """Progress notifications of a sign-in attempt. Never persisted."""

    STARTED_INTERACTIVE = "started_interactive"
    FALLBACK_TO_DEVICE_CODE = "fallback_to_device_code"
    COMPLETED = "completed"
    FAILED = "failed"
    SIGN_OUT = "sign_out"


@dataclass(frozen=True, slots=True)
class Account:
    """A signed-in identity known to the MSAL token cache.

    Attributes:
        home_account_id: Opaque MSAL identifier ("<oid>.<tid>")
        username: Sign-in name (usually the UPN / email address)
        raw: The MSAL account mapping, passed back to MSAL as-is
    """

    home_account_id: str
    username: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_msal(cls, account: dict[str, Any]) -> "Account":
        return cls(
            home_account_id=account.get("home_account_id", ""),
            username=account.get("username", ""),
            raw=account,
        )


@dataclass(frozen=True, slots=True)
class TokenRecord:
    """An access token and the moment it stops being usable."""

    access_token: str | None
    expires_on: datetime

    @classmethod
    def empty(cls) -> "TokenRecord":
        return cls(access_token=None, expires_on=EXPIRED)

    @classmethod
    def from_msal_result(cls, result: dict[str, Any], now: datetime) -> "TokenRecord":
        """Build a record from an MSAL token response.

        MSAL reports a relative lifetime (expires_in, seconds); it is
        anchored to `now` here.
        """
        expires_in = int(result.get("expires_in", 0) or 0)
        return cls(
            access_token=result["access_token"],
            expires_on=now + timedelta(seconds=expires_in),
        )

    def is_valid(self, now: datetime) -> bool:
        """True iff there is a token and it outlives now by the safety margin."""
        return self.access_token is not None and self.expires_on > now + CONNECTION_SAFETY_MARGIN

    def __repr__(self) -> str:
        # Never render the token itself
        state = "set" if self.access_token else "none"
        return f"TokenRecord(access_token=<{state}>, expires_on={self.expires_on.isoformat()})"


@dataclass(frozen=True, slots=True)
class DeviceCodePrompt:
    """What a host must show the user during the device-code flow.

    Attributes:
        verification_url: Page the user opens on any device
        user_code: Short code to enter on that page
        message: MSAL's ready-made instruction sentence
        expires_at: When the code stops being accepted (UTC), if known
    """

    verification_url: str
    user_code: str
    message: str = ""
    expires_at: datetime | None = None

    @classmethod
    def from_flow(cls, flow: dict[str, Any]) -> "DeviceCodePrompt":
        expires_at = flow.get("expires_at")
        return cls(
            verification_url=flow.get("verification_uri") or flow.get("verification_url", ""),
            user_code=flow["user_code"],
            message=flow.get("message", ""),
            expires_at=datetime.fromtimestamp(expires_at, tz=UTC) if expires_at else None,
        )
