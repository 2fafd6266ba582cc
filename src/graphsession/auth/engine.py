"""MSAL sign-in state machine for Microsoft Graph.

One attempt moves through:

    silent refresh -> interactive (system browser) -> device code -> completed | failed

Sign-out is reachable from anywhere and returns to idle. Every transition is
announced through AuthEvents exactly once; the device-code prompt is
announced right after FALLBACK_TO_DEVICE_CODE.

Failures are operational, not fatal: network errors, revoked consent and
missing platform capabilities route the attempt to the next branch, and the
attempt ends in a FAILED notification rather than an exception. Only
configuration mistakes raise, at construction time.

Usage:
    from graphsession.auth.engine import TokenAcquisitionEngine

    engine = TokenAcquisitionEngine(
        client_id="your-client-id",
        scopes=["User.Read", "Files.ReadWrite"],
        token_cache=cache,
    )
    engine.events.subscribe_state(print)

    if engine.needs_sign_in():
        engine.force_interactive_sign_in()

    record = engine.acquire_token_for_current_user()
"""

import random
import threading
import time
import webbrowser
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import urlparse

import msal
import requests

from graphsession.auth.events import AuthEvents
from graphsession.auth.state import (
    Account,
    AuthenticationState,
    DeviceCodePrompt,
    TokenRecord,
)
from graphsession.core.errors import (
    ConfigurationError,
    PlatformCapabilityUnsupported,
    SilentRefreshUnavailable,
)
from graphsession.core.logging import bind_auth_attempt, get_logger

if TYPE_CHECKING:
    from graphsession.config_schema import AuthConfig

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_AUTHORITY = "https://login.microsoftonline.com/common"

# Retry configuration for MSAL network calls
MSAL_MAX_RETRIES = 3
MSAL_RETRY_DELAYS = [1.0, 2.0, 4.0]

# Interactive results carrying these errors need a different kind of user
# action; the device-code flow can still satisfy them.
UI_REQUIRED_ERRORS = frozenset({"interaction_required", "consent_required", "login_required"})


def system_browser_available() -> bool:
    """True if Python can launch a web browser on this machine."""
    try:
        webbrowser.get()
    except webbrowser.Error:
        return False
    return True


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenAcquisitionEngine:
    """Owns the current user's access token and the sign-in state machine.

    Thread-safe: token state is guarded by a lock, and concurrent callers of
    acquire_token_for_current_user() share a single interactive attempt.

    Attributes:
        client_id: Application (client) ID
        scopes: Graph permission scopes requested on every acquisition
        events: Notification fan-out for state changes and device codes
        app: The underlying msal.PublicClientApplication

    Limitations:
        Only the first account MSAL reports is used. MSAL does not promise
        an order, so a cache holding several accounts is ambiguous.
    """

    def __init__(
        self,
        client_id: str,
        scopes: list[str],
        authority: str = DEFAULT_AUTHORITY,
        redirect_uri: str | None = None,
        token_cache: msal.TokenCache | None = None,
        events: AuthEvents | None = None,
        interactive_timeout: int | None = None,
        device_code_timeout: int | None = None,
        app: Any | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the engine.

        Args:
            client_id: Application (client) ID
            scopes: Microsoft Graph API permission scopes (at least one)
            authority: Authority URL including the tenant
            redirect_uri: Optional loopback redirect URI; its port is used
                for the interactive listener
            token_cache: MSAL token cache (usually a PersistentTokenCache)
            events: Shared AuthEvents; a private one is created when omitted
            interactive_timeout: Seconds to wait for the browser sign-in
            device_code_timeout: Seconds to poll before the code's own expiry
            app: Pre-built MSAL client application (tests, custom setups)
            clock: Source of the current UTC time

        Raises:
            ConfigurationError: If client_id or scopes are empty, or the
                redirect URI is not a loopback URI
        """
        if not client_id or not client_id.strip():
            raise ConfigurationError(
                "client_id is required. "
                "Register an app in Azure Portal: https://portal.azure.com → "
                "Microsoft Entra ID → App registrations → New registration"
            )
        scopes = [s for s in (scopes or []) if s and s.strip()]
        if not scopes:
            raise ConfigurationError("At least one Microsoft Graph scope is required (e.g. 'User.Read')")

        self.client_id = client_id
        self.scopes = scopes
        self.redirect_port = self._parse_redirect_port(redirect_uri)
        self.interactive_timeout = interactive_timeout
        self.device_code_timeout = device_code_timeout
        self.events = events or AuthEvents()
        self._clock = clock

        self._token = TokenRecord.empty()
        self._state_lock = threading.Lock()
        self._sign_in_lock = threading.Lock()

        self.app = app or msal.PublicClientApplication(
            client_id=client_id,
            authority=authority,
            token_cache=token_cache,
        )

        logger.debug(
            "TokenAcquisitionEngine initialized",
            client_id=client_id[:8] + "...",
            authority=authority,
            scopes=scopes,
        )

    @classmethod
    def from_config(
        cls,
        auth: "AuthConfig",
        token_cache: msal.TokenCache | None = None,
        events: AuthEvents | None = None,
    ) -> "TokenAcquisitionEngine":
        return cls(
            client_id=auth.client_id,
            scopes=auth.scopes,
            authority=auth.authority,
            redirect_uri=auth.redirect_uri,
            token_cache=token_cache,
            events=events,
            interactive_timeout=auth.interactive_timeout_seconds,
            device_code_timeout=auth.device_code_timeout_seconds,
        )

    @staticmethod
    def _parse_redirect_port(redirect_uri: str | None) -> int | None:
        if not redirect_uri or not redirect_uri.strip():
            return None
        parsed = urlparse(redirect_uri.strip())
        if parsed.scheme != "http" or parsed.hostname not in ("localhost", "127.0.0.1", "::1"):
            raise ConfigurationError(
                f"redirect_uri '{redirect_uri}' is not a loopback URI. "
                "Public clients receive the auth code on http://localhost[:port]."
            )
        return parsed.port

    # ------------------------------------------------------------------
    # Token state
    # ------------------------------------------------------------------

    @property
    def token(self) -> TokenRecord:
        with self._state_lock:
            return self._token

    @property
    def is_connected(self) -> bool:
        """True while the current token outlives now by at least one minute."""
        return self.token.is_valid(self._clock())

    def _store_token(self, result: dict[str, Any]) -> TokenRecord:
        record = TokenRecord.from_msal_result(result, self._clock())
        with self._state_lock:
            self._token = record
        return record

    def _reset_token(self) -> None:
        with self._state_lock:
            self._token = TokenRecord.empty()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_primary_account(self) -> Account | None:
        """Return the first account in the token cache, or None."""
        accounts = self.app.get_accounts()
        if not accounts:
            return None
        if len(accounts) > 1:
            logger.warning(
                "Multiple cached accounts, using the first one",
                account_count=len(accounts),
                username=accounts[0].get("username", "unknown"),
            )
        return Account.from_msal(accounts[0])

    def needs_sign_in(self) -> bool:
        """True when there is no cached account and no usable token."""
        if self.app.get_accounts():
            return False
        return not self.is_connected

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def acquire_token_silently(self, account: Account) -> TokenRecord:
        """Get a token from the cache or by redeeming the stored refresh token.

        Args:
            account: Account to acquire the token for

        Returns:
            The new token record

        Raises:
            SilentRefreshUnavailable: No refresh credential, expired or
                revoked grant, or MSAL/network failure. The current token
                is cleared first.
        """
        logger.debug("Attempting silent token acquisition", username=account.username)
        try:
            result = self._call_with_retry(
                "Silent token acquisition",
                self.app.acquire_token_silent,
                scopes=self.scopes,
                account=account.raw,
            )
        except Exception as e:
            self._reset_token()
            raise SilentRefreshUnavailable(f"Silent token acquisition failed: {e}") from e

        if not result or "access_token" not in result:
            self._reset_token()
            error = result.get("error") if result else None
            logger.debug(
                "Silent acquisition failed",
                error=error,
                description=result.get("error_description") if result else None,
            )
            raise SilentRefreshUnavailable(
                "No usable cached token or refresh token for this account",
                error_code=error,
            )

        record = self._store_token(result)
        logger.debug("Token acquired silently (from cache/refresh)")
        self.events.emit_state(AuthenticationState.COMPLETED)
        return record

    def force_interactive_sign_in(self) -> None:
        """Sign the user in with the browser, falling back to a device code.

        Never raises. The outcome is announced as COMPLETED or FAILED and is
        visible through is_connected.
        """
        with bind_auth_attempt():
            self.events.emit_state(AuthenticationState.STARTED_INTERACTIVE)
            logger.info("Interactive sign-in started", scopes=self.scopes)

            try:
                result = self._sign_in_with_fallback()
            except Exception as e:
                logger.exception("Sign-in failed with an unexpected error", error=str(e))
                result = {"error": "unexpected_error", "error_description": str(e)}

            if "access_token" in result:
                self._store_token(result)
                logger.info(
                    "Authentication successful",
                    username=result.get("id_token_claims", {}).get("preferred_username", "unknown"),
                )
                self.events.emit_state(AuthenticationState.COMPLETED)
                return

            self._reset_token()
            self._log_failure(result)
            self.events.emit_state(AuthenticationState.FAILED)

    def acquire_token_for_current_user(self) -> TokenRecord:
        """Return a usable token, signing in if needed. Called before every Graph request.

        Order: cached account + silent refresh, then interactive sign-in
        when the engine is still not connected. Never raises; on failure the
        returned record is empty and FAILED has been announced.
        """
        try:
            with bind_auth_attempt():
                account = self.get_primary_account()
                if account is not None:
                    try:
                        return self.acquire_token_silently(account)
                    except SilentRefreshUnavailable as e:
                        logger.info(
                            "Silent refresh unavailable, user interaction required",
                            error_code=e.error_code,
                        )

                with self._sign_in_lock:
                    # Another thread may have completed a sign-in while we waited
                    if not self.is_connected:
                        self.force_interactive_sign_in()
        except Exception as e:
            logger.exception("Token acquisition failed unexpectedly", error=str(e))
            self._reset_token()
            self.events.emit_state(AuthenticationState.FAILED)

        return self.token

    def sign_out(self) -> None:
        """Remove every cached account and forget the current token."""
        self._reset_token()
        accounts = self.app.get_accounts()
        for account in accounts:
            self.app.remove_account(account)

        logger.info("Signed out", removed_accounts=len(accounts))
        self.events.emit_state(AuthenticationState.SIGN_OUT)

    # ------------------------------------------------------------------
    # Flow internals
    # ------------------------------------------------------------------

    def _sign_in_with_fallback(self) -> dict[str, Any]:
        try:
            result = self._acquire_interactive()
        except (PlatformCapabilityUnsupported, webbrowser.Error) as e:
            logger.info("Interactive sign-in unavailable, falling back to device code", reason=str(e))
            return self._acquire_with_device_code()

        if result.get("error") in UI_REQUIRED_ERRORS:
            logger.info(
                "Interactive sign-in needs further user action, falling back to device code",
                error=result.get("error"),
            )
            return self._acquire_with_device_code()
        return result

    def _acquire_interactive(self) -> dict[str, Any]:
        if not system_browser_available():
            raise PlatformCapabilityUnsupported(
                "No system browser is available for interactive sign-in",
                capability="browser",
            )

        kwargs: dict[str, Any] = {}
        if self.redirect_port is not None:
            kwargs["port"] = self.redirect_port
        if self.interactive_timeout is not None:
            kwargs["timeout"] = self.interactive_timeout

        return self.app.acquire_token_interactive(
            scopes=self.scopes,
            prompt="select_account",
            **kwargs,
        ) or {}

    def _acquire_with_device_code(self) -> dict[str, Any]:
        flow = self._call_with_retry(
            "Device flow initiation",
            self.app.initiate_device_flow,
            scopes=self.scopes,
        )
        if "user_code" not in flow:
            return {
                "error": flow.get("error", "device_flow_initiation_failed"),
                "error_description": flow.get(
                    "error_description", "Unknown error during flow initiation"
                ),
            }

        if self.device_code_timeout is not None:
            # MSAL polls until flow["expires_at"]; shortening it bounds the wait
            deadline = time.time() + self.device_code_timeout
            flow["expires_at"] = min(flow.get("expires_at", deadline), deadline)

        prompt = DeviceCodePrompt.from_flow(flow)
        self.events.emit_state(AuthenticationState.FALLBACK_TO_DEVICE_CODE)
        self.events.emit_device_code(prompt)
        logger.info(
            "Device code issued, waiting for user",
            verification_url=prompt.verification_url,
            expires_at=prompt.expires_at.isoformat() if prompt.expires_at else None,
        )

        return self._call_with_retry(
            "Device code polling",
            self.app.acquire_token_by_device_flow,
            flow,
        )

    def _call_with_retry(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call an MSAL method, retrying transient network errors with jittered backoff."""
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except requests.exceptions.RequestException as e:
                attempt += 1
                if attempt >= MSAL_MAX_RETRIES:
                    logger.error(f"{operation} failed after retries", max_retries=MSAL_MAX_RETRIES)
                    raise
                delay = MSAL_RETRY_DELAYS[attempt - 1]
                actual_delay = delay + delay * 0.2 * (2 * random.random() - 1)
                logger.warning(
                    f"{operation} failed, retrying",
                    attempt=attempt,
                    max_retries=MSAL_MAX_RETRIES,
                    delay=actual_delay,
                    error=str(e),
                )
                time.sleep(actual_delay)

    def _log_failure(self, result: dict[str, Any]) -> None:
        error = result.get("error", "unknown_error")
        description = result.get("error_description", "Authentication failed")

        if error in ("authorization_pending", "expired_token", "code_expired"):
            logger.error("Authentication timed out waiting for user", error=error)
        elif error == "authorization_declined":
            logger.error("User declined authentication")
        elif "AADSTS7000218" in description:
            logger.error(
                "Public client flows not enabled",
                hint="App registrations → Your app → Authentication → Allow public client flows",
            )
        else:
            logger.error("Authentication failed", error=error, description=description)
