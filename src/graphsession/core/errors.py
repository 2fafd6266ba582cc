"""Custom exception types for graphsession.

Only configuration errors are meant to reach the host application. Everything
else in this module is raised and recovered inside the package:
- SilentRefreshUnavailable: escalated to interactive sign-in
- PlatformCapabilityUnsupported: routed to a documented fallback (device code)
- AuthenticationFailed: converted to a FAILED state notification
- CacheCorruption: converted to an empty token cache
"""


class GraphSessionError(Exception):
    """Base exception for all graphsession errors."""

    pass


class ConfigurationError(GraphSessionError):
    """Raised when required settings (client id, scopes, cache key) are missing or invalid.

    Fatal at construction time; never raised once a session is running.
    """

    pass


class ConfigLoadError(ConfigurationError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class ConfigValidationError(ConfigurationError):
    """Raised when config.yaml fails Pydantic validation."""

    pass


class SilentRefreshUnavailable(GraphSessionError):
    """Raised when a token cannot be refreshed without user interaction.

    Attributes:
        error_code: MSAL error code (e.g. 'invalid_grant'), if one was returned
    """

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


class PlatformCapabilityUnsupported(GraphSessionError):
    """Raised when the current platform lacks a capability (system browser, OS keyring).

    Attributes:
        capability: Short name of the missing capability
    """

    def __init__(self, message: str, capability: str):
        super().__init__(message)
        self.capability = capability


class AuthenticationFailed(GraphSessionError):
    """Raised when no access token could be obtained for an outbound request."""

    pass


class CacheCorruption(GraphSessionError):
    """Raised when the on-disk token cache cannot be decrypted or parsed."""

    pass


class GraphAPIError(GraphSessionError):
    """Raised when Microsoft Graph API returns an error.

    Attributes:
        status_code: HTTP status code from the API
        error_code: Error code from Graph API response (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class RateLimitExceeded(GraphAPIError):
    """Raised when Graph keeps answering 429 after all retries."""

    def __init__(self, message: str, retry_after: str | None = None):
        super().__init__(message, status_code=429, error_code="TooManyRequests")
        self.retry_after = retry_after
