"""Pre-authenticated Microsoft Graph HTTP client.

Every outgoing request asks the TokenAcquisitionEngine for a token right
before it is sent, so a request made while signed out starts the sign-in
flow, and a request made while signed in only costs a cache lookup.

Also provides:
- Retry with exponential backoff and jitter for 5xx, 429, timeouts and
  connection errors
- Error mapping to GraphAPIError / RateLimitExceeded
- @odata.nextLink pagination and binary downloads

Usage:
    from graphsession.graph.client import GraphClient

    client = GraphClient(engine)
    me = client.get("/me")
    print(me["displayName"])
"""

import random
import time
from typing import TYPE_CHECKING, Any

import requests

from graphsession.core.errors import AuthenticationFailed, GraphAPIError, RateLimitExceeded
from graphsession.core.logging import get_logger

if TYPE_CHECKING:
    from graphsession.auth.engine import TokenAcquisitionEngine

logger = get_logger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAYS = [1.0, 2.0, 4.0]
DEFAULT_TIMEOUT = 30.0


class GraphClient:
    """Microsoft Graph API client authenticated through a TokenAcquisitionEngine.

    Attributes:
        engine: Source of bearer tokens
        base_url: Microsoft Graph API base URL
        max_retries: Maximum number of retry attempts
        retry_delays: Delay (seconds) before each retry
        timeout: Default per-request timeout (seconds)
    """

    def __init__(
        self,
        engine: "TokenAcquisitionEngine",
        base_url: str = GRAPH_BASE_URL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delays: list[float] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self.engine = engine
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delays = retry_delays or DEFAULT_RETRY_DELAYS
        self.timeout = timeout
        self.session = session or requests.Session()

        logger.debug(
            "GraphClient initialized",
            base_url=self.base_url,
            max_retries=self.max_retries,
        )

    def close(self) -> None:
        self.session.close()

    def _get_headers(self, accept: str = "application/json") -> dict[str, str]:
        """Build request headers with a just-in-time bearer token.

        Raises:
            AuthenticationFailed: If no token could be obtained
        """
        record = self.engine.acquire_token_for_current_user()
        if not record.access_token:
            raise AuthenticationFailed(
                "Cannot call Microsoft Graph: sign-in did not produce an access token. "
                "Run 'python -m graphsession sign-in' or check the FAILED notification."
            )

        return {
            "Authorization": f"Bearer {record.access_token}",
            "Accept": accept,
        }

    def _make_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint  # Already a full URL (e.g., @odata.nextLink)
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return self.base_url + endpoint

    def _handle_error_response(self, response: requests.Response, method: str, endpoint: str) -> None:
        """Raise the exception matching an error response."""
        try:
            error_info = response.json().get("error", {})
            error_code = error_info.get("code", "unknown")
            error_message = error_info.get("message", response.text)
        except ValueError:
            error_code = "unknown"
            error_message = response.text or f"HTTP {response.status_code}"

        logger.error(
            "Graph API error",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message[:200],
        )

        if response.status_code == 401:
            raise GraphAPIError(
                f"Authentication failed (401): {error_message}. "
                "The token was rejected; sign out and sign in again.",
                status_code=401,
                error_code=error_code,
            )
        if response.status_code == 403:
            raise GraphAPIError(
                f"Permission denied (403): {error_message}. "
                "Check that the required scopes are configured and consented.",
                status_code=403,
                error_code=error_code,
            )
        if response.status_code == 404:
            raise GraphAPIError(
                f"Resource not found (404): {error_message}.",
                status_code=404,
                error_code=error_code,
            )
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitExceeded(
                f"Rate limit exceeded (429). Retry after: {retry_after or 'unknown'} seconds.",
                retry_after=retry_after,
            )
        raise GraphAPIError(
            f"Graph API error ({response.status_code}): {error_message}",
            status_code=response.status_code,
            error_code=error_code,
        )

    def _should_retry(self, response: requests.Response, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return response.status_code == 429 or 500 <= response.status_code < 600

    def _get_retry_delay(self, response: requests.Response | None, attempt: int) -> float:
        """Delay before the next attempt, honoring Retry-After on 429, with ±20% jitter."""
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    base_delay = float(retry_after)
                    return base_delay + base_delay * 0.2 * (2 * random.random() - 1)
                except ValueError:
                    pass

        base_delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)]
        return base_delay + base_delay * 0.2 * (2 * random.random() - 1)

    def send(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
        accept: str = "application/json",
    ) -> requests.Response:
        """Send a request with retries and return the successful response.

        Raises:
            AuthenticationFailed: When no token could be obtained
            GraphAPIError: For non-retryable or exhausted API errors
            RateLimitExceeded: When 429 persists after all retries
        """
        url = self._make_url(endpoint)
        timeout = timeout or self.timeout
        last_response: requests.Response | None = None

        for attempt in range(self.max_retries + 1):
            headers = self._get_headers(accept=accept)

            logger.debug(
                "Graph API request",
                method=method,
                endpoint=endpoint,
                attempt=attempt + 1,
                params=list(params.keys()) if params else None,
            )

            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=timeout,
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt < self.max_retries:
                    delay = self._get_retry_delay(None, attempt)
                    logger.warning(
                        "Graph API request failed, retrying",
                        method=method,
                        endpoint=endpoint,
                        attempt=attempt + 1,
                        error=str(e),
                        delay=delay,
                    )
                    time.sleep(delay)
                    continue
                raise GraphAPIError(
                    f"Request to {endpoint} failed after {self.max_retries} retries: {e}. "
                    "Check your internet connection and try again.",
                    status_code=None,
                ) from e

            last_response = response
            if response.status_code < 400:
                return response

            if self._should_retry(response, attempt):
                delay = self._get_retry_delay(response, attempt)
                logger.warning(
                    "Retrying Graph API request",
                    method=method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=delay,
                )
                time.sleep(delay)
                continue

            self._handle_error_response(response, method, endpoint)

        raise GraphAPIError(
            f"Request to {endpoint} failed after {self.max_retries} retries",
            status_code=last_response.status_code if last_response is not None else None,
        )

    def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Make a JSON request to the Graph API and return the parsed body."""
        response = self.send(method, endpoint, params=params, json=json, timeout=timeout)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return self.request("GET", endpoint, params=params, timeout=timeout)

    def post(
        self,
        endpoint: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        return self.request("POST", endpoint, params=params, json=json, timeout=timeout)

    def delete(self, endpoint: str, timeout: float | None = None) -> dict[str, Any]:
        return self.request("DELETE", endpoint, timeout=timeout)

    def get_bytes(self, endpoint: str, timeout: float | None = None) -> bytes:
        """Download a binary resource (file or thumbnail content).

        Graph answers content requests with a redirect to a pre-authenticated
        download URL; requests follows it and drops the Authorization header
        when the host changes.
        """
        response = self.send("GET", endpoint, timeout=timeout, accept="*/*")
        return response.content

    def get_user_info(self) -> dict[str, Any]:
        """Get the signed-in user's profile (id, displayName, mail, userPrincipalName)."""
        return self.get("/me", params={"$select": "id,displayName,mail,userPrincipalName"})

    def paginate(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_pages: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch all pages of a collection by following @odata.nextLink.

        Args:
            endpoint: API endpoint path
            params: Query parameters for the first page (nextLink carries them after)
            max_pages: Maximum number of pages to fetch (None for unlimited)

        Returns:
            List of all items across all pages
        """
        all_items: list[dict[str, Any]] = []
        next_url: str | None = endpoint
        page_count = 0

        while next_url:
            if max_pages and page_count >= max_pages:
                logger.debug(
                    "Pagination stopped at max_pages",
                    max_pages=max_pages,
                    items_collected=len(all_items),
                )
                break

            response = self.get(next_url, params=params if page_count == 0 else None)
            all_items.extend(response.get("value", []))
            next_url = response.get("@odata.nextLink")
            page_count += 1

        logger.debug(
            "Pagination complete",
            endpoint=endpoint,
            total_pages=page_count,
            total_items=len(all_items),
        )
        return all_items
