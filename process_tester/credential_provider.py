# process_tester/credential_provider.py
"""
Credential Provider

OAuth2 client-credentials bearer token source with an expiry-aware cache.

✅ One cached token, replaced wholesale on refresh
✅ All cache reads/writes serialized by a single lock, so concurrent
   executions trigger at most one token fetch at a time
✅ Refresh when less than ``refresh_margin_s`` (60s) remain
✅ Form-encoded or JSON token request body
✅ No internal retries: failures surface as CredentialError
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

import httpx

from process_tester.process_types import CachedToken, CredentialError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_S = 3600
DEFAULT_REFRESH_MARGIN_S = 60


class CredentialProvider:
    """Cached bearer token source shared by all executions."""

    def __init__(
        self,
        auth_url: str,
        client_id: Optional[str],
        client_secret: Optional[str],
        client: Optional[httpx.Client] = None,
        body_format: str = "form",
        default_ttl_s: int = DEFAULT_TOKEN_TTL_S,
        refresh_margin_s: int = DEFAULT_REFRESH_MARGIN_S,
        timeout_s: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            auth_url: Token endpoint
            client_id / client_secret: Client credentials
            client: HTTP client used for the token call (created when omitted)
            body_format: "form" (grant_type=client_credentials&...) or "json"
            default_ttl_s: Lifetime assumed when the response has no expires_in
            refresh_margin_s: Refresh this many seconds before expiry
            clock: Seconds-since-epoch source (injectable for tests)
        """
        self.auth_url = auth_url
        self.client_id = client_id
        self._client_secret = client_secret
        self.body_format = body_format
        self.default_ttl_s = default_ttl_s
        self.refresh_margin_s = refresh_margin_s
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_s))

        self._lock = threading.Lock()
        self._cached: Optional[CachedToken] = None

    # ==================== Public API ====================

    def get_token(self) -> str:
        """Cached token while it is valid for at least the refresh margin, else a fresh one."""
        with self._lock:
            if self._is_valid(self._cached):
                logger.debug("Using cached access token")
                return self._cached.token
            self._cached = self._fetch_token()
            return self._cached.token

    def force_refresh(self) -> str:
        """Always fetch a new token."""
        with self._lock:
            logger.info("Forcing access token refresh")
            self._cached = self._fetch_token()
            return self._cached.token

    def cached_token(self) -> Optional[CachedToken]:
        with self._lock:
            return self._cached

    def seconds_until_expiry(self) -> int:
        cached = self.cached_token()
        if cached is None:
            return 0
        return max(0, int(cached.expires_at - self._clock()))

    def auth_headers(self) -> Dict[str, str]:
        """Bearer Authorization header plus a JSON content type."""
        return {
            "Authorization": f"Bearer {self.get_token()}",
            "Content-Type": "application/json",
        }

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ==================== Internals ====================

    def _is_valid(self, cached: Optional[CachedToken]) -> bool:
        if cached is None or not cached.token:
            return False
        return self._clock() <= cached.expires_at - self.refresh_margin_s

    def _request_kwargs(self) -> Dict[str, object]:
        if self.body_format == "json":
            return {"json": {"client_id": self.client_id, "client_secret": self._client_secret}}
        return {
            "data": {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self._client_secret,
            }
        }

    def _fetch_token(self) -> CachedToken:
        if not self.client_id:
            raise CredentialError("Client ID not configured. Set PROCESS_TESTER_CLIENT_ID.")
        if not self._client_secret:
            raise CredentialError("Client secret not configured. Set PROCESS_TESTER_CLIENT_SECRET.")
        if not self.auth_url:
            raise CredentialError("Auth URL not configured. Set PROCESS_TESTER_AUTH_URL.")

        logger.info(f"Fetching OAuth2 token with client_id: {self.client_id}")
        try:
            resp = self._client.post(self.auth_url, **self._request_kwargs())
        except httpx.HTTPError as e:
            raise CredentialError(f"Cannot obtain OAuth2 token: {e}") from e

        if not resp.is_success:
            raise CredentialError(f"Failed to obtain OAuth2 token: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise CredentialError(f"Token response is not valid JSON: {e}") from e

        if not isinstance(data, dict) or not data.get("access_token"):
            raise CredentialError("No access_token in token response")

        raw_expires = data.get("expires_in")
        try:
            expires_in = self.default_ttl_s if raw_expires is None else int(raw_expires)
        except (TypeError, ValueError):
            expires_in = self.default_ttl_s

        token = CachedToken(token=str(data["access_token"]), expires_at=self._clock() + expires_in)
        logger.info(f"OAuth2 token obtained successfully, expires in {expires_in} seconds")
        return token
