"""
TokenManager module for OAuth client-credentials token acquisition and refresh
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests

from .deadline import Deadline
from .retry_policy import RetryPolicy, TransientHTTPError, is_retryable_status

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when a bearer token cannot be obtained or is rejected by the API"""
    pass


@dataclass(frozen=True)
class TokenCredentials:
    """Client-credentials grant submitted to the token endpoint"""
    token_url: str
    client_id: str
    client_secret: str
    scope: str
    grant_type: str = "client_credentials"

    def form_data(self) -> dict:
        return {
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'scope': self.scope,
            'grant_type': self.grant_type
        }


@dataclass
class AccessToken:
    """Bearer token value with its absolute expiry (UTC)"""
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        return now < self.expires_at - margin


class TokenManager:
    """
    Owns the bearer token for one tenant run

    ``ensure_token`` is idempotent: while the held token is valid beyond the
    refresh margin no network call is made. Callers should read ``token``
    again after every ``ensure_token`` call instead of keeping their own copy.
    """

    REFRESH_MARGIN = timedelta(minutes=3)

    def __init__(self, session: Optional[requests.Session] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 request_timeout_seconds: float = 30.0,
                 clock: Optional[Callable[[], datetime]] = None):
        self.session = session or requests.Session()
        self.retry_policy = retry_policy or RetryPolicy()
        self.request_timeout_seconds = request_timeout_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.token: Optional[AccessToken] = None

    def needs_refresh(self) -> bool:
        """True when no token is held or it expires within the refresh margin"""
        return self.token is None or not self.token.is_valid(self._clock(), self.REFRESH_MARGIN)

    def ensure_token(self, credentials: TokenCredentials, deadline: Deadline,
                     force: bool = False) -> AccessToken:
        """
        Return a token that is valid beyond the refresh margin

        Args:
            credentials: Client-credentials grant for the tenant
            deadline: Caller's deadline; each attempt runs under a shorter child
            force: Acquire a new token even if the held one looks valid

        Returns:
            The current AccessToken

        Raises:
            AuthenticationError: Non-retryable rejection or malformed token response
            RunTimeoutError: If the caller's deadline elapses
            Exception: Last transient fault once the retry budget is exhausted
        """
        if not force and not self.needs_refresh():
            return self.token

        logger.info("Fetching new access token...")
        self.token = self.retry_policy.execute(
            lambda: self._request_token(credentials, deadline.child(self.request_timeout_seconds)),
            deadline,
            "token request"
        )
        logger.info(f"Access token acquired, expires at {self.token.expires_at.isoformat()}")
        return self.token

    def _request_token(self, credentials: TokenCredentials, deadline: Deadline) -> AccessToken:
        """Single token acquisition attempt bounded by ``deadline``"""
        try:
            response = self.session.post(
                credentials.token_url,
                data=credentials.form_data(),
                timeout=deadline.timeout()
            )
        except requests.exceptions.Timeout:
            deadline.raise_if_cancelled()
            raise

        if is_retryable_status(response.status_code):
            raise TransientHTTPError(
                response.status_code,
                f"Token request failed with {response.status_code}. Body: {response.text}"
            )

        if not response.ok:
            raise AuthenticationError(
                f"Token request rejected with {response.status_code}: {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AuthenticationError(f"Token response is not valid JSON: {e}")

        access_token = payload.get('access_token') if isinstance(payload, dict) else None
        if not access_token or not str(access_token).strip():
            raise AuthenticationError("Token response did not contain an access_token.")

        try:
            lifetime = int(payload['expires_in'])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError(f"Token response has an invalid expires_in: {payload.get('expires_in')!r}")

        if lifetime <= 0:
            raise AuthenticationError(f"Token response has a non-positive expires_in: {lifetime}")

        return AccessToken(value=access_token, expires_at=self._clock() + timedelta(seconds=lifetime))
