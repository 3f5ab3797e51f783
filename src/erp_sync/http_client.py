"""
HTTPClient module for sending bearer-authenticated API requests
"""

import requests
from typing import Dict, Any, Optional
from datetime import datetime
from dataclasses import dataclass, field

from .deadline import Deadline
from .retry_policy import TransientHTTPError, is_retryable_status


class PermanentAPIError(Exception):
    """Raised when the API rejects a request in a way retrying cannot fix"""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


class UnauthorizedError(PermanentAPIError):
    """Raised on HTTP 401 so the caller can refresh its token once"""
    pass


@dataclass
class APIRequest:
    """Represents a single API request"""
    url: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    method: str = "GET"

    def with_bearer(self, token: str) -> 'APIRequest':
        """Copy of this request carrying ``token`` as its Authorization header"""
        return APIRequest(
            url=self.url,
            parameters=dict(self.parameters),
            headers={**self.headers, 'Authorization': f"Bearer {token}"},
            method=self.method
        )


@dataclass
class APIResponse:
    """Standardised API response wrapper, body kept as raw text"""
    text: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    request_timestamp: datetime = field(default_factory=datetime.now)


class HTTPClient:
    """
    Sends one request per call and classifies the outcome

    Retrying is left to RetryPolicy; this client only turns HTTP statuses into
    the exception types the policy understands.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session

    def send(self, request: APIRequest, deadline: Deadline) -> APIResponse:
        """
        Send a single HTTP request bounded by ``deadline``

        Args:
            request: APIRequest object containing request details
            deadline: Per-request deadline linked to the run deadline

        Returns:
            APIResponse for any 2xx status

        Raises:
            UnauthorizedError: On HTTP 401
            TransientHTTPError: On HTTP 5xx or 429
            PermanentAPIError: On any other non-success status
            requests.exceptions.Timeout: If the per-request deadline elapses
            RunTimeoutError: If the run deadline elapses while waiting
        """
        if self.session is None:
            self.session = requests.Session()

        request_timestamp = datetime.now()

        try:
            response = self.session.request(
                request.method,
                request.url,
                params=request.parameters or None,
                headers=request.headers,
                timeout=deadline.timeout()
            )
        except requests.exceptions.Timeout:
            deadline.raise_if_cancelled()
            raise

        status = response.status_code

        if status == 401:
            raise UnauthorizedError(status, f"401 Unauthorized for {request.url}")

        if is_retryable_status(status):
            raise TransientHTTPError(status, f"HTTP {status} for {request.url}")

        if not 200 <= status < 300:
            raise PermanentAPIError(status, f"HTTP {status} for {request.url}: {response.text}")

        return APIResponse(
            text=response.text,
            status_code=status,
            headers=dict(response.headers),
            request_timestamp=request_timestamp
        )

    def close_connection(self) -> None:
        """
        Close HTTP session and release resources
        """
        if self.session:
            self.session.close()
            self.session = None
