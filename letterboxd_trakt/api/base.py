"""
Base API client class for Letterboxd Trakt Sync.
"""

from typing import Optional, Dict, Any
from dataclasses import dataclass
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


# Fallback messages when the remote service sends no error text
DEFAULT_STATUS_MESSAGES = {
    401: "Access token invalid or expired",
    403: "Access forbidden for this token",
    404: "Not found",
    429: "Rate limit exceeded",
}


@dataclass
class APIError(Exception):
    """Custom exception for API errors."""
    message: str
    status_code: Optional[int] = None
    response_data: Optional[Any] = None

    def __str__(self) -> str:
        if self.status_code:
            return f"API Error {self.status_code}: {self.message}"
        return f"API Error: {self.message}"


class NotAuthenticatedError(APIError):
    """Raised when a call is attempted without a bearer credential."""


class AuthenticationError(APIError):
    """The remote service rejected the bearer credential (401/403)."""


class ThrottledError(APIError):
    """The remote service answered 429 Too Many Requests."""


def error_message_from(error_data: Any, status_code: int, fallback: str) -> str:
    """
    Pick the most specific human readable message from an error body.

    Args:
        error_data: Decoded error body (dict, list or text)
        status_code: HTTP status code
        fallback: Message to use when nothing better is available

    Returns:
        Error message
    """
    if isinstance(error_data, dict):
        for key in ("error_description", "message", "error"):
            value = error_data.get(key)
            if isinstance(value, str) and value:
                return value
    return DEFAULT_STATUS_MESSAGES.get(status_code) or fallback or "Unknown error"


def error_for_status(
    status_code: int,
    message: str,
    response_data: Any = None,
) -> APIError:
    """Build the APIError subclass matching an HTTP status code."""
    if status_code == 429:
        return ThrottledError(message, status_code, response_data)
    if status_code in (401, 403):
        return AuthenticationError(message, status_code, response_data)
    return APIError(message, status_code, response_data)


class BaseClient:
    """
    Base class for API clients with common functionality.

    Status codes are never retried at this level; callers that need
    backoff (for example on 429) implement it on top of ``_request``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 0,
        retry_backoff_factor: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        # Create session, connection level retries only
        self.session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=[],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from endpoint."""
        return f"{self.base_url}{endpoint}"

    def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Any:
        """
        Make an HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint
            **kwargs: Additional arguments for requests

        Returns:
            Response JSON data

        Raises:
            APIError: If the request fails
        """
        url = self._build_url(endpoint)

        # Set default timeout
        kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise APIError(f"Connection error: {str(e)}")
        except requests.exceptions.Timeout as e:
            raise APIError(f"Request timeout: {str(e)}")
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request failed: {str(e)}")

        # Check for HTTP errors
        if response.status_code >= 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {"error": response.text}

            raise error_for_status(
                response.status_code,
                error_message_from(
                    error_data,
                    response.status_code,
                    response.reason or response.text,
                ),
                error_data,
            )

        if response.status_code == 204 or not response.text:
            return None

        # Return JSON if possible
        try:
            return response.json()
        except ValueError:
            return {"data": response.text}

    def get(self, endpoint: str, **kwargs) -> Any:
        """Make a GET request."""
        return self._request("GET", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs) -> Any:
        """Make a POST request."""
        return self._request("POST", endpoint, **kwargs)

    def close(self) -> None:
        """Close the session."""
        self.session.close()
