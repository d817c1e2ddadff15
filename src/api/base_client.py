"""Base HTTP client with retry logic and error handling."""

import httpx
from typing import Optional, Dict, Any
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    wait_none,
    retry_if_exception_type
)

from ..utils.config import get_config
from ..utils.logger import get_store_logger


class BaseClient:
    """Base HTTP client with retry logic and logging."""

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize base client.

        Args:
            base_url: Base URL for API requests
            headers: Optional default headers
            params: Optional query parameters sent with every request
            transport: Optional transport (tests pass an ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.config = get_config()
        self.logger = get_store_logger()

        default_headers = {
            "Content-Type": "application/json",
            "User-Agent": "Stockscan/1.0"
        }

        if headers:
            default_headers.update(headers)

        self.client = httpx.Client(
            base_url=self.base_url,
            headers=default_headers,
            params=params,
            timeout=self.config.api.timeout,
            follow_redirects=True,
            transport=transport
        )

    def _make_request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Make HTTP request with retry logic.

        Only timeouts and network errors are retried; HTTP error statuses
        are returned to the caller for classification.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            HTTP response

        Raises:
            httpx.HTTPError: If all retry attempts fail
        """
        api = self.config.api

        @retry(
            stop=stop_after_attempt(max(1, api.max_retries)),
            wait=wait_exponential(multiplier=api.retry_delay) if api.exponential_backoff else wait_none(),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            reraise=True
        )
        def _request():
            self.logger.debug(f"{method} {url}")
            response = self.client.request(method, url, **kwargs)
            self.logger.debug(f"Response: {response.status_code}")
            return response

        return _request()

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
