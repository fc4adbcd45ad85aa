"""Single remote API call with timeout and retry."""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from shared.config import SyncSettings
from services.reminder_sync.errors import ProtocolError, RetryableError
from services.reminder_sync.retry import retry_with_exponential_backoff

logger = logging.getLogger(__name__)


class Transport:
    """Performs JSON calls against the remote API with the fixed header set."""

    def __init__(self, client: httpx.AsyncClient, settings: SyncSettings):
        """
        Initialize the transport.

        Args:
            client: HTTP client whose base_url points at the remote API
            settings: Agent settings (timeout, retry budget, API version)
        """
        self.client = client
        self.settings = settings
        self._send = retry_with_exponential_backoff(
            max_attempts=settings.max_attempts,
            initial_delay=settings.retry_initial_delay,
            exponential_base=2.0,
            exceptions=(RetryableError,)
        )(self._send_once)

    def build_headers(self, token: str) -> Dict[str, str]:
        """Headers sent on every request."""
        return {
            "Content-Type": "application/json;charset=UTF-8",
            "accept": "application/json, text/plain, */*",
            "clientapiversion": self.settings.client_api_version,
            self.settings.credential_header: token,
        }

    async def call(
        self,
        endpoint: str,
        method: str,
        token: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Perform one logical call, retrying transient failures.

        Args:
            endpoint: Path relative to the API base URL
            method: HTTP method
            token: Session credential
            body: Optional JSON body
            params: Optional query parameters

        Returns:
            Parsed JSON response

        Raises:
            TransportExhausted: If every attempt failed with a retryable error
            ProtocolError: If a successful response is not valid JSON
        """
        response = await self._send(endpoint, method, token, body, params)

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Malformed response from {method} {endpoint}: {e}")
            raise ProtocolError(f"Invalid JSON response from {endpoint}") from e

    async def _send_once(
        self,
        endpoint: str,
        method: str,
        token: str,
        body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]]
    ) -> httpx.Response:
        content = json.dumps(body) if body is not None else None

        try:
            response = await self.client.request(
                method,
                endpoint,
                content=content,
                params=params,
                headers=self.build_headers(token),
                timeout=self.settings.request_timeout
            )
        except httpx.TimeoutException as e:
            raise RetryableError(f"Timeout calling {endpoint}") from e
        except httpx.TransportError as e:
            raise RetryableError(f"Network error calling {endpoint}: {e}") from e

        if not response.is_success:
            logger.error(f"{method} {endpoint} failed: {response.status_code} {response.text}")
            raise RetryableError(f"HTTP {response.status_code}")

        return response
