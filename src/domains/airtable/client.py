"""HTTP client for the Airtable REST API.

Issues exactly one request per call, attaches the bearer credential,
and normalizes non-2xx responses into AirtableAPIError. Network failures
(no response at all) propagate unchanged as httpx errors.
"""

from typing import Any, Literal, Optional, Sequence
from urllib.parse import quote

import httpx

from shared.config import AirtableSettings
from shared.logging import get_logger

logger = get_logger(__name__)


HTTPMethod = Literal["GET", "POST", "PATCH", "DELETE"]
QueryParams = Sequence[tuple[str, str]]


class ConfigurationError(Exception):
    """Required configuration is missing."""
    pass


class AirtableAPIError(Exception):
    """Airtable answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def __str__(self) -> str:
        return self.message


def path(*segments: str) -> str:
    """Join path segments, percent-encoding each one."""
    return "/" + "/".join(quote(str(segment), safe="") for segment in segments)


def _error_message(response: httpx.Response, payload: Any) -> str:
    """Pick the remote-reported message, falling back to the transport message."""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return f"Request failed with status code {response.status_code}"


class AirtableClient:
    """
    Client for the Airtable REST API.

    The credential is read once from settings. It is checked before any
    network I/O; a missing key raises ConfigurationError.
    """

    def __init__(
        self,
        settings: Optional[AirtableSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> None:
        """
        Initialize the Airtable client.

        Args:
            settings: Airtable connection settings (read from env if omitted)
            transport: Optional httpx transport, used by tests to stub Airtable
        """
        self.settings = settings or AirtableSettings()
        self.base_url = self.settings.api_base.rstrip("/")
        self.timeout = self.settings.timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return self.settings.has_credentials

    def ensure_configured(self) -> None:
        """
        Raise ConfigurationError if no API key is available.

        Raises:
            ConfigurationError: If AIRTABLE_API_KEY is unset or empty
        """
        if not self.is_configured:
            raise ConfigurationError("AIRTABLE_API_KEY environment variable is required")

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AirtableClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def request(
        self,
        endpoint: str,
        method: HTTPMethod = "GET",
        data: Optional[dict[str, Any]] = None,
        params: Optional[QueryParams] = None
    ) -> Any:
        """
        Make one request against the Airtable API.

        Args:
            endpoint: Path below the API base, e.g. /meta/bases/app1/tables
            method: HTTP method
            data: JSON body
            params: Ordered query parameters

        Returns:
            Decoded JSON response body

        Raises:
            ConfigurationError: If no API key is configured
            AirtableAPIError: If Airtable answers with a non-2xx status
            httpx.RequestError: If no response was received
        """
        self.ensure_configured()

        client = await self._get_client()
        logger.debug("Airtable request", method=method, endpoint=endpoint)

        response = await client.request(
            method,
            endpoint,
            json=data,
            params=list(params) if params else None,
        )

        if response.is_success:
            if not response.content:
                return {}
            return response.json()

        try:
            payload = response.json()
        except ValueError:
            payload = response.text or None

        message = _error_message(response, payload)
        logger.warning(
            "Airtable request failed",
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
            error=message
        )
        raise AirtableAPIError(message, status_code=response.status_code, details=payload)
