"""Polar REST client for customer lookup and usage-based billing.

Calls go straight to the Polar HTTP API through ``requests``. Methods are
synchronous; async callers run them on an executor.
"""

from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import config
from ..logging_utils import get_logger

logger = get_logger(__name__)

POLAR_API_URLS = {
    "production": "https://api.polar.sh",
    "sandbox": "https://sandbox-api.polar.sh",
}


class PolarError(Exception):
    """Base exception for Polar client errors.

    Attributes:
        status_code: HTTP status returned by Polar, when there was a response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PolarAuthError(PolarError):
    """Raised when the access token is missing or rejected."""

    pass


class PolarRateLimitError(PolarError):
    """Raised when Polar keeps rate limiting after retries."""

    pass


class PolarClient:
    """Polar API wrapper used by the usage sync and customer linking.

    Example:
        >>> client = PolarClient()
        >>> client.ingest_events([{"name": "api_call", "customer_id": "cus_1"}])
    """

    DEFAULT_TIMEOUT = 30

    MAX_RETRIES = 3

    BASE_RETRY_DELAY = 1.0

    def __init__(
        self,
        access_token: Optional[str] = None,
        server: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        """Initialize the Polar client.

        Args:
            access_token: Organization access token. Defaults to config value.
            server: "sandbox" or "production". Defaults to config value.
            timeout: Request timeout in seconds.

        Raises:
            PolarAuthError: If no access token is available.
            ValueError: If the server name is unknown.
        """
        self.access_token = access_token or config.POLAR_ACCESS_TOKEN
        if not self.access_token:
            raise PolarAuthError("POLAR_ACCESS_TOKEN is not configured")

        self.server = server or config.POLAR_SERVER
        if self.server not in POLAR_API_URLS:
            raise ValueError(f"Unknown Polar server: {self.server!r}")

        self.base_url = POLAR_API_URLS[self.server]
        self.timeout = timeout or config.POLAR_TIMEOUT_SECONDS or self.DEFAULT_TIMEOUT

        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        """Get or create a requests session with retry configuration."""
        if self._session is None:
            self._session = requests.Session()

            retry_strategy = Retry(
                total=self.MAX_RETRIES,
                backoff_factor=self.BASE_RETRY_DELAY,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["POST", "GET"],
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self._session.mount("https://", adapter)
            self._session.headers.update({
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            })

        return self._session

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()

        try:
            response = session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("Polar request %s %s failed: %s", method, path, e)
            raise PolarError(f"Polar request failed: {e}") from e

        if response.status_code in (401, 403):
            raise PolarAuthError(
                f"Polar rejected the access token ({response.status_code})",
                response.status_code,
            )
        if response.status_code == 429:
            raise PolarRateLimitError("Polar rate limit exceeded", 429)
        if response.status_code >= 400:
            logger.error(
                "Polar request failed",
                extra={
                    "path": path,
                    "status_code": response.status_code,
                    "response_text": response.text[:500],
                },
            )
            raise PolarError(
                f"Polar {method} {path} returned {response.status_code}: "
                f"{response.text[:200]}",
                response.status_code,
            )

        if not response.content:
            return None
        return response.json()

    def ingest_events(self, events: list[dict[str, Any]]) -> dict[str, Any]:
        """Send usage events to Polar's event ingestion endpoint.

        Args:
            events: Events with ``name``, ``customer_id``, ``metadata`` and an
                ``external_id`` that Polar uses to deduplicate retries.

        Returns:
            Polar's ingestion summary (``inserted`` / ``duplicates``).
        """
        logger.debug("Ingesting %d events into Polar", len(events))
        result = self._request("POST", "/v1/events/ingest", json_body={"events": events})
        return result or {}

    def list_customer_meters(self, customer_id: str) -> list[dict[str, Any]]:
        """List the meters attached to a customer, following pagination."""
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            result = self._request(
                "GET",
                "/v1/customer-meters/",
                params={"customer_id": customer_id, "page": page, "limit": 100},
            ) or {}
            items.extend(result.get("items", []))

            pagination = result.get("pagination") or {}
            if page >= int(pagination.get("max_page", 1) or 1):
                break
            page += 1
        return items

    def find_customer_by_email(self, email: str) -> Optional[dict[str, Any]]:
        """Return the Polar customer with this exact email, if any."""
        result = self._request("GET", "/v1/customers/", params={"query": email}) or {}
        for customer in result.get("items", []):
            if (customer.get("email") or "").lower() == email.lower():
                return customer
        return None

    def create_customer(
        self,
        email: str,
        name: Optional[str] = None,
        external_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Create a Polar customer."""
        body: dict[str, Any] = {"email": email}
        if name:
            body["name"] = name
        if external_id:
            body["external_id"] = external_id
        if metadata:
            body["metadata"] = metadata
        return self._request("POST", "/v1/customers/", json_body=body)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
