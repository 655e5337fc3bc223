"""JSON-over-HTTPS client shared by the REST-based processors."""

import uuid
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)


class VendorAPIError(Exception):
    """
    A vendor call that did not produce a 2xx JSON answer.

    Attributes:
        vendor: Processor name
        status_code: HTTP status, or None for timeouts and network errors
        payload: Decoded error body when the vendor sent one
        timeout: True when the request timed out
    """

    def __init__(
        self,
        vendor: str,
        message: str,
        status_code: int | None = None,
        payload: Any = None,
        timeout: bool = False,
    ):
        super().__init__(message)
        self.vendor = vendor
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.timeout = timeout


class VendorAPIClient:
    """
    Thin async client for a vendor REST API.

    Sends and receives JSON, tags each request with a correlation id, and
    turns every non-2xx answer, non-object body, timeout or network error
    into VendorAPIError. No retries are attempted.
    """

    def __init__(
        self,
        vendor: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.vendor = vendor
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.http_client = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers={"Content-Type": "application/json", **(headers or {})},
        )

        logger.info(
            "vendor_client_initialized",
            vendor=vendor,
            base_url=self.base_url,
            timeout_seconds=timeout_seconds,
        )

    async def close(self) -> None:
        """Close the HTTP client connection pool."""
        await self.http_client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Call the vendor and return the decoded JSON object ({} when empty).

        Raises:
            VendorAPIError: On non-2xx status, a non-object body, timeout or network error
        """
        correlation_id = str(uuid.uuid4())
        url = f"{self.base_url}{path}"

        logger.info(
            "vendor_request",
            vendor=self.vendor,
            method=method,
            path=path,
            correlation_id=correlation_id,
        )

        try:
            response = await self.http_client.request(
                method,
                url,
                json=json,
                params=params,
                headers={"X-Request-ID": correlation_id, **(headers or {})},
            )
        except httpx.TimeoutException as e:
            logger.error(
                "vendor_timeout",
                vendor=self.vendor,
                path=path,
                correlation_id=correlation_id,
                error=str(e),
            )
            raise VendorAPIError(self.vendor, f"{self.vendor} request timed out", timeout=True) from e
        except httpx.RequestError as e:
            # Network errors, connection errors, etc.
            logger.error(
                "vendor_request_error",
                vendor=self.vendor,
                path=path,
                correlation_id=correlation_id,
                error=str(e),
            )
            raise VendorAPIError(self.vendor, f"{self.vendor} request error: {e}") from e

        body = self._decode(response)

        if response.status_code >= 400:
            logger.warning(
                "vendor_error_response",
                vendor=self.vendor,
                path=path,
                status_code=response.status_code,
                correlation_id=correlation_id,
            )
            raise VendorAPIError(
                self.vendor,
                self._error_message(body, response.status_code),
                status_code=response.status_code,
                payload=body,
            )

        if not isinstance(body, dict):
            logger.warning(
                "vendor_unexpected_response",
                vendor=self.vendor,
                path=path,
                body_type=type(body).__name__,
                correlation_id=correlation_id,
            )
            raise VendorAPIError(
                self.vendor,
                f"{self.vendor} returned a non-object response",
                status_code=response.status_code,
                payload=body,
            )

        return body

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PUT", path, **kwargs)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    def _error_message(self, body: Any, status_code: int) -> str:
        if isinstance(body, dict):
            for key in ("error_message", "message", "error"):
                if body.get(key):
                    return f"{self.vendor} error: {body[key]}"
        return f"{self.vendor} returned HTTP {status_code}"

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
