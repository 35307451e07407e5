"""
HTTP client for the bill tracker backend.

Implements:
- One pooled httpx.AsyncClient per flow process
- Classification of transport failures into GatewayErrorType
- Per-operation request metrics
"""
import time
from typing import Any, Dict, Optional

import httpx
import structlog

from payment_flow.config import Settings, get_settings
from payment_flow.domain.errors import GatewayError, GatewayErrorType
from payment_flow.monitoring.metrics import (
    gateway_request_duration_seconds,
    gateway_requests_total,
)

logger = structlog.get_logger(__name__)


class BackendHttpClient:
    """
    Thin wrapper over httpx for the backend's JSON envelope.

    Every backend response has the shape {"success": bool, "message": str, ...}.
    Non-2xx responses and success=false bodies both surface as GatewayError.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize backend client.

        Args:
            settings: Client settings (defaults to cached settings)
            client: Pre-built httpx client (tests pass one with a mock transport)
        """
        self.settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=self.settings.api_base_url,
            timeout=self.settings.request_timeout_seconds,
            headers=self.settings.auth_headers(),
        )

    async def __aenter__(self) -> "BackendHttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _classify_status(status_code: int) -> GatewayErrorType:
        """
        Classify an HTTP error status for retry logic.

        Args:
            status_code: HTTP status code

        Returns:
            GatewayErrorType: Error classification
        """
        if status_code == 429:
            return GatewayErrorType.RATE_LIMIT
        if status_code >= 500:
            return GatewayErrorType.TRANSIENT
        return GatewayErrorType.PERMANENT

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.reason_phrase

    async def request(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Send a request and return the decoded JSON body.

        Args:
            method: HTTP method
            path: Path relative to the backend base URL
            operation: Operation name used for logs and metrics
            **kwargs: Passed through to httpx (json, params, ...)

        Returns:
            Dict[str, Any]: Decoded response body

        Raises:
            GatewayError: On transport failure, error status or rejected body
        """
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            self._record(operation, GatewayErrorType.TRANSIENT.value, start)
            logger.warning(
                "backend_transport_error",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise GatewayError(
                f"{operation} failed: {str(e) or type(e).__name__}",
                GatewayErrorType.TRANSIENT,
                original_error=e,
            ) from e

        if response.is_error:
            error_type = self._classify_status(response.status_code)
            message = self._error_message(response)
            self._record(operation, error_type.value, start)
            logger.warning(
                "backend_error_response",
                operation=operation,
                status_code=response.status_code,
                error_type=error_type.value,
                error=message,
            )
            raise GatewayError(
                message,
                error_type,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            self._record(operation, GatewayErrorType.PERMANENT.value, start)
            raise GatewayError(
                f"{operation} returned a non-JSON body",
                GatewayErrorType.PERMANENT,
                status_code=response.status_code,
                original_error=e,
            ) from e

        if not isinstance(body, dict) or body.get("success") is False:
            message = body.get("message") if isinstance(body, dict) else None
            self._record(operation, GatewayErrorType.PERMANENT.value, start)
            raise GatewayError(
                message or f"{operation} was rejected by the backend",
                GatewayErrorType.PERMANENT,
                status_code=response.status_code,
            )

        self._record(operation, "success", start)
        return body

    @staticmethod
    def _record(operation: str, status: str, start: float) -> None:
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start
        )
