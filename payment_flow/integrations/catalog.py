"""
Payment method catalog: which banks a room's host accepts transfers to.

The list is read-only from the flow's point of view, so unlike the gateway
operations it is safe to retry and to cache.
"""
import json
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from payment_flow.config import get_settings
from payment_flow.domain.errors import CatalogError, GatewayError
from payment_flow.domain.transaction import BankDestination
from payment_flow.integrations.backend import BackendHttpClient
from payment_flow.monitoring.metrics import catalog_cache_hits_total

logger = structlog.get_logger(__name__)

PAYMENT_METHODS_PATH = "/api/v2/settings/payment-methods"


class PaymentMethodCatalog(Protocol):
    """Source of enabled bank destinations for a room."""

    async def list_enabled_banks(self, room_id: str) -> List[BankDestination]:
        ...


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, GatewayError) and error.retryable


class HttpPaymentMethodCatalog:
    """PaymentMethodCatalog backed by the settings API."""

    def __init__(
        self,
        client: BackendHttpClient,
        max_attempts: Optional[int] = None,
        wait: Optional[wait_base] = None,
    ) -> None:
        """
        Initialize catalog client.

        Args:
            client: Backend HTTP client
            max_attempts: Fetch attempts before giving up (defaults to settings)
            wait: Tenacity wait strategy between attempts
        """
        self.client = client
        self.max_attempts = max_attempts or get_settings().catalog_retry_max_attempts
        self.wait = wait or wait_exponential(multiplier=0.5, min=0.5, max=4)
        self._maintenance_messages: Dict[str, str] = {}

    async def list_enabled_banks(self, room_id: str) -> List[BankDestination]:
        """
        Fetch the ordered list of banks enabled for a room.

        Args:
            room_id: Room whose host settings decide the banks

        Returns:
            List[BankDestination]: Enabled banks; empty when bank transfer is
            disabled or no account is configured

        Raises:
            CatalogError: If the list could not be fetched
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.max_attempts),
                wait=self.wait,
                reraise=True,
            ):
                with attempt:
                    body = await self.client.request(
                        "GET",
                        PAYMENT_METHODS_PATH,
                        operation="list_banks",
                        params={"room_id": room_id},
                    )
        except GatewayError as e:
            logger.error("bank_catalog_unavailable", room_id=room_id, error=str(e))
            raise CatalogError(
                f"Could not load payment methods: {e}", retryable=e.retryable
            ) from e

        banks = self._parse_banks(body)
        message = self._bank_transfer_section(body).get("maintenanceMessage") or ""
        self._maintenance_messages[room_id] = message
        if not banks and message:
            logger.warning(
                "bank_transfer_unavailable", room_id=room_id, maintenance_message=message
            )
        logger.info("bank_catalog_loaded", room_id=room_id, bank_count=len(banks))
        return banks

    def maintenance_message(self, room_id: str) -> str:
        """Host's notice for bank transfer from the last fetch, if any."""
        return self._maintenance_messages.get(room_id, "")

    @staticmethod
    def _bank_transfer_section(body: Dict[str, Any]) -> Dict[str, Any]:
        return (body.get("paymentMethods") or {}).get("bank_transfer") or {}

    @classmethod
    def _parse_banks(cls, body: Dict[str, Any]) -> List[BankDestination]:
        bank_transfer = cls._bank_transfer_section(body)
        if bank_transfer.get("enabled") is False:
            return []

        accounts = bank_transfer.get("accounts") or []
        if isinstance(accounts, str):
            try:
                accounts = json.loads(accounts)
            except ValueError:
                logger.warning("bank_accounts_unparseable")
                return []
        if not isinstance(accounts, list):
            return []

        banks: List[BankDestination] = []
        for raw in accounts:
            try:
                banks.append(BankDestination.model_validate(raw))
            except ValidationError as e:
                logger.warning("bank_account_skipped", error=str(e))
        return banks


class CachedPaymentMethodCatalog:
    """
    Per-room TTL cache in front of another catalog.

    Default TTL matches the backend's own ten second settings cache.
    """

    def __init__(
        self,
        inner: PaymentMethodCatalog,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None else get_settings().catalog_cache_ttl_seconds
        )
        self._clock = clock
        self._cache: Dict[str, Tuple[List[BankDestination], float]] = {}

    async def list_enabled_banks(self, room_id: str) -> List[BankDestination]:
        cached = self._cache.get(room_id)
        if cached is not None:
            banks, stored_at = cached
            if self._clock() - stored_at < self.ttl_seconds:
                catalog_cache_hits_total.labels(result="hit").inc()
                return list(banks)
            del self._cache[room_id]

        catalog_cache_hits_total.labels(result="miss").inc()
        banks = await self.inner.list_enabled_banks(room_id)
        self._cache[room_id] = (list(banks), self._clock())
        return list(banks)

    def invalidate(self, room_id: Optional[str] = None) -> None:
        """Drop one room's entry, or everything when room_id is None."""
        if room_id is None:
            self._cache.clear()
        else:
            self._cache.pop(room_id, None)
