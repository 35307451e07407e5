"""
Tests for the payment method catalog client and its cache.
"""

import json
from typing import List
from unittest.mock import AsyncMock

import httpx
import pytest
from tenacity import wait_none

from payment_flow.config import Settings
from payment_flow.domain import BankDestination, CatalogError
from payment_flow.integrations import (
    BackendHttpClient,
    CachedPaymentMethodCatalog,
    HttpPaymentMethodCatalog,
)

ACCOUNTS = [
    {
        "bankName": "BPI",
        "accountName": "Apartment Management Account",
        "accountNumber": "9079376194",
        "qrUrl": None,
    },
    {
        "bankName": "BDO",
        "accountName": "Apartment Management Account",
        "accountNumber": "0012345678",
        "qrUrl": "https://cdn.example.com/bdo.png",
    },
]


def payment_methods(enabled: bool = True, accounts=ACCOUNTS, maintenance: str = "") -> dict:
    return {
        "success": True,
        "paymentMethods": {
            "gcash": {"enabled": True, "maintenanceMessage": "", "qrUrl": None},
            "bank_transfer": {
                "enabled": enabled,
                "maintenanceMessage": maintenance,
                "accounts": accounts,
            },
            "cash": {"enabled": True, "maintenanceMessage": ""},
        },
    }


def make_catalog(handler, max_attempts: int = 3) -> HttpPaymentMethodCatalog:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://backend.test"
    )
    return HttpPaymentMethodCatalog(
        BackendHttpClient(Settings(), client=client),
        max_attempts=max_attempts,
        wait=wait_none(),
    )


class TestHttpPaymentMethodCatalog:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_lists_enabled_banks_in_order(self) -> None:
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=payment_methods())

        banks = await make_catalog(handler).list_enabled_banks("room_101")

        assert [b.bank_name for b in banks] == ["BPI", "BDO"]
        assert banks[1].qr_ref == "https://cdn.example.com/bdo.png"
        assert requests[0].url.path == "/api/v2/settings/payment-methods"
        assert requests[0].url.params["room_id"] == "room_101"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_disabled_bank_transfer_yields_empty_list(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=payment_methods(enabled=False))

        assert await make_catalog(handler).list_enabled_banks("room_101") == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_maintenance_message_is_kept_per_room(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json=payment_methods(enabled=False, maintenance="Bank transfer is down until 6PM"),
            )

        catalog = make_catalog(handler)

        assert await catalog.list_enabled_banks("room_101") == []
        assert catalog.maintenance_message("room_101") == "Bank transfer is down until 6PM"
        assert catalog.maintenance_message("room_202") == ""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_accounts_stored_as_json_string(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=payment_methods(accounts=json.dumps(ACCOUNTS[:1])))

        banks = await make_catalog(handler).list_enabled_banks("room_101")

        assert [b.bank_name for b in banks] == ["BPI"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_malformed_accounts_are_skipped(self) -> None:
        accounts = [{"accountNumber": "123"}, ACCOUNTS[0], "garbage"]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=payment_methods(accounts=accounts))

        banks = await make_catalog(handler).list_enabled_banks("room_101")

        assert [b.bank_name for b in banks] == ["BPI"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503, json={"message": "Service unavailable"})
            return httpx.Response(200, json=payment_methods())

        banks = await make_catalog(handler).list_enabled_banks("room_101")

        assert len(attempts) == 3
        assert len(banks) == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(503)

        with pytest.raises(CatalogError) as exc_info:
            await make_catalog(handler, max_attempts=2).list_enabled_banks("room_101")

        assert len(attempts) == 2
        assert exc_info.value.retryable

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self) -> None:
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(401, json={"success": False, "message": "Not authenticated"})

        with pytest.raises(CatalogError, match="Not authenticated") as exc_info:
            await make_catalog(handler).list_enabled_banks("room_101")

        assert len(attempts) == 1
        assert not exc_info.value.retryable


class TestCachedPaymentMethodCatalog:

    @pytest.fixture
    def inner(self) -> AsyncMock:
        inner = AsyncMock()
        inner.list_enabled_banks.return_value = [
            BankDestination(bank_name="BPI", account_number="9079376194")
        ]
        return inner

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_serves_from_cache_within_ttl(self, inner: AsyncMock) -> None:
        now = [100.0]
        cache = CachedPaymentMethodCatalog(inner, ttl_seconds=10, clock=lambda: now[0])

        first = await cache.list_enabled_banks("room_101")
        now[0] += 9
        second = await cache.list_enabled_banks("room_101")

        assert first == second
        assert inner.list_enabled_banks.await_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refetches_after_ttl(self, inner: AsyncMock) -> None:
        now = [100.0]
        cache = CachedPaymentMethodCatalog(inner, ttl_seconds=10, clock=lambda: now[0])

        await cache.list_enabled_banks("room_101")
        now[0] += 10
        await cache.list_enabled_banks("room_101")

        assert inner.list_enabled_banks.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rooms_are_cached_separately(self, inner: AsyncMock) -> None:
        cache = CachedPaymentMethodCatalog(inner, ttl_seconds=10)

        await cache.list_enabled_banks("room_101")
        await cache.list_enabled_banks("room_202")
        await cache.list_enabled_banks("room_101")

        assert [c.args for c in inner.list_enabled_banks.await_args_list] == [
            ("room_101",),
            ("room_202",),
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalidate(self, inner: AsyncMock) -> None:
        cache = CachedPaymentMethodCatalog(inner, ttl_seconds=10)

        await cache.list_enabled_banks("room_101")
        cache.invalidate("room_101")
        await cache.list_enabled_banks("room_101")

        assert inner.list_enabled_banks.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_list_is_cached(self, inner: AsyncMock) -> None:
        inner.list_enabled_banks.return_value = []
        cache = CachedPaymentMethodCatalog(inner, ttl_seconds=10)

        assert await cache.list_enabled_banks("room_101") == []
        assert await cache.list_enabled_banks("room_101") == []
        assert inner.list_enabled_banks.await_count == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_callers_cannot_mutate_cached_list(self, inner: AsyncMock) -> None:
        cache = CachedPaymentMethodCatalog(inner, ttl_seconds=10)

        first = await cache.list_enabled_banks("room_101")
        first.clear()

        assert len(await cache.list_enabled_banks("room_101")) == 1
