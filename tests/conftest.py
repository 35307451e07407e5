"""
Pytest configuration and fixtures for payment flow tests.
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest

from payment_flow.core import AbandonmentGuard, PaymentFlowController
from payment_flow.domain import (
    BankDestination,
    BillType,
    GatewayError,
    GatewayErrorType,
    TransferQrData,
)
from payment_flow.integrations import ConfirmationReceipt, InitiatedTransaction


class ScriptedGateway:
    """
    In-memory TransactionGateway for tests.

    Records every call, can fail the next N calls of an operation, and can hold
    an operation in flight until its gate is released.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.failures: Dict[str, List[Exception]] = {"initiate": [], "confirm": [], "cancel": []}
        self.gates: Dict[str, asyncio.Event] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._issued = 0

    def hold(self, operation: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[operation] = gate
        return gate

    def fail_next(self, operation: str, error: Optional[Exception] = None) -> None:
        self.failures[operation].append(
            error or GatewayError("network unreachable", GatewayErrorType.TRANSIENT)
        )

    def calls_to(self, operation: str) -> List[Tuple[Any, ...]]:
        return [args for op, args in self.calls if op == operation]

    async def _enter(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self.gates.get(operation)
            if gate is not None:
                await gate.wait()
            if self.failures[operation]:
                raise self.failures[operation].pop(0)
        finally:
            self.in_flight -= 1

    async def initiate(
        self, room_id: str, amount: Decimal, bill_type: BillType, bank_name: str
    ) -> InitiatedTransaction:
        await self._enter("initiate", room_id, amount, bill_type, bank_name)
        self._issued += 1
        return InitiatedTransaction(
            id=f"T{self._issued}",
            reference_number=f"BT-{self._issued:04d}",
            instructions=f"Transfer {amount} using reference: BT-{self._issued:04d}",
            qr_data=TransferQrData(amount=amount, reference=f"BT-{self._issued:04d}"),
        )

    async def confirm(
        self,
        transaction_id: str,
        bank_name: str,
        deposit_date: Any = None,
        proof_url: Optional[str] = None,
    ) -> ConfirmationReceipt:
        await self._enter("confirm", transaction_id, bank_name)
        return ConfirmationReceipt(
            transaction_id=transaction_id, message="Bank transfer payment confirmed"
        )

    async def cancel(self, transaction_id: str) -> None:
        await self._enter("cancel", transaction_id)


class StaticCatalog:
    """PaymentMethodCatalog returning a fixed bank list."""

    def __init__(self, banks: List[BankDestination]) -> None:
        self.banks = banks
        self.requests: List[str] = []

    async def list_enabled_banks(self, room_id: str) -> List[BankDestination]:
        self.requests.append(room_id)
        return list(self.banks)


@pytest.fixture
def banks() -> List[BankDestination]:
    return [
        BankDestination(
            bank_name="BPI",
            account_name="Apartment Management Account",
            account_number="9079376194",
        ),
        BankDestination(
            bank_name="BDO",
            account_name="Apartment Management Account",
            account_number="0012345678",
            qr_ref="https://cdn.example.com/bdo-qr.png",
        ),
    ]


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def catalog(banks: List[BankDestination]) -> StaticCatalog:
    return StaticCatalog(banks)


@pytest.fixture
def controller(gateway: ScriptedGateway, catalog: StaticCatalog) -> PaymentFlowController:
    """Controller for a 1500.00 rent payment with BPI preselected."""
    return PaymentFlowController(
        room_id="room_101",
        amount="1500",
        bill_type=BillType.RENT,
        gateway=gateway,
        catalog=catalog,
        bank_name="BPI",
    )


@pytest.fixture
def guard(controller: PaymentFlowController) -> AbandonmentGuard:
    return AbandonmentGuard(controller, background_threshold_seconds=0.05)


@pytest.fixture
def settle():
    """Let scheduled tasks run up to their next suspension point."""

    async def _settle(rounds: int = 5) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle
