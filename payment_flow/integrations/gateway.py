"""
Transaction gateway: the three server operations the payment flow needs.

Initiate opens a pending transaction, confirm completes it, cancel abandons it.
None of them is retried automatically: a retried initiate could open a second
transaction, and retrying confirm or cancel is the user's decision.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from payment_flow.domain.errors import GatewayError, GatewayErrorType
from payment_flow.domain.transaction import BillType, TransferQrData
from payment_flow.integrations.backend import BackendHttpClient

logger = structlog.get_logger(__name__)

PAYMENT_PROCESSING_PATH = "/api/v2/payment-processing"


class InitiatedTransaction(BaseModel):
    """Identity assigned by the gateway to a newly opened transaction."""

    model_config = ConfigDict(frozen=True)

    id: str
    reference_number: str
    instructions: Optional[str] = None
    qr_data: Optional[TransferQrData] = None


class ConfirmationReceipt(BaseModel):
    """Gateway acknowledgement of a confirmed transfer."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str
    message: str = ""
    cycle_closed: bool = False


class TransactionGateway(Protocol):
    """Server-held transaction resource, identified by an opaque id."""

    async def initiate(
        self,
        room_id: str,
        amount: Decimal,
        bill_type: BillType,
        bank_name: str,
    ) -> InitiatedTransaction:
        ...

    async def confirm(
        self,
        transaction_id: str,
        bank_name: str,
        deposit_date: Optional[date] = None,
        proof_url: Optional[str] = None,
    ) -> ConfirmationReceipt:
        ...

    async def cancel(self, transaction_id: str) -> None:
        ...


class HttpTransactionGateway:
    """TransactionGateway backed by the bill tracker's payment-processing API."""

    def __init__(self, client: BackendHttpClient) -> None:
        self.client = client

    async def initiate(
        self,
        room_id: str,
        amount: Decimal,
        bill_type: BillType,
        bank_name: str,
    ) -> InitiatedTransaction:
        """
        Open a pending bank-transfer transaction.

        Args:
            room_id: Room the bill belongs to
            amount: Amount to transfer
            bill_type: Bill being settled
            bank_name: Destination bank selected by the payer

        Returns:
            InitiatedTransaction: Transaction id, reference number and instructions

        Raises:
            GatewayError: If the backend did not create a transaction
        """
        logger.info(
            "initiating_bank_transfer",
            room_id=room_id,
            amount=str(amount),
            bill_type=BillType(bill_type).value,
            bank_name=bank_name,
        )

        body = await self.client.request(
            "POST",
            f"{PAYMENT_PROCESSING_PATH}/initiate-bank-transfer",
            operation="initiate",
            json={
                "roomId": room_id,
                "amount": float(amount),
                "billType": BillType(bill_type).value,
                "bankName": bank_name,
            },
        )

        transaction = body.get("transaction") or {}
        transaction_id = _transaction_id(transaction)
        reference_number = transaction.get("referenceNumber")
        if not transaction_id or not reference_number:
            raise GatewayError(
                "Backend response is missing the transaction id or reference number",
                GatewayErrorType.PERMANENT,
            )

        logger.info(
            "bank_transfer_initiated",
            transaction_id=transaction_id,
            reference_number=reference_number,
        )
        return InitiatedTransaction(
            id=transaction_id,
            reference_number=reference_number,
            instructions=body.get("instructions"),
            qr_data=_qr_data(body.get("qrData"), transaction_id),
        )

    async def confirm(
        self,
        transaction_id: str,
        bank_name: str,
        deposit_date: Optional[date] = None,
        proof_url: Optional[str] = None,
    ) -> ConfirmationReceipt:
        """
        Mark a pending transfer as sent.

        Args:
            transaction_id: Pending transaction id
            bank_name: Bank the transfer was sent from
            deposit_date: Optional date the deposit was made
            proof_url: Optional URL of an uploaded proof of transfer

        Returns:
            ConfirmationReceipt: Backend acknowledgement

        Raises:
            GatewayError: If the confirmation was not recorded
        """
        logger.info("confirming_bank_transfer", transaction_id=transaction_id)

        payload: Dict[str, Any] = {"transactionId": transaction_id, "bankName": bank_name}
        if deposit_date:
            payload["depositDate"] = deposit_date.isoformat()
        if proof_url:
            payload["proofImageUrl"] = proof_url

        body = await self.client.request(
            "POST",
            f"{PAYMENT_PROCESSING_PATH}/confirm-bank-transfer",
            operation="confirm",
            json=payload,
        )

        logger.info("bank_transfer_confirmed", transaction_id=transaction_id)
        return ConfirmationReceipt(
            transaction_id=transaction_id,
            message=body.get("message") or "",
            cycle_closed=bool(body.get("cycleClosed", False)),
        )

    async def cancel(self, transaction_id: str) -> None:
        """
        Ask the backend to cancel a pending transaction.

        Args:
            transaction_id: Pending transaction id

        Raises:
            GatewayError: If the backend did not acknowledge the cancel
        """
        logger.info("cancelling_transaction", transaction_id=transaction_id)

        await self.client.request(
            "POST",
            f"{PAYMENT_PROCESSING_PATH}/cancel-transaction",
            operation="cancel",
            json={"transactionId": transaction_id},
        )

        logger.info("transaction_cancelled", transaction_id=transaction_id)


def _transaction_id(transaction: Dict[str, Any]) -> Optional[str]:
    # Mongo-backed deployments return _id, Supabase-backed ones return id
    value = transaction.get("_id") or transaction.get("id")
    return str(value) if value else None


def _qr_data(raw: Any, transaction_id: str) -> Optional[TransferQrData]:
    if not raw:
        return None
    try:
        return TransferQrData.model_validate(raw)
    except ValidationError as e:
        logger.warning("qr_data_unparseable", transaction_id=transaction_id, error=str(e))
        return None
