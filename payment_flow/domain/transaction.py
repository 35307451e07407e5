"""
Transaction - the server-held record of one attempted bank transfer.

The client mirrors the server's status locally and only ever moves it forward:

    none → pending → confirmed
                  ↘ cancelled

Inputs (room, amount, bill type) are fixed before initiation. The bank
selection can change only while no transaction is open; after that, switching
banks means cancel + re-initiate, never a mutation.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from payment_flow.domain.errors import InvalidTransitionError, TransactionValidationError


class BillType(str, Enum):
    """Bill a payment settles."""

    RENT = "rent"
    ELECTRICITY = "electricity"
    WATER = "water"
    TOTAL = "total"


class TransactionStatus(str, Enum):
    """Server-authoritative transaction status, mirrored locally."""

    NONE = "none"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionStatus.CONFIRMED, TransactionStatus.CANCELLED)

    def can_transition_to(self, target: TransactionStatus) -> bool:
        return target in _FORWARD_TRANSITIONS[self]


_FORWARD_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.NONE: frozenset({TransactionStatus.PENDING}),
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.CONFIRMED, TransactionStatus.CANCELLED}
    ),
    TransactionStatus.CONFIRMED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


class BankDestination(BaseModel):
    """An enabled bank account the payer can transfer to."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    bank_name: str = Field(alias="bankName", min_length=1)
    account_name: str = Field(default="", alias="accountName")
    account_number: str = Field(default="", alias="accountNumber")
    qr_ref: Optional[str] = Field(default=None, alias="qrUrl")

    @field_validator("bank_name")
    @classmethod
    def strip_bank_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("bank_name must not be blank")
        return v


class TransferQrData(BaseModel):
    """What the payer's banking app scans to prefill the transfer."""

    model_config = ConfigDict(frozen=True)

    type: str = "bank_transfer"
    amount: Decimal
    reference: str = Field(min_length=1)


class Transaction(BaseModel):
    """
    Payment transaction entity.

    Immutable: every lifecycle step returns a new copy, so a snapshot handed
    to a reader can never change underneath it.
    """

    model_config = ConfigDict(frozen=True)

    room_id: str
    amount: Decimal
    bill_type: BillType
    bank_name: str

    # Assigned by the gateway on initiation
    id: Optional[str] = None
    reference_number: Optional[str] = None
    instructions: Optional[str] = None
    qr_data: Optional[TransferQrData] = None

    status: TransactionStatus = TransactionStatus.NONE

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Decimal:
        try:
            amount = Decimal(str(v))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"amount is not a number: {v!r}") from e
        if not amount.is_finite() or amount <= 0:
            raise ValueError("amount must be positive")
        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @field_validator("room_id", "bank_name")
    @classmethod
    def require_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @model_validator(mode="after")
    def check_identity_matches_status(self) -> Transaction:
        if self.status is TransactionStatus.NONE:
            if self.id is not None:
                raise ValueError("a transaction that was never opened has no id")
        elif not self.id or not self.reference_number:
            raise ValueError(f"{self.status.value} transaction needs an id and reference number")
        return self

    @classmethod
    def draft(
        cls,
        room_id: str,
        amount: Decimal | int | float | str,
        bill_type: BillType | str,
        bank_name: str,
    ) -> Transaction:
        """
        Build an unopened transaction from user inputs.

        Raises:
            TransactionValidationError: If any input is missing or invalid
        """
        try:
            return cls(
                room_id=room_id,
                amount=amount,
                bill_type=bill_type,
                bank_name=bank_name,
            )
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(p) for p in err["loc"]) or "transaction" for err in e.errors()
            )
            raise TransactionValidationError(f"Invalid payment details: {fields}") from e

    @property
    def is_open(self) -> bool:
        return self.status is TransactionStatus.PENDING

    def _require(self, action: str, target: TransactionStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidTransitionError(action, self.status, transaction_id=self.id)

    def opened(
        self,
        transaction_id: str,
        reference_number: str,
        instructions: Optional[str] = None,
        qr_data: Optional[TransferQrData] = None,
    ) -> Transaction:
        """Record the identity the gateway assigned on initiation."""
        self._require("open", TransactionStatus.PENDING)
        if not transaction_id or not reference_number:
            raise TransactionValidationError(
                "Gateway returned a transaction without id or reference number"
            )
        if self.reference_number and self.reference_number != reference_number:
            raise TransactionValidationError(
                "Reference number cannot change once assigned",
                transaction_id=transaction_id,
            )
        return self.model_copy(
            update={
                "id": transaction_id,
                "reference_number": reference_number,
                "instructions": instructions,
                "qr_data": qr_data,
                "status": TransactionStatus.PENDING,
            }
        )

    def confirmed(self) -> Transaction:
        self._require("confirm", TransactionStatus.CONFIRMED)
        return self.model_copy(update={"status": TransactionStatus.CONFIRMED})

    def cancelled(self) -> Transaction:
        self._require("cancel", TransactionStatus.CANCELLED)
        return self.model_copy(update={"status": TransactionStatus.CANCELLED})
