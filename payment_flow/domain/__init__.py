"""
Domain Layer - Transaction and Flow State

This layer contains:
- The Transaction entity and its forward-only status machine
- Bank destinations offered by the payment method catalog
- Flow state tags and the live snapshot cell the guard reads through
- The error taxonomy shared by the controller and the REST clients

Key principle: ZERO dependencies on transport or UI.
"""
from payment_flow.domain.errors import (
    CancellationError,
    CatalogError,
    ConfirmationError,
    GatewayError,
    GatewayErrorType,
    InitiationError,
    InvalidTransitionError,
    PaymentFlowError,
    TransactionValidationError,
)
from payment_flow.domain.states import (
    IN_FLIGHT_STATES,
    TERMINAL_STATES,
    FlowSnapshot,
    FlowState,
    LiveSnapshot,
)
from payment_flow.domain.transaction import (
    BankDestination,
    BillType,
    Transaction,
    TransactionStatus,
    TransferQrData,
)

__all__ = [
    "BankDestination",
    "BillType",
    "CancellationError",
    "CatalogError",
    "ConfirmationError",
    "FlowSnapshot",
    "FlowState",
    "GatewayError",
    "GatewayErrorType",
    "IN_FLIGHT_STATES",
    "InitiationError",
    "InvalidTransitionError",
    "LiveSnapshot",
    "PaymentFlowError",
    "TERMINAL_STATES",
    "Transaction",
    "TransactionStatus",
    "TransactionValidationError",
    "TransferQrData",
]
