"""External collaborators: transaction gateway and payment method catalog."""
from .backend import BackendHttpClient
from .catalog import CachedPaymentMethodCatalog, HttpPaymentMethodCatalog, PaymentMethodCatalog
from .gateway import (
    ConfirmationReceipt,
    HttpTransactionGateway,
    InitiatedTransaction,
    TransactionGateway,
)

__all__ = [
    "BackendHttpClient",
    "CachedPaymentMethodCatalog",
    "ConfirmationReceipt",
    "HttpPaymentMethodCatalog",
    "HttpTransactionGateway",
    "InitiatedTransaction",
    "PaymentMethodCatalog",
    "TransactionGateway",
]
