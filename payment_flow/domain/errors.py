"""
Error taxonomy for the payment flow.

Every failure in the flow resolves to one of four buckets:
1. Invalid transition - rejected synchronously, never reaches the gateway
2. Recoverable before a transaction exists - initiate failed, nothing to clean up
3. Recoverable inside a transaction - confirm failed, transaction stays pending
4. Best-effort terminal - cancel failed, logged and never surfaced

Nothing here is fatal to the process.
"""

from enum import Enum
from typing import Any, Dict, Optional


class GatewayErrorType(Enum):
    """Classification of gateway transport errors."""

    TRANSIENT = "transient"  # Connect errors, timeouts, 5xx
    PERMANENT = "permanent"  # Rejected by the backend
    RATE_LIMIT = "rate_limit"  # 429


class PaymentFlowError(Exception):
    """Base error for payment flow operations."""

    error_code = "payment_flow_error"
    retryable = False

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        self.message = message
        self.transaction_id = transaction_id
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for display or structured logging."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
                "transaction_id": self.transaction_id,
                "retryable": self.retryable,
            }
        }


class InvalidTransitionError(PaymentFlowError):
    """Action requested in a state that forbids it."""

    error_code = "invalid_transition"

    def __init__(
        self,
        action: str,
        state: Any,
        transaction_id: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.action = action
        self.state = state
        state_name = getattr(state, "value", state)
        super().__init__(
            message or f"Cannot {action} while in state {state_name}",
            transaction_id=transaction_id,
        )


class TransactionValidationError(PaymentFlowError):
    """Inputs for a transaction are missing or invalid."""

    error_code = "validation_failed"


class GatewayError(PaymentFlowError):
    """Transport-level failure talking to the backend."""

    error_code = "gateway_error"

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
        transaction_id: Optional[str] = None,
    ):
        super().__init__(message, transaction_id=transaction_id)
        self.error_type = error_type
        self.status_code = status_code
        self.original_error = original_error

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.error_type is not GatewayErrorType.PERMANENT


class InitiationError(PaymentFlowError):
    """Opening a transaction failed; no transaction was created."""

    error_code = "initiate_failed"
    retryable = True


class ConfirmationError(PaymentFlowError):
    """Confirm failed; the transaction is still pending and may be confirmed again."""

    error_code = "confirm_failed"
    retryable = True


class CancellationError(PaymentFlowError):
    """Cancel failed server-side. Logged only, the flow still ends cancelled."""

    error_code = "cancel_failed"


class CatalogError(PaymentFlowError):
    """The enabled bank list could not be loaded."""

    error_code = "catalog_unavailable"

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
