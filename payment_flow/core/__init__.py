"""Core payment flow: the transaction state machine and its abandonment guard."""
from .controller import PaymentFlowController
from .guard import AbandonmentGuard, AbandonReason

__all__ = [
    "AbandonReason",
    "AbandonmentGuard",
    "PaymentFlowController",
]
