"""
Flow states and the live snapshot cell.

State machine (client-local, derived from the transaction):

    SELECTING_BANK → INITIATING → AWAITING_CONFIRMATION → CONFIRMING → CONFIRMED
                                           ↓
                                      CANCELLING → CANCELLED

    INITIATING --failed--> SELECTING_BANK
    CONFIRMING --failed--> AWAITING_CONFIRMATION
    CONFIRMED / CANCELLED --reset--> SELECTING_BANK

A reader that needs "the state right now" must go through LiveSnapshot.current
at the moment it acts. Holding on to a FlowSnapshot is holding on to the past.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from payment_flow.domain.transaction import Transaction, TransferQrData


class FlowState(str, Enum):
    """Tag of the payment flow's current step."""

    SELECTING_BANK = "selecting_bank"
    INITIATING = "initiating"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"

    @property
    def is_in_flight(self) -> bool:
        return self in IN_FLIGHT_STATES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


IN_FLIGHT_STATES = frozenset(
    {FlowState.INITIATING, FlowState.CONFIRMING, FlowState.CANCELLING}
)
TERMINAL_STATES = frozenset({FlowState.CONFIRMED, FlowState.CANCELLED})


@dataclass(frozen=True)
class FlowSnapshot:
    """Everything the UI renders from, captured at one revision."""

    state: FlowState = FlowState.SELECTING_BANK
    bank_name: str = ""
    transaction: Optional[Transaction] = None
    last_error: Optional[Exception] = None
    revision: int = 0

    @property
    def transaction_id(self) -> Optional[str]:
        return self.transaction.id if self.transaction else None

    @property
    def reference_number(self) -> Optional[str]:
        return self.transaction.reference_number if self.transaction else None

    @property
    def qr_data(self) -> Optional[TransferQrData]:
        return self.transaction.qr_data if self.transaction else None

    def evolve(self, **changes: Any) -> FlowSnapshot:
        """Copy with changes applied and the revision bumped."""
        return replace(self, revision=self.revision + 1, **changes)


class LiveSnapshot:
    """
    Single mutable cell holding the current FlowSnapshot.

    One writer (the controller that owns it), any number of readers.
    Scoped to one flow instance, never shared between flows.
    """

    __slots__ = ("_current",)

    def __init__(self, initial: Optional[FlowSnapshot] = None):
        self._current = initial or FlowSnapshot()

    @property
    def current(self) -> FlowSnapshot:
        return self._current

    def set(self, snapshot: FlowSnapshot) -> None:
        if snapshot.revision <= self._current.revision:
            raise ValueError(
                f"Snapshot revision must advance ({snapshot.revision} <= {self._current.revision})"
            )
        self._current = snapshot
