"""
Payment flow controller.

Owns the flow state machine and the identity of the one transaction that may
be open at a time. The UI calls the operations below; the controller calls the
gateway. Suspension happens only at the catalog fetch and the three gateway
calls, and every guard check is made against the live snapshot with no await
between the check and the state write that claims the transition.

While a gateway call is in flight, every other action is rejected, never
queued: a queued cancel could otherwise reach the server after a confirm it
was meant to precede, or the other way around.
"""
import asyncio
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, ContextManager, List, Optional

import structlog

from payment_flow.domain.errors import (
    CancellationError,
    ConfirmationError,
    InitiationError,
    InvalidTransitionError,
    PaymentFlowError,
    TransactionValidationError,
)
from payment_flow.domain.states import FlowSnapshot, FlowState, LiveSnapshot
from payment_flow.domain.transaction import BankDestination, BillType, Transaction
from payment_flow.integrations.catalog import PaymentMethodCatalog
from payment_flow.integrations.gateway import ConfirmationReceipt, TransactionGateway
from payment_flow.monitoring.metrics import flow_transitions_total

logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[FlowSnapshot], None]


class PaymentFlowController:
    """
    State machine for one bank-transfer payment.

    Operations:
    - select_bank: change the destination while no transaction is open
    - initiate: open a transaction on the gateway
    - confirm: tell the gateway the transfer was sent
    - cancel: abandon the open transaction (best effort)
    - reset: start over after a terminal state
    """

    def __init__(
        self,
        room_id: str,
        amount: Decimal | int | float | str,
        bill_type: BillType | str,
        gateway: TransactionGateway,
        catalog: Optional[PaymentMethodCatalog] = None,
        bank_name: str = "",
    ) -> None:
        """
        Initialize a flow instance.

        Args:
            room_id: Room the bill belongs to
            amount: Amount to pay
            bill_type: Bill being settled
            gateway: Transaction gateway
            catalog: Source of enabled banks (optional)
            bank_name: Initial bank selection
        """
        self.room_id = room_id
        self.amount = amount
        self.bill_type = bill_type
        self.gateway = gateway
        self.catalog = catalog
        self.flow_id = uuid.uuid4().hex[:12]

        # None until load_banks() runs; [] means no bank is configured
        self.available_banks: Optional[List[BankDestination]] = None
        self.last_receipt: Optional[ConfirmationReceipt] = None

        self.live = LiveSnapshot(FlowSnapshot(bank_name=bank_name.strip()))
        self._listeners: List[SnapshotListener] = []
        self._closed = False
        self._log = logger.bind(room_id=room_id, flow_id=self.flow_id)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> FlowSnapshot:
        return self.live.current

    @property
    def state(self) -> FlowState:
        return self.live.current.state

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a callback run with every new snapshot.

        Returns:
            Callable[[], None]: Unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def load_banks(self) -> List[BankDestination]:
        """
        Fetch enabled banks and make sure the selection is one of them.

        Returns:
            List[BankDestination]: Enabled banks, possibly empty

        Raises:
            CatalogError: If the catalog could not be reached
        """
        self._require_state("load banks", FlowState.SELECTING_BANK)
        if self.catalog is None:
            raise PaymentFlowError("No payment method catalog configured")

        with self._log_context():
            banks = list(await self.catalog.list_enabled_banks(self.room_id))
        self.available_banks = banks

        current = self.live.current
        names = [bank.bank_name for bank in banks]
        if current.state is FlowState.SELECTING_BANK and current.bank_name not in names:
            self._commit(bank_name=names[0] if names else "")

        self._log.info("banks_loaded", bank_count=len(banks))
        return list(banks)

    def select_bank(self, bank_name: str) -> FlowSnapshot:
        """
        Change the destination bank.

        Raises:
            InvalidTransitionError: Outside SELECTING_BANK
            TransactionValidationError: Blank or not an enabled bank
        """
        self._require_state("select bank", FlowState.SELECTING_BANK)

        name = (bank_name or "").strip()
        if not name:
            raise TransactionValidationError("Select a bank")
        if self.available_banks is not None and name not in {
            bank.bank_name for bank in self.available_banks
        }:
            raise TransactionValidationError(f"{name} is not an enabled bank for this room")

        return self._commit(bank_name=name, last_error=None)

    async def initiate(self) -> Transaction:
        """
        Open a transaction for the selected bank.

        Returns:
            Transaction: The pending transaction

        Raises:
            InvalidTransitionError: Outside SELECTING_BANK or after close()
            TransactionValidationError: No bank selected or none available
            InitiationError: The gateway did not open a transaction
        """
        current = self._require_open_selection()
        if self.catalog is not None and self.available_banks is None:
            requested = current.bank_name
            await self.load_banks()
            current = self._require_open_selection()
            if requested and self.available_banks and requested != current.bank_name:
                raise TransactionValidationError(
                    f"{requested} is not an enabled bank for this room"
                )
        if self.available_banks is not None and not self.available_banks:
            raise TransactionValidationError("No bank accounts are configured for this room")
        if not current.bank_name:
            raise TransactionValidationError("Select a bank before starting the transfer")

        draft = Transaction.draft(self.room_id, self.amount, self.bill_type, current.bank_name)
        self._commit(state=FlowState.INITIATING, transaction=draft, last_error=None)

        try:
            with self._log_context():
                opened = await self.gateway.initiate(
                    draft.room_id, draft.amount, draft.bill_type, draft.bank_name
                )
            transaction = draft.opened(
                opened.id,
                opened.reference_number,
                opened.instructions,
                qr_data=opened.qr_data,
            )
        except asyncio.CancelledError:
            self._settle(FlowState.INITIATING, None, state=FlowState.SELECTING_BANK, transaction=None)
            raise
        except Exception as e:
            error = InitiationError(f"Failed to initiate bank transfer: {e}")
            self._log.warning("initiate_failed", error=str(e), error_type=type(e).__name__)
            self._settle(
                FlowState.INITIATING,
                None,
                state=FlowState.SELECTING_BANK,
                transaction=None,
                last_error=error,
            )
            raise error from e

        if not self._settle(
            FlowState.INITIATING,
            None,
            state=FlowState.AWAITING_CONFIRMATION,
            transaction=transaction,
        ):
            raise InvalidTransitionError(
                "open transaction", self.state, transaction_id=transaction.id
            )

        if self._closed:
            # Torn down while the request was in flight
            self._log.info("initiate_resolved_after_close", transaction_id=transaction.id)
            return await self.cancel()

        return transaction

    async def confirm(
        self,
        deposit_date: Optional[date] = None,
        proof_url: Optional[str] = None,
    ) -> Transaction:
        """
        Confirm the open transaction.

        On failure the transaction stays pending and confirm may be retried.

        Raises:
            InvalidTransitionError: Outside AWAITING_CONFIRMATION
            ConfirmationError: The gateway did not acknowledge
        """
        current = self._require_state("confirm", FlowState.AWAITING_CONFIRMATION)
        transaction = current.transaction
        self._commit(state=FlowState.CONFIRMING, last_error=None)

        try:
            with self._log_context():
                receipt = await self.gateway.confirm(
                    transaction.id,
                    transaction.bank_name,
                    deposit_date=deposit_date,
                    proof_url=proof_url,
                )
        except asyncio.CancelledError:
            self._settle(
                FlowState.CONFIRMING, transaction.id, state=FlowState.AWAITING_CONFIRMATION
            )
            raise
        except Exception as e:
            error = ConfirmationError(
                f"Unable to confirm transfer: {e}", transaction_id=transaction.id
            )
            self._log.warning(
                "confirm_failed",
                transaction_id=transaction.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._settle(
                FlowState.CONFIRMING,
                transaction.id,
                state=FlowState.AWAITING_CONFIRMATION,
                last_error=error,
            )
            raise error from e

        confirmed = transaction.confirmed()
        self.last_receipt = receipt
        self._settle(
            FlowState.CONFIRMING,
            transaction.id,
            state=FlowState.CONFIRMED,
            transaction=confirmed,
        )
        return confirmed

    async def cancel(self) -> Transaction:
        """
        Cancel the open transaction.

        Always ends CANCELLED locally. A gateway failure is logged, not raised,
        and not retried.

        Raises:
            InvalidTransitionError: Outside AWAITING_CONFIRMATION
        """
        return await self.request_cancel()

    def request_cancel(self) -> Awaitable[Transaction]:
        """
        Claim the open transaction for cancellation right now.

        The state moves to CANCELLING before this returns; the returned
        awaitable performs the gateway call. Callers that must not block
        (teardown) schedule it as a task.

        Raises:
            InvalidTransitionError: Outside AWAITING_CONFIRMATION
        """
        current = self._require_state("cancel", FlowState.AWAITING_CONFIRMATION)
        transaction = current.transaction
        self._commit(state=FlowState.CANCELLING, last_error=None)
        return self._finish_cancel(transaction)

    async def _finish_cancel(self, transaction: Transaction) -> Transaction:
        cancelled = transaction.cancelled()
        try:
            with self._log_context():
                await self.gateway.cancel(transaction.id)
        except asyncio.CancelledError:
            self._settle(
                FlowState.CANCELLING,
                transaction.id,
                state=FlowState.CANCELLED,
                transaction=cancelled,
            )
            raise
        except Exception as e:
            failure = CancellationError(
                f"Cancel not acknowledged: {e}", transaction_id=transaction.id
            )
            self._log.warning(
                "transaction_cancel_failed",
                transaction_id=transaction.id,
                error=failure.message,
                error_type=type(e).__name__,
            )

        self._settle(
            FlowState.CANCELLING,
            transaction.id,
            state=FlowState.CANCELLED,
            transaction=cancelled,
        )
        return cancelled

    def reset(self) -> FlowSnapshot:
        """
        Return to a fresh SELECTING_BANK state after a terminal state.

        A no-op when already selecting a bank with no transaction.

        Raises:
            InvalidTransitionError: From a non-terminal state or after close()
        """
        current = self.live.current
        if current.state is FlowState.SELECTING_BANK and current.transaction is None:
            return current

        current = self._require_state("reset", FlowState.CONFIRMED, FlowState.CANCELLED)
        if self._closed:
            raise InvalidTransitionError("reset", current.state, message="Flow has been closed")

        self.last_receipt = None
        return self._commit(state=FlowState.SELECTING_BANK, transaction=None, last_error=None)

    def close(self) -> None:
        """Mark the flow instance torn down. Does not touch the gateway."""
        if self._closed:
            return
        self._closed = True
        self._log.info(
            "flow_closed",
            state=self.state.value,
            transaction_id=self.snapshot.transaction_id,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_state(self, action: str, *allowed: FlowState) -> FlowSnapshot:
        current = self.live.current
        if current.state not in allowed:
            self._log.warning(
                "flow_action_rejected",
                action=action,
                state=current.state.value,
                transaction_id=current.transaction_id,
            )
            raise InvalidTransitionError(
                action, current.state, transaction_id=current.transaction_id
            )
        return current

    def _require_open_selection(self) -> FlowSnapshot:
        current = self._require_state("initiate", FlowState.SELECTING_BANK)
        if self._closed:
            raise InvalidTransitionError(
                "initiate", current.state, message="Flow has been closed"
            )
        return current

    def _log_context(self) -> ContextManager[Any]:
        """Tag log events emitted by collaborators during a remote call."""
        return structlog.contextvars.bound_contextvars(
            flow_id=self.flow_id, room_id=self.room_id
        )

    def _settle(
        self,
        expected_state: FlowState,
        transaction_id: Optional[str],
        **changes: Any,
    ) -> bool:
        """Apply the result of a gateway call if the flow has not moved on."""
        current = self.live.current
        if current.state is not expected_state or current.transaction_id != transaction_id:
            self._log.warning(
                "stale_result_dropped",
                expected_state=expected_state.value,
                state=current.state.value,
                transaction_id=transaction_id,
                current_transaction_id=current.transaction_id,
            )
            return False
        self._commit(**changes)
        return True

    def _commit(self, **changes: Any) -> FlowSnapshot:
        previous = self.live.current
        snapshot = previous.evolve(**changes)
        self.live.set(snapshot)

        if snapshot.state is not previous.state:
            flow_transitions_total.labels(
                from_state=previous.state.value, to_state=snapshot.state.value
            ).inc()
            self._log.info(
                "flow_transition",
                from_state=previous.state.value,
                to_state=snapshot.state.value,
                transaction_id=snapshot.transaction_id,
                revision=snapshot.revision,
            )

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self._log.exception("snapshot_listener_failed")
        return snapshot
