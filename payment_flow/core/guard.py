"""
Abandonment guard.

Makes sure a transaction is never left pending because the user walked away
(back navigation, unmount, app kept in the background) without confirming or
cancelling.

The guard holds the controller's LiveSnapshot cell, not a snapshot. It reads
the cell exactly once per teardown, at the teardown instant, so it always acts
on the transaction that is open now rather than whatever was open when the
guard was registered.

Policy at teardown:
- AWAITING_CONFIRMATION: claim the transaction for cancellation and send the
  cancel in the background; teardown does not wait for it
- INITIATING / CONFIRMING: no action (no id yet, or a confirm is racing the
  gateway and must be allowed to resolve)
- anything else: no action

A guard issues at most one cancel. Once it has fired, or once a final
teardown (navigation back, unmount) has run, it ignores every later trigger.
"""
import asyncio
from enum import Enum
from typing import Optional, Set

import structlog

from payment_flow.config import get_settings
from payment_flow.core.controller import PaymentFlowController
from payment_flow.domain.states import FlowState
from payment_flow.domain.transaction import Transaction
from payment_flow.monitoring.metrics import abandoned_flows_total

logger = structlog.get_logger(__name__)

BACKGROUND_APP_STATES = frozenset({"background", "inactive"})
FOREGROUND_APP_STATE = "active"


class AbandonReason(str, Enum):
    """Why the flow is being torn down."""

    NAVIGATION_BACK = "navigation_back"
    UNMOUNT = "unmount"
    BACKGROUNDED = "backgrounded"

    @property
    def is_final(self) -> bool:
        """Final reasons end the flow instance; backgrounding may be resumed from."""
        return self is not AbandonReason.BACKGROUNDED


class AbandonmentGuard:
    """Issues at most one fire-and-forget cancel when the user abandons the flow."""

    def __init__(
        self,
        controller: PaymentFlowController,
        background_threshold_seconds: Optional[float] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """
        Initialize abandonment guard.

        Args:
            controller: Controller whose transaction is protected
            background_threshold_seconds: Time in background before teardown
                (defaults to settings)
            loop: Loop that runs the cancel when a hook fires outside a
                running loop (a CLI driving the loop step by step)
        """
        self._controller = controller
        self._live = controller.live
        self._loop = loop
        self.background_threshold_seconds = (
            background_threshold_seconds
            if background_threshold_seconds is not None
            else get_settings().background_cancel_threshold_seconds
        )
        self._detached = False
        self._background_timer: Optional[asyncio.TimerHandle] = None
        self._pending: Set["asyncio.Task[Transaction]"] = set()
        self._log = logger.bind(flow_id=controller.flow_id)

    @property
    def detached(self) -> bool:
        return self._detached

    @property
    def pending_cancels(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def on_navigation_back(self) -> Optional["asyncio.Task[Transaction]"]:
        return self.teardown(AbandonReason.NAVIGATION_BACK)

    def on_unmount(self) -> Optional["asyncio.Task[Transaction]"]:
        return self.teardown(AbandonReason.UNMOUNT)

    def on_app_state_change(self, app_state: str) -> None:
        """
        Track foreground/background transitions.

        Going to the background arms a timer; coming back before it fires
        disarms it. Must be called from the event loop thread.
        """
        if self._detached:
            return

        if app_state in BACKGROUND_APP_STATES:
            if self._background_timer is None:
                self._arm_background_timer()
        elif app_state == FOREGROUND_APP_STATE:
            if self._background_timer is not None:
                self._log.debug("background_timer_disarmed")
            self._disarm_background_timer()

    def _on_background_expired(self) -> None:
        self._background_timer = None
        self.teardown(AbandonReason.BACKGROUNDED)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def teardown(self, reason: AbandonReason) -> Optional["asyncio.Task[Transaction]"]:
        """
        Handle the user leaving the flow.

        Never blocks: when a cancel is needed it is scheduled as a task on the
        running loop (or the loop given at construction) and returned so
        callers may observe it if they wish. With an open transaction and no
        loop to run the cancel, nothing is changed and None is returned.

        Args:
            reason: What triggered the teardown

        Returns:
            Optional[asyncio.Task]: The scheduled cancel, or None if no action
        """
        self._disarm_background_timer()
        if self._detached:
            self._log.debug("teardown_ignored_detached", reason=reason.value)
            return None

        snapshot = self._live.current
        loop = self._event_loop()
        if snapshot.state is FlowState.AWAITING_CONFIRMATION and loop is None:
            # State untouched so the hook can be retried from the loop
            abandoned_flows_total.labels(reason=reason.value, action="no_loop").inc()
            self._log.error(
                "abandonment_no_event_loop",
                reason=reason.value,
                transaction_id=snapshot.transaction_id,
            )
            return None

        if reason.is_final:
            self._detached = True
            self._controller.close()

        if snapshot.state is not FlowState.AWAITING_CONFIRMATION:
            abandoned_flows_total.labels(reason=reason.value, action="no_action").inc()
            self._log.info(
                "abandonment_no_action",
                reason=reason.value,
                state=snapshot.state.value,
                transaction_id=snapshot.transaction_id,
            )
            if not reason.is_final and snapshot.state in (
                FlowState.INITIATING,
                FlowState.CONFIRMING,
            ):
                # Still in the background; look again once the call settles
                self._arm_background_timer()
            return None

        # Moves the flow to CANCELLING before anything else can run on the loop
        finish_cancel = self._controller.request_cancel()
        task = loop.create_task(
            finish_cancel, name=f"abandon-cancel-{snapshot.transaction_id}"
        )
        self._detached = True
        self._pending.add(task)
        task.add_done_callback(self._on_cancel_done)

        abandoned_flows_total.labels(reason=reason.value, action="cancel_issued").inc()
        self._log.info(
            "abandonment_cancel_issued",
            reason=reason.value,
            transaction_id=snapshot.transaction_id,
        )
        return task

    async def wait_pending(self) -> None:
        """Wait for scheduled cancels to settle, e.g. before the loop shuts down."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_cancel_done(self, task: "asyncio.Task[Transaction]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            self._log.warning("abandonment_cancel_interrupted", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            self._log.warning(
                "abandonment_cancel_errored",
                task=task.get_name(),
                error=str(error),
                error_type=type(error).__name__,
            )

    def _event_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            if self._loop is not None and not self._loop.is_closed():
                return self._loop
            return None

    def _arm_background_timer(self) -> None:
        loop = self._event_loop()
        if loop is None:
            self._log.warning("background_timer_not_armed", reason="no event loop")
            return
        self._background_timer = loop.call_later(
            self.background_threshold_seconds, self._on_background_expired
        )
        self._log.debug(
            "background_timer_armed",
            threshold_seconds=self.background_threshold_seconds,
        )

    def _disarm_background_timer(self) -> None:
        if self._background_timer is not None:
            self._background_timer.cancel()
            self._background_timer = None
