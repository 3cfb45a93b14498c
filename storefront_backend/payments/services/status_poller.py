# payments/services/status_poller.py

"""
STATUS POLLER

Bridges the gap before the IPN arrives:

    for attempt in 1..max_attempts:
        local order already terminal?      -> return it
        query processor, apply to order    -> terminal? return it
        wait interval (cancellable)
    -> pending, timed_out=True

A timeout means "still processing", never "failed". A failed status query
counts as a non-terminal attempt.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from orders.models import Order
from orders.services import order_store
from orders.services.exceptions import OrderNotFound
from payments.services.exceptions import StatusQueryError
from payments.services.pesapal import ProcessorStatus
from payments.services.reconciliation import reconcile_tracking_id

logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    tracking_id: str
    outcome: str
    attempts: int
    timed_out: bool = False
    cancelled: bool = False
    processor_status: ProcessorStatus | None = None
    last_error: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.outcome in Order.TERMINAL_PAYMENT_STATUSES


class StatusPoller:
    def __init__(
        self,
        *,
        session,
        interval_seconds: float = 3.0,
        max_attempts: int = 10,
        on_status=None,
        cancel_event: threading.Event | None = None,
    ):
        if int(max_attempts) < 1:
            raise ValueError("max_attempts must be at least 1")
        if float(interval_seconds) < 0:
            raise ValueError("interval_seconds cannot be negative")

        self.session = session
        self.interval_seconds = float(interval_seconds)
        self.max_attempts = int(max_attempts)
        self.on_status = on_status
        self.cancel_event = cancel_event or threading.Event()

    def _local_terminal_status(self, tracking_id: str) -> str | None:
        try:
            order = order_store.get_by_tracking_id(tracking_id)
        except OrderNotFound:
            return None
        return order.payment_status if order.is_payment_terminal else None

    def poll(self, tracking_id: str) -> PollResult:
        tracking_id = str(tracking_id or "").strip()
        processor_status = None
        last_error = ""

        for attempt in range(1, self.max_attempts + 1):
            if self.cancel_event.is_set():
                return PollResult(
                    tracking_id=tracking_id,
                    outcome=Order.PAYMENT_PENDING,
                    attempts=attempt - 1,
                    cancelled=True,
                    processor_status=processor_status,
                    last_error=last_error,
                )

            local = self._local_terminal_status(tracking_id)
            if local:
                return PollResult(
                    tracking_id=tracking_id,
                    outcome=local,
                    attempts=attempt,
                    processor_status=processor_status,
                )

            try:
                result = reconcile_tracking_id(session=self.session, tracking_id=tracking_id)
            except StatusQueryError as exc:
                last_error = str(exc)
                logger.warning(
                    "Status poll attempt failed",
                    extra={"tracking_id": tracking_id, "attempt": attempt, "error": last_error},
                )
            else:
                processor_status = result.processor_status
                if self.on_status is not None:
                    self.on_status(attempt, result)

                if result.payment_status in Order.TERMINAL_PAYMENT_STATUSES:
                    return PollResult(
                        tracking_id=tracking_id,
                        outcome=result.payment_status,
                        attempts=attempt,
                        processor_status=processor_status,
                    )

            if attempt < self.max_attempts and self.cancel_event.wait(self.interval_seconds):
                return PollResult(
                    tracking_id=tracking_id,
                    outcome=Order.PAYMENT_PENDING,
                    attempts=attempt,
                    cancelled=True,
                    processor_status=processor_status,
                    last_error=last_error,
                )

        logger.info(
            "Status poll budget exhausted",
            extra={"tracking_id": tracking_id, "attempts": self.max_attempts},
        )
        return PollResult(
            tracking_id=tracking_id,
            outcome=Order.PAYMENT_PENDING,
            attempts=self.max_attempts,
            timed_out=True,
            processor_status=processor_status,
            last_error=last_error,
        )
