import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

from .exceptions import GatewayError, StateConflict
from .integrations.instamojo import STATE_FAILED, STATE_PENDING, get_client
from .ledger import PaymentLedger
from .models import Transaction
from .repositories import TransactionRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    settled: int = 0
    failed: int = 0
    still_pending: int = 0
    conflicts: int = 0
    errors: int = 0


class ReconciliationSweep:
    """Poll the gateway for Transactions stuck in ``pending``.

    Outcomes go through the same ``apply_payment_outcome`` path as webhooks.
    Requests the gateway still reports as pending after
    ``expire_after_minutes`` are treated as abandoned and failed.
    """

    def __init__(self, client=None, ledger: Optional[PaymentLedger] = None,
                 transactions: Optional[TransactionRepository] = None,
                 older_than_minutes: Optional[int] = None, expire_after_minutes: Optional[int] = None,
                 limit: int = 50, pause: float = 0):
        self.client = client or get_client()
        self.transactions = transactions or TransactionRepository()
        self.ledger = ledger or PaymentLedger(transactions=self.transactions)
        self.older_than_minutes = older_than_minutes if older_than_minutes is not None else settings.PAYMENTS_RECONCILE_AFTER_MINUTES
        self.expire_after_minutes = expire_after_minutes if expire_after_minutes is not None else settings.PAYMENTS_EXPIRE_AFTER_MINUTES
        self.limit = limit
        self.pause = pause

    def _expired(self, txn: Transaction) -> bool:
        return txn.created_at < timezone.now() - timedelta(minutes=self.expire_after_minutes)

    def reconcile(self, txn: Transaction, report: SweepReport) -> None:
        if not txn.payment_request_id:
            self.ledger.mark_request_failed(txn.txn_id, "Payment request was never created")
            report.failed += 1
            return
        self.transactions.mark_polled(txn)
        try:
            status = self.client.get_payment_status(txn.payment_request_id)
        except GatewayError as e:
            logger.warning("Status poll for %s failed: %s", txn.payment_request_id, e)
            report.errors += 1
            return

        state = status.state
        if state == STATE_PENDING:
            if not self._expired(txn):
                report.still_pending += 1
                return
            logger.info("Payment request %s still pending after %s minutes; expiring", txn.payment_request_id, self.expire_after_minutes)
            state = STATE_FAILED

        try:
            result = self.ledger.apply_payment_outcome(
                txn.txn_id, state, payment_id=status.payment_id, payload=status.raw, amount=status.amount
            )
        except StateConflict:
            report.conflicts += 1
            return
        if result.changed:
            if state == STATE_FAILED:
                report.failed += 1
            else:
                report.settled += 1

    def run_once(self) -> SweepReport:
        report = SweepReport()
        for txn in self.transactions.stale_pending(self.older_than_minutes, self.limit):
            report.checked += 1
            try:
                self.reconcile(txn, report)
            except StateConflict:
                report.conflicts += 1
            except Exception:
                # one bad row must not stop the sweep
                logger.exception("Reconciling transaction %s failed", txn.txn_id)
                report.errors += 1
            if self.pause:
                time.sleep(self.pause)
        logger.info("Reconciliation sweep: %s", report)
        return report

    def run_forever(self, stop_event: threading.Event, interval: float, on_report=None) -> None:
        """Sweep every ``interval`` seconds until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                report = self.run_once()
            except Exception:
                logger.exception("Reconciliation sweep failed; retrying in %s seconds", interval)
            else:
                if on_report:
                    on_report(report)
            stop_event.wait(interval)
