"""Order/Transaction state machine.

All mutations of payment state go through :class:`PaymentLedger`. Every
method locks the Transaction row before the Order row (always in that
order) and never calls out to the gateway while holding a lock.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.utils import timezone

from . import notifications
from .exceptions import InvalidAmount, NotFound, PreconditionFailed, StateConflict, ValidationError
from .fees import round2, to_amount
from .models import Order, Transaction
from .repositories import OrderRepository, TransactionRepository

logger = logging.getLogger(__name__)

OUTCOMES = (Transaction.SUCCESS, Transaction.FAILED)

# Supplier-driven fulfillment, in order. Skipping forward is allowed.
FULFILLMENT_FLOW = [Order.CONFIRMED, Order.PROCESSING, Order.SHIPPED, Order.DELIVERED]
FULFILLMENT_NOTICES = {
    Order.SHIPPED: notifications.ORDER_SHIPPED,
    Order.DELIVERED: notifications.ORDER_DELIVERED,
}


@dataclass
class OutcomeResult:
    transaction: Transaction
    order: Order
    changed: bool


def _owned_by(principal, user_id: str) -> bool:
    return principal is None or principal.is_admin or principal.user_id == user_id


class PaymentLedger:
    def __init__(self, orders: Optional[OrderRepository] = None, transactions: Optional[TransactionRepository] = None):
        self.orders = orders or OrderRepository()
        self.transactions = transactions or TransactionRepository()

    def _conflict(self, message: str, *args):
        logger.critical("State conflict: " + message, *args)
        raise StateConflict(message % args)

    @staticmethod
    def _amount_matches(txn: Transaction, amount) -> bool:
        try:
            return round2(to_amount(amount)) == txn.amount
        except InvalidAmount:
            return False

    def _notify_payload(self, txn: Transaction, order: Order) -> dict:
        return {
            "order_id": order.order_id,
            "txn_id": txn.txn_id,
            "amount": str(txn.amount),
            "total": str(order.total),
            "commission": str(order.commission),
            "payment_id": txn.payment_id,
        }

    def apply_payment_outcome(self, txn_id: str, outcome: str, *, payment_id: str = "",
                              payload: Optional[dict] = None, amount=None) -> OutcomeResult:
        """Settle a pending Transaction as ``success`` or ``failed``.

        Idempotent: repeating the outcome a Transaction already has is a
        no-op. Contradicting a settled Transaction, or paying for an Order
        that was cancelled or already paid, raises StateConflict and
        changes nothing. So does a success whose paid ``amount`` (when the
        gateway reports one) differs from the amount charged.
        """
        if outcome not in OUTCOMES:
            raise ValidationError(f"Unknown payment outcome {outcome!r}")

        with transaction.atomic():
            txn = self.transactions.lock(txn_id)
            order = self.orders.lock_pk(txn.order_id)

            if txn.status == outcome:
                logger.info("Transaction %s already %s; ignoring repeat", txn_id, outcome)
                return OutcomeResult(txn, order, changed=False)
            if txn.status != Transaction.PENDING:
                self._conflict("transaction %s is %s, refusing %s", txn_id, txn.status, outcome)

            now = timezone.now()
            txn_changes = {"status": outcome, "settled_at": now}
            if payment_id:
                txn_changes["payment_id"] = payment_id
            if payload is not None:
                txn_changes["gateway_response"] = payload

            if outcome == Transaction.SUCCESS:
                if amount is not None and not self._amount_matches(txn, amount):
                    self._conflict("transaction %s charged %s but gateway reports %s paid", txn_id, txn.amount, amount)
                if order.status == Order.CANCELLED:
                    self._conflict("success for transaction %s but order %s is cancelled", txn_id, order.order_id)
                if order.payment_status != Order.PAYMENT_PENDING:
                    self._conflict("success for transaction %s but order %s payment is %s", txn_id, order.order_id, order.payment_status)
                self.transactions.update_status(txn, **txn_changes)
                order_changes = {"payment_status": Order.PAYMENT_SUCCESS, "status": Order.CONFIRMED}
                if txn.payment_request_id:
                    order_changes["payment_reference"] = txn.payment_request_id
                self.orders.update_status(order, **order_changes)

                body = self._notify_payload(txn, order)
                notifications.enqueue(recipient_id=order.vendor_id, kind=notifications.ORDER_CONFIRMED, payload=body, txn=txn)
                notifications.enqueue(recipient_id=order.supplier_id, kind=notifications.PAYMENT_RECEIVED, payload=body, txn=txn)
                logger.info("Transaction %s settled; order %s confirmed", txn_id, order.order_id)
            else:
                txn_changes["failure_reason"] = "Gateway reported the payment as failed"
                self.transactions.update_status(txn, **txn_changes)
                if order.payment_status == Order.PAYMENT_PENDING:
                    order_changes = {"payment_status": Order.PAYMENT_FAILED}
                    if order.status == Order.PENDING:
                        order_changes["status"] = Order.CANCELLED
                    self.orders.update_status(order, **order_changes)
                    notifications.enqueue(
                        recipient_id=order.vendor_id,
                        kind=notifications.PAYMENT_FAILED,
                        payload=self._notify_payload(txn, order),
                        txn=txn,
                    )
                logger.info("Transaction %s failed; order %s is %s", txn_id, order.order_id, order.status)

            return OutcomeResult(txn, order, changed=True)

    def attach_payment_request(self, txn_id: str, result) -> Transaction:
        """Record the gateway's request id and checkout URL on a pending Transaction."""
        with transaction.atomic():
            txn = self.transactions.lock(txn_id)
            order = self.orders.lock_pk(txn.order_id)
            if txn.status != Transaction.PENDING:
                self._conflict("payment request %s created for transaction %s which is already %s", result.request_id, txn_id, txn.status)
            self.transactions.update_status(
                txn,
                payment_request_id=result.request_id,
                payment_url=result.redirect_url,
                gateway_response=result.raw,
            )
            self.orders.update_status(order, payment_reference=result.request_id)
        return txn

    def mark_request_failed(self, txn_id: str, reason: str, payload: Optional[dict] = None) -> Transaction:
        """Close a Transaction whose payment request was never created.

        The Order stays pending so the vendor can retry with a new Transaction.
        """
        with transaction.atomic():
            txn = self.transactions.lock(txn_id)
            if txn.status == Transaction.FAILED:
                return txn
            if txn.status != Transaction.PENDING:
                self._conflict("cannot fail transaction %s, it is %s", txn_id, txn.status)
            changes = {"status": Transaction.FAILED, "failure_reason": (reason or "")[:255], "settled_at": timezone.now()}
            if payload is not None:
                changes["gateway_response"] = payload
            self.transactions.update_status(txn, **changes)
        logger.warning("Transaction %s closed without a payment request: %s", txn_id, reason)
        return txn

    def apply_refund(self, txn_id: str, payload: Optional[dict] = None) -> OutcomeResult:
        with transaction.atomic():
            txn = self.transactions.lock(txn_id)
            order = self.orders.lock_pk(txn.order_id)
            if txn.status == Transaction.REFUNDED:
                return OutcomeResult(txn, order, changed=False)
            if txn.status != Transaction.SUCCESS:
                self._conflict("cannot refund transaction %s, it is %s", txn_id, txn.status)

            changes = {"status": Transaction.REFUNDED}
            if payload is not None:
                changes["gateway_response"] = payload
            self.transactions.update_status(txn, **changes)
            order_changes = {"payment_status": Order.PAYMENT_REFUNDED}
            if order.status in (Order.CONFIRMED, Order.PROCESSING):
                order_changes["status"] = Order.CANCELLED
            self.orders.update_status(order, **order_changes)
            notifications.enqueue(
                recipient_id=order.vendor_id,
                kind=notifications.PAYMENT_REFUNDED,
                payload=self._notify_payload(txn, order),
                txn=txn,
            )
        logger.info("Transaction %s refunded; order %s is %s", txn_id, order.order_id, order.status)
        return OutcomeResult(txn, order, changed=True)

    def advance_fulfillment(self, order_id: str, new_status: str, principal=None) -> Order:
        if new_status not in FULFILLMENT_FLOW:
            raise ValidationError(f"Unsupported fulfillment status {new_status!r}")
        with transaction.atomic():
            order = self.orders.lock(order_id)
            if not _owned_by(principal, order.supplier_id):
                raise NotFound(f"Order {order_id} not found")
            if not order.is_paid:
                raise PreconditionFailed(f"Order {order_id} payment is {order.payment_status}, not success")
            if order.status not in FULFILLMENT_FLOW:
                raise StateConflict(f"Order {order_id} is {order.status}")
            if FULFILLMENT_FLOW.index(new_status) <= FULFILLMENT_FLOW.index(order.status):
                raise StateConflict(f"Order {order_id} is already {order.status}")
            self.orders.update_status(order, status=new_status)

            kind = FULFILLMENT_NOTICES.get(new_status)
            if kind:
                notifications.enqueue(
                    recipient_id=order.vendor_id,
                    kind=kind,
                    payload={"order_id": order.order_id},
                    dedupe_key=f"{order.order_id}:{kind}:{order.vendor_id}",
                )
        logger.info("Order %s moved to %s", order_id, new_status)
        return order

    def cancel_checkout(self, order_id: str, principal=None) -> Order:
        """Vendor abandons checkout before paying.

        A success callback arriving later for this order is a StateConflict.
        """
        with transaction.atomic():
            order = self.orders.lock(order_id)
            if not _owned_by(principal, order.vendor_id):
                raise NotFound(f"Order {order_id} not found")
            if order.status == Order.CANCELLED and not order.is_paid:
                return order
            if order.status != Order.PENDING or order.is_paid:
                raise StateConflict(f"Order {order_id} is {order.status}/{order.payment_status} and can't be abandoned")
            self.orders.update_status(order, status=Order.CANCELLED)
        logger.info("Order %s abandoned at checkout", order_id)
        return order
