"""Vendor checkout: price the order, persist it, and open a gateway payment request."""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from django.db import IntegrityError

from . import fees
from .exceptions import GatewayRejected, GatewayUnreachable, NotFound, StateConflict, ValidationError
from .integrations.instamojo import PaymentIntent, get_client, validate_intent
from .ledger import PaymentLedger
from .models import Order, Transaction
from .repositories import OrderRepository, TransactionRepository
from .utils import gen_idempotency_key, gen_txn_id, generate_order_id

logger = logging.getLogger(__name__)

IDEMPOTENCY_KEY_MAX = Transaction._meta.get_field("idempotency_key").max_length


@dataclass
class Buyer:
    name: str
    email: str
    phone: str

    @classmethod
    def from_dict(cls, data) -> "Buyer":
        data = data if isinstance(data, dict) else {}
        return cls(
            name=str(data.get("name") or "").strip(),
            email=str(data.get("email") or "").strip(),
            phone=str(data.get("phone") or "").strip(),
        )


@dataclass
class CheckoutResult:
    order: Order
    transaction: Transaction
    created: bool = True


def _line_items(items) -> list:
    rows = []
    for item in items:
        product_id = str(item.get("product_id") or "").strip()
        if not product_id:
            raise ValidationError("Every item needs a product_id")
        unit_price = fees.round2(fees.to_amount(item.get("unit_price")))
        rows.append({
            "product_id": product_id,
            "name": str(item.get("name") or "")[:128],
            "quantity": item["quantity"],
            "unit_price": unit_price,
            "line_total": fees.round2(unit_price * item["quantity"]),
        })
    return rows


class CheckoutService:
    def __init__(self, client=None, ledger: Optional[PaymentLedger] = None,
                 orders: Optional[OrderRepository] = None, transactions: Optional[TransactionRepository] = None):
        self.client = client or get_client()
        self.orders = orders or OrderRepository()
        self.transactions = transactions or TransactionRepository()
        self.ledger = ledger or PaymentLedger(self.orders, self.transactions)

    def _redirect_url(self, order_id: str) -> str:
        base = self.client.config.redirect_url
        sep = "&" if "?" in base else "?"
        return f"{base}{sep}{urlencode({'order_id': order_id})}"

    def _intent(self, order_id: str, charge, buyer: Buyer) -> PaymentIntent:
        intent = PaymentIntent(
            purpose=f"Order Payment - {order_id}",
            amount=charge,
            buyer_name=buyer.name,
            buyer_email=buyer.email,
            buyer_phone=buyer.phone,
            redirect_url=self._redirect_url(order_id),
        )
        validate_intent(intent)
        return intent

    def _replay(self, principal, key: Optional[str]) -> Optional[CheckoutResult]:
        """Return the earlier result for a reused idempotency key, if any."""
        if not key:
            return None
        if len(key) > IDEMPOTENCY_KEY_MAX:
            raise ValidationError(f"Idempotency key must be at most {IDEMPOTENCY_KEY_MAX} characters")
        existing = self.transactions.find_by_idempotency_key(key)
        if existing is None:
            return None
        if existing.order.vendor_id != principal.user_id:
            raise StateConflict("Idempotency key already used")
        if existing.status == Transaction.PENDING and not existing.payment_request_id:
            raise StateConflict("A payment attempt with this key is unresolved; start a new attempt")
        return CheckoutResult(existing.order, existing, created=False)

    def _request_payment(self, txn: Transaction, intent: PaymentIntent) -> Transaction:
        # No locks are held here: the gateway may be slow.
        try:
            result = self.client.create_payment_request(intent)
        except GatewayRejected as e:
            self.ledger.mark_request_failed(txn.txn_id, f"Gateway rejected: {e}")
            raise
        except GatewayUnreachable:
            logger.warning("Gateway unreachable for transaction %s; left pending for reconciliation", txn.txn_id)
            raise
        return self.ledger.attach_payment_request(txn.txn_id, result)

    def start_checkout(self, principal, *, supplier_id, items, buyer: Buyer, delivery_charge=0,
                       idempotency_key: Optional[str] = None) -> CheckoutResult:
        replay = self._replay(principal, idempotency_key)
        if replay:
            return replay

        supplier_id = str(supplier_id or "").strip()
        if not supplier_id:
            raise ValidationError("supplier_id is required")
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise ValidationError("items must be a list of objects")

        totals = fees.order_totals(items, delivery_charge)
        fees.check_order_limits(totals.total)
        figures = fees.breakdown(totals.total)
        order_id = generate_order_id()
        intent = self._intent(order_id, figures.amount_to_charge, buyer)

        try:
            order, txn = self.transactions.insert_order_with_transaction(
                order_fields={
                    "order_id": order_id,
                    "vendor_id": principal.user_id,
                    "supplier_id": supplier_id,
                    "subtotal": totals.subtotal,
                    "delivery_charge": totals.delivery_charge,
                    "commission": figures.commission,
                    "total": totals.total,
                },
                items=_line_items(items),
                transaction_fields=self._transaction_fields(figures, intent, buyer, idempotency_key),
            )
        except IntegrityError:
            # a concurrent request with the same key won the insert
            replay = self._replay(principal, idempotency_key)
            if replay:
                return replay
            raise
        logger.info("Order %s created for vendor %s, total %s", order.order_id, order.vendor_id, order.total)
        txn = self._request_payment(txn, intent)
        return CheckoutResult(order, txn)

    def retry_payment(self, principal, order_id: str, *, buyer: Buyer, idempotency_key: Optional[str] = None) -> CheckoutResult:
        replay = self._replay(principal, idempotency_key)
        if replay:
            return replay

        order = self.orders.find_by_id(order_id)
        if not (principal.is_admin or order.vendor_id == principal.user_id):
            raise NotFound(f"Order {order_id} not found")
        if order.status != Order.PENDING or order.payment_status != Order.PAYMENT_PENDING:
            raise StateConflict(f"Order {order_id} is no longer awaiting payment")
        if self.transactions.has_live_request(order):
            raise StateConflict(f"Order {order_id} already has an open payment request")

        figures = fees.breakdown(order.total)
        intent = self._intent(order.order_id, figures.amount_to_charge, buyer)
        try:
            txn = self.transactions.insert_transaction(order, **self._transaction_fields(figures, intent, buyer, idempotency_key))
        except IntegrityError:
            replay = self._replay(principal, idempotency_key)
            if replay:
                return replay
            raise
        logger.info("Retrying payment for order %s with transaction %s", order.order_id, txn.txn_id)
        txn = self._request_payment(txn, intent)
        return CheckoutResult(order, txn)

    def refund_payment(self, txn_id: str, reason: str) -> Transaction:
        txn = self.transactions.find_by_id(txn_id)
        if txn.status == Transaction.REFUNDED:
            return txn
        if txn.status != Transaction.SUCCESS:
            raise StateConflict(f"Transaction {txn_id} is {txn.status} and can't be refunded")
        if not txn.payment_id:
            raise StateConflict(f"Transaction {txn_id} has no gateway payment id")
        data = self.client.refund(txn.payment_id, txn.amount, reason or "Refund requested")
        return self.ledger.apply_refund(txn_id, payload=data).transaction

    @staticmethod
    def _transaction_fields(figures, intent: PaymentIntent, buyer: Buyer, idempotency_key) -> dict:
        return {
            "txn_id": gen_txn_id(),
            "idempotency_key": idempotency_key or gen_idempotency_key(),
            "amount": figures.amount_to_charge,
            "fees": figures.gateway_fee,
            "commission": figures.commission,
            "purpose": intent.purpose,
            "buyer_name": buyer.name,
            "buyer_email": buyer.email,
            "buyer_phone": buyer.phone,
        }
