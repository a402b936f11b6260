"""Narrow persistence interfaces for Orders and Transactions.

Business logic only talks to these classes. ``lock_*`` methods must be
called inside ``transaction.atomic()``; they take row-level locks with
``select_for_update``.
"""
from datetime import timedelta

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import NotFound
from .models import Order, OrderItem, Transaction


class OrderRepository:
    def find_by_id(self, order_id: str) -> Order:
        try:
            return Order.objects.get(order_id=order_id)
        except Order.DoesNotExist:
            raise NotFound(f"Order {order_id} not found")

    def lock(self, order_id: str) -> Order:
        try:
            return Order.objects.select_for_update().get(order_id=order_id)
        except Order.DoesNotExist:
            raise NotFound(f"Order {order_id} not found")

    def lock_pk(self, pk: int) -> Order:
        return Order.objects.select_for_update().get(pk=pk)

    def update_status(self, order: Order, **changes) -> Order:
        for name, value in changes.items():
            setattr(order, name, value)
        order.save(update_fields=[*changes.keys(), "updated_at"])
        return order


class TransactionRepository:
    def find_by_id(self, txn_id: str) -> Transaction:
        try:
            return Transaction.objects.select_related("order").get(txn_id=txn_id)
        except Transaction.DoesNotExist:
            raise NotFound(f"Transaction {txn_id} not found")

    def find_by_gateway_request_id(self, request_id: str):
        return Transaction.objects.select_related("order").filter(payment_request_id=request_id).first()

    def find_by_idempotency_key(self, key: str):
        return Transaction.objects.select_related("order").filter(idempotency_key=key).first()

    def latest_for_order(self, order: Order):
        return order.transactions.order_by("-created_at", "-pk").first()

    def lock(self, txn_id: str) -> Transaction:
        try:
            return Transaction.objects.select_for_update().get(txn_id=txn_id)
        except Transaction.DoesNotExist:
            raise NotFound(f"Transaction {txn_id} not found")

    def has_live_request(self, order: Order) -> bool:
        return order.transactions.filter(status=Transaction.PENDING, payment_request_id__isnull=False).exists()

    def stale_pending(self, older_than_minutes: int, limit: int):
        """Pending Transactions past the cutoff, least recently polled first."""
        cutoff = timezone.now() - timedelta(minutes=older_than_minutes)
        qs = Transaction.objects.select_related("order").filter(
            status=Transaction.PENDING, created_at__lt=cutoff
        ).order_by(F("last_polled_at").asc(nulls_first=True), "created_at")
        return list(qs[:limit])

    def mark_polled(self, txn: Transaction) -> None:
        txn.last_polled_at = timezone.now()
        Transaction.objects.filter(pk=txn.pk).update(last_polled_at=txn.last_polled_at)

    @transaction.atomic
    def insert_order_with_transaction(self, *, order_fields: dict, items: list, transaction_fields: dict):
        """Create Order, its line items and the first pending Transaction as one unit."""
        order = Order.objects.create(**order_fields)
        OrderItem.objects.bulk_create([OrderItem(order=order, **item) for item in items])
        txn = Transaction.objects.create(order=order, status=Transaction.PENDING, **transaction_fields)
        return order, txn

    @transaction.atomic
    def insert_transaction(self, order: Order, **fields) -> Transaction:
        return Transaction.objects.create(order=order, status=Transaction.PENDING, **fields)

    def update_status(self, txn: Transaction, **changes) -> Transaction:
        for name, value in changes.items():
            setattr(txn, name, value)
        txn.save(update_fields=[*changes.keys(), "updated_at"])
        return txn
