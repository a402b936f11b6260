from decimal import Decimal

from django.apps import apps
from django.test import TestCase

from payments.fees import FeeBreakdown
from payments.models import Order, Transaction

from .factories import make_order, make_transaction


class ModelLoadingTests(TestCase):
    def test_app_registers_its_models(self):
        config = apps.get_app_config("payments")
        self.assertEqual(
            {m.__name__ for m in config.get_models()},
            {"Order", "OrderItem", "Transaction", "Notification"},
        )

    def test_expected_fees_from_order_total(self):
        txn = make_transaction(make_order(total="1000.00"))
        self.assertEqual(
            txn.expected_fees(),
            FeeBreakdown(Decimal("1000.00"), Decimal("23.00"), Decimal("1023.00"), Decimal("25.00")),
        )

    def test_is_paid(self):
        order = make_order()
        self.assertFalse(order.is_paid)
        order.payment_status = Order.PAYMENT_SUCCESS
        self.assertTrue(order.is_paid)

    def test_new_transaction_has_never_been_polled(self):
        txn = make_transaction(make_order())
        self.assertEqual(txn.status, Transaction.PENDING)
        self.assertIsNone(txn.last_polled_at)
