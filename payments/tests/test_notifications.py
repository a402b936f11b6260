from datetime import timedelta
from io import StringIO
from unittest.mock import Mock

from django.contrib.auth import get_user_model
from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from payments import notifications
from payments.exceptions import StateConflict
from payments.ledger import PaymentLedger
from payments.models import Notification, Transaction
from payments.notifications import EmailNotifier, dispatch_pending, enqueue

from .factories import make_order, make_transaction


@override_settings(EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend", PAYMENTS_FROM_EMAIL="payments@vendormitra.test")
class EmailNotifierTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user("asha", "asha@example.com", "pw", first_name="Asha")

    def test_sends_rendered_email(self):
        EmailNotifier().notify(str(self.user.pk), notifications.ORDER_CONFIRMED,
                               {"order_id": "ORD1", "amount": "1023.00", "total": "1000.00", "payment_id": "PAY1"})
        self.assertEqual(len(mail.outbox), 1)
        msg = mail.outbox[0]
        self.assertEqual(msg.subject, "Order ORD1 confirmed")
        self.assertEqual(msg.to, ["asha@example.com"])
        self.assertEqual(msg.from_email, "payments@vendormitra.test")
        self.assertIn("1023.00", msg.body)
        self.assertIn("Asha", msg.body)

    def test_unknown_recipient_is_skipped(self):
        with self.assertLogs("payments.notifications", level="WARNING"):
            EmailNotifier().notify("9999", notifications.ORDER_SHIPPED, {"order_id": "ORD1"})
        with self.assertLogs("payments.notifications", level="WARNING"):
            EmailNotifier().notify("not-a-user", notifications.ORDER_SHIPPED, {"order_id": "ORD1"})
        self.assertEqual(mail.outbox, [])


class OutboxTests(TestCase):
    def setUp(self):
        self.order = make_order()
        self.txn = make_transaction(self.order)

    def test_enqueue_is_deduplicated(self):
        first = enqueue(recipient_id="11", kind=notifications.ORDER_CONFIRMED, payload={"order_id": "ORD1"}, txn=self.txn)
        second = enqueue(recipient_id="11", kind=notifications.ORDER_CONFIRMED, payload={"order_id": "ORD1"}, txn=self.txn)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(first.dedupe_key, "TXN1:order_confirmed:11")
        self.assertEqual(Notification.objects.count(), 1)

    def test_failed_delivery_stays_pending(self):
        note = enqueue(recipient_id="11", kind=notifications.ORDER_CONFIRMED, payload={"order_id": "ORD1"}, txn=self.txn)
        broken = Mock()
        broken.notify.side_effect = RuntimeError("smtp down")

        with self.assertLogs("payments.notifications", level="ERROR"):
            self.assertEqual(dispatch_pending(notifier=broken), 0)

        note.refresh_from_db()
        self.assertEqual(note.status, Notification.PENDING)
        self.assertEqual(note.attempts, 1)
        self.assertEqual(note.last_error, "smtp down")

        working = Mock()
        self.assertEqual(dispatch_pending(notifier=working), 1)
        working.notify.assert_called_once_with("11", notifications.ORDER_CONFIRMED, {"order_id": "ORD1"})
        note.refresh_from_db()
        self.assertEqual(note.status, Notification.SENT)
        self.assertEqual(note.attempts, 2)
        self.assertIsNotNone(note.sent_at)

    def test_sent_notifications_are_not_resent(self):
        enqueue(recipient_id="11", kind=notifications.ORDER_CONFIRMED, payload={}, txn=self.txn)
        notifier = Mock()
        dispatch_pending(notifier=notifier)
        dispatch_pending(notifier=notifier)
        self.assertEqual(notifier.notify.call_count, 1)

    def test_row_is_claimed_while_sending(self):
        note = enqueue(recipient_id="11", kind=notifications.ORDER_CONFIRMED, payload={}, txn=self.txn)
        seen = {}

        def notify(user_id, kind, payload):
            row = Notification.objects.get(pk=note.pk)
            seen["attempts"], seen["claimed"] = row.attempts, row.claimed_at is not None
            # a second worker running now must skip the claimed row
            seen["other_worker_sent"] = dispatch_pending(notifier=Mock())

        notifier = Mock()
        notifier.notify.side_effect = notify
        self.assertEqual(dispatch_pending(notifier=notifier), 1)

        self.assertEqual(seen, {"attempts": 1, "claimed": True, "other_worker_sent": 0})
        note.refresh_from_db()
        self.assertEqual(note.status, Notification.SENT)
        self.assertIsNone(note.claimed_at)

    def test_abandoned_claim_is_picked_up_again(self):
        note = enqueue(recipient_id="11", kind=notifications.ORDER_CONFIRMED, payload={}, txn=self.txn)
        Notification.objects.filter(pk=note.pk).update(
            attempts=1, claimed_at=timezone.now() - timedelta(minutes=notifications.CLAIM_TIMEOUT_MINUTES + 1)
        )
        self.assertEqual(dispatch_pending(notifier=Mock()), 1)
        note.refresh_from_db()
        self.assertEqual((note.status, note.attempts), (Notification.SENT, 2))

    def test_fresh_claim_is_left_alone(self):
        note = enqueue(recipient_id="11", kind=notifications.ORDER_CONFIRMED, payload={}, txn=self.txn)
        Notification.objects.filter(pk=note.pk).update(claimed_at=timezone.now())
        notifier = Mock()
        self.assertEqual(dispatch_pending(notifier=notifier), 0)
        notifier.notify.assert_not_called()

    def test_conflict_records_no_notifications(self):
        self.order.status = "cancelled"
        self.order.save()
        with self.assertLogs("payments.ledger", level="CRITICAL"):
            with self.assertRaises(StateConflict):
                PaymentLedger().apply_payment_outcome("TXN1", Transaction.SUCCESS)
        self.assertFalse(Notification.objects.exists())


@override_settings(EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend")
class DeliveryOnCommitTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.vendor = User.objects.create_user("vendor", "vendor@example.com", "pw")
        self.supplier = User.objects.create_user("supplier", "supplier@example.com", "pw")
        self.order = make_order(vendor_id=str(self.vendor.pk), supplier_id=str(self.supplier.pk))
        make_transaction(self.order)

    def test_confirmation_emails_go_out_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            PaymentLedger().apply_payment_outcome("TXN1", Transaction.SUCCESS, payment_id="PAY1")

        self.assertEqual(sorted(m.to[0] for m in mail.outbox), ["supplier@example.com", "vendor@example.com"])
        self.assertFalse(Notification.objects.filter(status=Notification.PENDING).exists())

    def test_dispatch_command_retries_pending(self):
        PaymentLedger().apply_payment_outcome("TXN1", Transaction.SUCCESS, payment_id="PAY1")
        self.assertEqual(Notification.objects.filter(status=Notification.PENDING).count(), 2)

        out = StringIO()
        call_command("dispatch_notifications", stdout=out)

        self.assertIn("Sent 2 notifications, 0 still pending", out.getvalue())
        self.assertEqual(len(mail.outbox), 2)


class AuditFeesCommandTests(TestCase):
    def setUp(self):
        self.order = make_order()
        self.txn = make_transaction(self.order, status=Transaction.SUCCESS)

    def test_clean_ledger(self):
        out = StringIO()
        call_command("audit_fees", stdout=out)
        self.assertIn("Audited 1 transactions, 0 with discrepancies", out.getvalue())

    def test_reports_mismatch(self):
        Transaction.objects.filter(pk=self.txn.pk).update(fees="20.00")
        out = StringIO()
        call_command("audit_fees", stdout=out)
        self.assertIn("TXN1 (order ORD1): fees 20.00 != 23.00", out.getvalue())
        self.assertIn("1 with discrepancies", out.getvalue())

    def test_status_filter(self):
        out = StringIO()
        call_command("audit_fees", "--status", "pending", stdout=out)
        self.assertIn("Audited 0 transactions", out.getvalue())
        out = StringIO()
        call_command("audit_fees", "--status", "all", stdout=out)
        self.assertIn("Audited 1 transactions", out.getvalue())
