import json
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.urls import reverse

from payments.models import Notification, Order, Transaction
from payments.webhook import WebhookHandler

from .factories import GATEWAY_SETTINGS, callback_payload, gateway_client, make_order, make_transaction


@override_settings(INSTAMOJO=GATEWAY_SETTINGS)
class WebhookViewTests(TestCase):
    def setUp(self):
        self.order = make_order()
        self.txn = make_transaction(self.order)

    def _post(self, payload):
        # Instamojo posts form-encoded bodies
        return self.client.post(reverse("payments:webhook"), data=payload)

    def _post_json(self, payload):
        return self.client.post(reverse("payments:webhook"), data=json.dumps(payload), content_type="application/json")

    def test_get_reports_endpoint_is_alive(self):
        resp = self.client.get(reverse("payments:webhook"))
        self.assertEqual(resp.status_code, 200)
        self.assertIn("timestamp", resp.json())

    def test_credit_settles_transaction(self):
        resp = self._post(callback_payload(self.txn))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "applied")

        self.txn.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.SUCCESS)
        self.assertEqual(self.txn.payment_id, "MOJO5a06005J21512198")
        self.assertNotIn("mac", self.txn.gateway_response)
        self.assertEqual(self.order.status, Order.CONFIRMED)
        self.assertEqual(self.order.payment_status, Order.PAYMENT_SUCCESS)
        self.assertEqual(Notification.objects.count(), 2)

    def test_json_body_is_accepted(self):
        resp = self._post_json(callback_payload(self.txn))
        self.assertEqual(resp.status_code, 200)
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.SUCCESS)

    def test_redelivery_is_acknowledged_without_side_effects(self):
        payload = callback_payload(self.txn)
        self._post(payload)
        self.txn.refresh_from_db()
        first_update = self.txn.updated_at

        resp = self._post(payload)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "duplicate")
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.updated_at, first_update)
        self.assertEqual(Notification.objects.count(), 2)

    def test_failed_payment(self):
        resp = self._post(callback_payload(self.txn, status="Failed"))
        self.assertEqual(resp.status_code, 200)
        self.txn.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.FAILED)
        self.assertEqual(self.order.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(self.order.status, Order.CANCELLED)

    def test_forged_signature_changes_nothing(self):
        payload = callback_payload(self.txn)
        payload["mac"] = "0" * 40

        with self.assertLogs("payments.webhook", level="WARNING") as logs:
            resp = self._post(payload)

        self.assertEqual(resp.status_code, 401)
        self.assertIn("possible forgery", logs.output[0])
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.PENDING)
        self.assertFalse(Notification.objects.exists())

    def test_amount_tampering_breaks_signature(self):
        payload = callback_payload(self.txn)
        payload["amount"] = "1.00"
        with self.assertLogs("payments.webhook", level="WARNING"):
            resp = self._post(payload)
        self.assertEqual(resp.status_code, 401)

    def test_missing_fields(self):
        payload = callback_payload(self.txn)
        del payload["payment_id"]
        with self.assertLogs("payments.webhook", level="WARNING"):
            resp = self._post(payload)
        self.assertEqual(resp.status_code, 400)
        self.assertIn("payment_id", resp.json()["error"])

    def test_non_object_json(self):
        with self.assertLogs("payments.webhook", level="WARNING"):
            resp = self.client.post(reverse("payments:webhook"), data="[1, 2]", content_type="application/json")
        self.assertEqual(resp.status_code, 400)

    def test_orphan_callback(self):
        payload = callback_payload(self.txn, payment_request_id="MOJO-UNKNOWN")
        with self.assertLogs("payments.webhook", level="ERROR"):
            resp = self._post(payload)
        self.assertEqual(resp.status_code, 404)
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.PENDING)

    def test_contradicting_callback_is_acknowledged_as_conflict(self):
        self._post(callback_payload(self.txn, status="Failed"))
        with self.assertLogs("payments.ledger", level="CRITICAL"):
            resp = self._post(callback_payload(self.txn, status="Credit", payment_id="PAY-LATE"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "conflict")
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.FAILED)

    def test_short_payment_is_not_settled(self):
        with self.assertLogs("payments.ledger", level="CRITICAL"):
            resp = self._post(callback_payload(self.txn, amount="1.00"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "conflict")
        self.txn.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.PENDING)
        self.assertEqual(self.order.status, Order.PENDING)

    def test_storage_error_asks_for_redelivery(self):
        with patch("payments.webhook.TransactionRepository.find_by_gateway_request_id", side_effect=DatabaseError("locked")):
            with self.assertLogs("payments.webhook", level="ERROR"):
                resp = self._post(callback_payload(self.txn))
        self.assertEqual(resp.status_code, 503)
        self.txn.refresh_from_db()
        self.assertEqual(self.txn.status, Transaction.PENDING)

    def test_put_not_allowed(self):
        resp = self.client.put(reverse("payments:webhook"))
        self.assertEqual(resp.status_code, 405)


class WebhookHandlerTests(TestCase):
    """The handler on its own, without the HTTP layer."""

    def setUp(self):
        self.order = make_order()
        self.txn = make_transaction(self.order)
        self.handler = WebhookHandler(gateway_client())

    def test_same_payload_many_times(self):
        payload = callback_payload(self.txn)
        statuses = [self.handler.handle(dict(payload)).body["status"] for _ in range(3)]
        self.assertEqual(statuses, ["applied", "duplicate", "duplicate"])
        self.assertEqual(Notification.objects.count(), 2)

    def test_none_payload(self):
        with self.assertLogs("payments.webhook", level="WARNING"):
            self.assertEqual(self.handler.handle(None).status_code, 400)

    def test_blank_mac_is_missing(self):
        payload = callback_payload(self.txn)
        payload["mac"] = "  "
        with self.assertLogs("payments.webhook", level="WARNING"):
            self.assertEqual(self.handler.handle(payload).status_code, 400)
