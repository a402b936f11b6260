"""Inbound gateway callbacks.

The handler is safe to run any number of times for the same payload: it
only ever drives the ledger through ``apply_payment_outcome``, which is
idempotent. Transient storage errors answer 503 so the gateway redelivers.
"""
import logging
from dataclasses import dataclass, field

from django.db import DatabaseError

from .exceptions import StateConflict
from .integrations.instamojo import normalize_status
from .ledger import PaymentLedger
from .repositories import TransactionRepository

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("payment_id", "payment_request_id", "status", "mac")


@dataclass
class WebhookResponse:
    status_code: int
    body: dict = field(default_factory=dict)


class WebhookHandler:
    def __init__(self, client, ledger=None, transactions=None):
        self.client = client
        self.transactions = transactions or TransactionRepository()
        self.ledger = ledger or PaymentLedger(transactions=self.transactions)

    def handle(self, payload) -> WebhookResponse:
        if not isinstance(payload, dict):
            logger.warning("Webhook rejected: body is not an object")
            return WebhookResponse(400, {"error": "Malformed payload"})
        missing = [k for k in REQUIRED_FIELDS if not str(payload.get(k) or "").strip()]
        if missing:
            logger.warning("Webhook rejected: missing %s", ", ".join(missing))
            return WebhookResponse(400, {"error": f"Missing fields: {', '.join(missing)}"})

        request_id = str(payload["payment_request_id"])
        if not self.client.verify_callback(payload):
            logger.warning(
                "Webhook rejected: mac mismatch for payment_request_id=%s payment_id=%s (possible forgery)",
                request_id, payload.get("payment_id"),
            )
            return WebhookResponse(401, {"error": "Invalid signature"})

        try:
            txn = self.transactions.find_by_gateway_request_id(request_id)
            if txn is None:
                logger.error("Orphan webhook: no transaction for payment_request_id=%s", request_id)
                return WebhookResponse(404, {"error": "Transaction not found"})

            outcome = normalize_status(payload.get("status"))
            audit = {k: v for k, v in payload.items() if k != "mac"}
            try:
                result = self.ledger.apply_payment_outcome(
                    txn.txn_id, outcome, payment_id=str(payload["payment_id"]), payload=audit,
                    amount=payload.get("amount"),
                )
            except StateConflict as e:
                # Already logged by the ledger; a redelivery can't resolve it.
                return WebhookResponse(200, {"success": True, "status": "conflict", "detail": str(e)})
        except DatabaseError:
            logger.exception("Webhook for payment_request_id=%s hit a storage error; asking gateway to retry", request_id)
            return WebhookResponse(503, {"error": "Temporarily unavailable"})

        return WebhookResponse(200, {
            "success": True,
            "status": "applied" if result.changed else "duplicate",
            "transaction": result.transaction.txn_id,
        })
