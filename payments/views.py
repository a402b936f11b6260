import json
import logging

from django.http import JsonResponse, HttpResponseBadRequest
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from .auth import ADMIN, SUPPLIER, VENDOR, principal_required
from .checkout import Buyer, CheckoutService
from .exceptions import GatewayError, NotFound, PaymentError
from .integrations.instamojo import STATE_PENDING, get_client
from .ledger import PaymentLedger
from .models import Order, Transaction
from .repositories import OrderRepository, TransactionRepository
from .webhook import WebhookHandler

logger = logging.getLogger(__name__)

USER_MESSAGES = {
    "retry_with_changes": "Payment could not be started. Please check your details and try again.",
    "retry": "Payment could not be started. Please try again.",
    "contact_support": "Payment could not be completed. Please contact support.",
}


def _json_body(request):
    try: return json.loads(request.body.decode("utf-8"))
    except Exception: return None


def _error(exc: PaymentError) -> JsonResponse:
    return JsonResponse({
        "ok": False,
        "error": str(exc),
        "action": exc.user_action,
        "message": USER_MESSAGES[exc.user_action],
    }, status=exc.http_status)


def _transaction_json(txn: Transaction) -> dict:
    return {
        "id": txn.txn_id,
        "status": txn.status,
        "payment_request_id": txn.payment_request_id,
        "amount": str(txn.amount),
        "fees": str(txn.fees),
        "commission_amount": str(txn.commission),
        "created_at": txn.created_at.isoformat(),
        "updated_at": txn.updated_at.isoformat(),
    }


def _order_json(order: Order) -> dict:
    return {
        "id": order.order_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "subtotal": str(order.subtotal),
        "delivery_charge": str(order.delivery_charge),
        "total": str(order.total),
        "created_at": order.created_at.isoformat(),
    }


def _checkout_json(result) -> dict:
    txn = result.transaction
    return {
        "ok": True,
        "order_id": result.order.order_id,
        "transaction_id": txn.txn_id,
        "payment_request_id": txn.payment_request_id,
        "payment_url": txn.payment_url,
        "status": txn.status,
        "amount": str(txn.amount),
        "fees": str(txn.fees),
        "commission_amount": str(txn.commission),
        "replayed": not result.created,
    }


@csrf_exempt
@require_POST
@principal_required(VENDOR)
def create_payment_view(request):
    body = _json_body(request)
    if not isinstance(body, dict):
        return HttpResponseBadRequest("Invalid JSON body")
    try:
        result = CheckoutService().start_checkout(
            request.principal,
            supplier_id=body.get("supplier_id"),
            items=body.get("items"),
            delivery_charge=body.get("delivery_charge") or 0,
            buyer=Buyer.from_dict(body.get("buyer")),
            idempotency_key=str(body.get("idempotency_key") or request.headers.get("Idempotency-Key") or "") or None,
        )
    except PaymentError as e:
        return _error(e)
    return JsonResponse(_checkout_json(result), status=200 if not result.created else 201)


@csrf_exempt
@require_POST
@principal_required(VENDOR)
def retry_payment_view(request, order_id: str):
    body = _json_body(request)
    if not isinstance(body, dict):
        return HttpResponseBadRequest("Invalid JSON body")
    try:
        result = CheckoutService().retry_payment(
            request.principal,
            order_id,
            buyer=Buyer.from_dict(body.get("buyer")),
            idempotency_key=str(body.get("idempotency_key") or request.headers.get("Idempotency-Key") or "") or None,
        )
    except PaymentError as e:
        return _error(e)
    return JsonResponse(_checkout_json(result), status=200 if not result.created else 201)


@csrf_exempt
@require_POST
@principal_required(VENDOR)
def cancel_order_view(request, order_id: str):
    try:
        order = PaymentLedger().cancel_checkout(order_id, request.principal)
    except PaymentError as e:
        return _error(e)
    return JsonResponse({"ok": True, "order": _order_json(order)})


@csrf_exempt
@require_POST
@principal_required(SUPPLIER)
def fulfillment_view(request, order_id: str):
    body = _json_body(request)
    if not isinstance(body, dict) or not body.get("status"):
        return HttpResponseBadRequest("status is required")
    try:
        order = PaymentLedger().advance_fulfillment(order_id, str(body["status"]), request.principal)
    except PaymentError as e:
        return _error(e)
    return JsonResponse({"ok": True, "order": _order_json(order)})


@csrf_exempt
@require_POST
@principal_required(ADMIN)
def refund_view(request, txn_id: str):
    body = _json_body(request) or {}
    try:
        txn = CheckoutService().refund_payment(txn_id, str(body.get("reason") or ""))
    except PaymentError as e:
        return _error(e)
    return JsonResponse({"ok": True, "transaction": _transaction_json(txn)})


@require_GET
@principal_required()
def payment_status_view(request):
    request_id = request.GET.get("payment_request_id", "")
    order_id = request.GET.get("order_id", "")
    if not request_id and not order_id:
        return HttpResponseBadRequest("Missing payment_request_id or order_id parameter")

    transactions = TransactionRepository()
    try:
        if request_id:
            txn = transactions.find_by_gateway_request_id(request_id)
            if txn is None:
                raise NotFound("Transaction not found")
            order = txn.order
        else:
            order = OrderRepository().find_by_id(order_id)
            txn = transactions.latest_for_order(order)
            if txn is None:
                raise NotFound("Transaction not found")

        principal = request.principal
        if not (principal.is_admin or principal.user_id in (order.vendor_id, order.supplier_id)):
            raise NotFound("Transaction not found")

        # Fallback for a lost webhook: poll and settle through the ledger
        if request.GET.get("refresh") == "1" and txn.status == Transaction.PENDING and txn.payment_request_id:
            try:
                status = get_client().get_payment_status(txn.payment_request_id)
                if status.state != STATE_PENDING:
                    result = PaymentLedger().apply_payment_outcome(
                        txn.txn_id, status.state, payment_id=status.payment_id, payload=status.raw,
                        amount=status.amount,
                    )
                    txn, order = result.transaction, result.order
            except GatewayError as e:
                logger.warning("Status refresh for %s failed: %s", txn.payment_request_id, e)
    except PaymentError as e:
        return _error(e)

    return JsonResponse({"ok": True, "transaction": _transaction_json(txn), "order": _order_json(order)})


@csrf_exempt
@require_http_methods(["GET", "POST"])
def webhook_view(request):
    if request.method == "GET":
        return JsonResponse({"message": "Instamojo webhook endpoint is active", "timestamp": timezone.now().isoformat()})

    # Instamojo posts form-encoded; JSON is accepted too.
    if request.content_type == "application/json":
        payload = _json_body(request)
    else:
        payload = request.POST.dict()
    result = WebhookHandler(get_client()).handle(payload)
    return JsonResponse(result.body, status=result.status_code)
