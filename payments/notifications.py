import logging
from datetime import timedelta
from typing import Iterable, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.db import transaction
from django.db.models import Q
from django.template.loader import render_to_string
from django.utils import timezone
from django.utils.module_loading import import_string

from .models import Notification

logger = logging.getLogger(__name__)

ORDER_CONFIRMED = "order_confirmed"
PAYMENT_RECEIVED = "payment_received"
PAYMENT_FAILED = "payment_failed"
PAYMENT_REFUNDED = "payment_refunded"
ORDER_SHIPPED = "order_shipped"
ORDER_DELIVERED = "order_delivered"

CLAIM_TIMEOUT_MINUTES = 10

SUBJECTS = {
    ORDER_CONFIRMED: "Order {order_id} confirmed",
    PAYMENT_RECEIVED: "Payment received for order {order_id}",
    PAYMENT_FAILED: "Payment failed for order {order_id}",
    PAYMENT_REFUNDED: "Refund processed for order {order_id}",
    ORDER_SHIPPED: "Order {order_id} shipped",
    ORDER_DELIVERED: "Order {order_id} delivered",
}


class EmailNotifier:
    """Deliver notifications as plain-text email to the Django user ``user_id``."""

    def notify(self, user_id: str, kind: str, payload: dict) -> None:
        User = get_user_model()
        user = User.objects.filter(pk=user_id).first() if str(user_id).isdigit() else None
        if user is None or not user.email:
            logger.warning("No email address for user %s; dropping %s notification", user_id, kind)
            return
        ctx = {"user": user, "kind": kind, **payload}
        subject = SUBJECTS.get(kind, kind).format(order_id=payload.get("order_id", ""))
        text = render_to_string(f"emails/{kind}.txt", ctx)
        from_email = getattr(settings, "PAYMENTS_FROM_EMAIL", None) or settings.DEFAULT_FROM_EMAIL
        msg = EmailMultiAlternatives(subject, text, from_email, [user.email])
        msg.send(fail_silently=getattr(settings, "EMAIL_FAIL_SILENTLY", False))


def get_notifier():
    return import_string(settings.PAYMENTS_NOTIFIER)()


def enqueue(*, recipient_id: str, kind: str, payload: dict, txn=None, dedupe_key: Optional[str] = None) -> Notification:
    """Record a notification in the outbox.

    Call inside the same atomic block as the state change it reports, so
    either both persist or neither does. ``dedupe_key`` makes re-enqueueing
    the same event a no-op.
    """
    key = dedupe_key or f"{txn.txn_id if txn else '-'}:{kind}:{recipient_id}"
    note, created = Notification.objects.get_or_create(
        dedupe_key=key,
        defaults={"recipient_id": recipient_id, "kind": kind, "payload": payload, "transaction": txn},
    )
    if created:
        transaction.on_commit(lambda: dispatch_pending(ids=[note.pk]))
    return note


def _claim(pk: int):
    """Mark one pending row as being delivered. Returns it, or None if another worker holds it."""
    stale = timezone.now() - timedelta(minutes=CLAIM_TIMEOUT_MINUTES)
    with transaction.atomic():
        note = (
            Notification.objects.select_for_update(skip_locked=True)
            .filter(pk=pk, status=Notification.PENDING)
            .filter(Q(claimed_at__isnull=True) | Q(claimed_at__lt=stale))
            .first()
        )
        if note is None:
            return None
        note.attempts += 1
        note.claimed_at = timezone.now()
        note.save(update_fields=["attempts", "claimed_at"])
    return note


def dispatch_pending(ids: Optional[Iterable[int]] = None, limit: int = 100, notifier=None) -> int:
    """Deliver pending outbox rows; failures stay pending for the next run.

    Rows are claimed in a short transaction and sent with no lock held.
    A claim older than ``CLAIM_TIMEOUT_MINUTES`` is assumed abandoned.
    """
    notifier = notifier or get_notifier()
    qs = Notification.objects.filter(status=Notification.PENDING)
    if ids is not None:
        qs = qs.filter(pk__in=list(ids))
    sent = 0
    for pk in list(qs.order_by("created_at").values_list("pk", flat=True)[:limit]):
        note = _claim(pk)
        if note is None:
            continue
        try:
            notifier.notify(note.recipient_id, note.kind, note.payload)
        except Exception as e:
            logger.exception("Notification %s (%s -> %s) failed", note.pk, note.kind, note.recipient_id)
            Notification.objects.filter(pk=pk).update(last_error=str(e)[:1000], claimed_at=None)
            continue
        Notification.objects.filter(pk=pk).update(
            status=Notification.SENT, sent_at=timezone.now(), last_error="", claimed_at=None
        )
        sent += 1
    return sent
