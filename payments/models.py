from django.db import models

from .fees import FeeBreakdown, breakdown


class Order(models.Model):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (CONFIRMED, "Confirmed"),
        (PROCESSING, "Processing"),
        (SHIPPED, "Shipped"),
        (DELIVERED, "Delivered"),
        (CANCELLED, "Cancelled"),
    ]

    PAYMENT_PENDING = "pending"
    PAYMENT_SUCCESS = "success"
    PAYMENT_FAILED = "failed"
    PAYMENT_REFUNDED = "refunded"
    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_SUCCESS, "Success"),
        (PAYMENT_FAILED, "Failed"),
        (PAYMENT_REFUNDED, "Refunded"),
    ]

    order_id = models.CharField(max_length=20, unique=True, db_index=True)
    vendor_id = models.CharField(max_length=64, db_index=True)
    supplier_id = models.CharField(max_length=64, db_index=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    delivery_charge = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    commission = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING, db_index=True)
    payment_status = models.CharField(max_length=16, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING, db_index=True)
    payment_reference = models.CharField(max_length=64, blank=True, default="")  # gateway payment_request id

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PAYMENT_SUCCESS

    def __str__(self):
        return f"{self.order_id} ({self.status}/{self.payment_status})"


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product_id = models.CharField(max_length=64)
    name = models.CharField(max_length=128, blank=True, default="")
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    line_total = models.DecimalField(max_digits=12, decimal_places=2)

    def __str__(self):
        return f"{self.quantity} x {self.product_id}"


class Transaction(models.Model):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"
    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (SUCCESS, "Success"),
        (FAILED, "Failed"),
        (REFUNDED, "Refunded"),
    ]

    txn_id = models.CharField(max_length=24, unique=True, db_index=True)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="transactions")
    idempotency_key = models.CharField(max_length=64, unique=True)
    # null (not "") so several not-yet-created requests don't collide on the unique index
    payment_request_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    payment_id = models.CharField(max_length=64, blank=True, default="")

    amount = models.DecimalField(max_digits=12, decimal_places=2)  # order total + gateway fee
    fees = models.DecimalField(max_digits=12, decimal_places=2)
    commission = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING, db_index=True)
    purpose = models.CharField(max_length=255)
    buyer_name = models.CharField(max_length=128)
    buyer_email = models.EmailField()
    buyer_phone = models.CharField(max_length=16)

    payment_url = models.URLField(max_length=500, blank=True, default="")
    gateway_response = models.JSONField(blank=True, null=True)
    failure_reason = models.CharField(max_length=255, blank=True, default="")

    settled_at = models.DateTimeField(blank=True, null=True)
    last_polled_at = models.DateTimeField(blank=True, null=True)  # last reconciliation poll
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def expected_fees(self) -> FeeBreakdown:
        """Recompute the fee figures from the order total."""
        return breakdown(self.order.total)

    def __str__(self):
        return f"{self.txn_id} {self.status} ₹{self.amount}"


class Notification(models.Model):
    """Durable outbox row for one ``notify(user_id, kind, payload)`` call."""

    PENDING = "pending"
    SENT = "sent"
    STATUS_CHOICES = [(PENDING, "Pending"), (SENT, "Sent")]

    recipient_id = models.CharField(max_length=64, db_index=True)
    kind = models.CharField(max_length=32)
    payload = models.JSONField(default=dict, blank=True)
    transaction = models.ForeignKey(
        Transaction, on_delete=models.PROTECT, related_name="notifications", blank=True, null=True
    )
    dedupe_key = models.CharField(max_length=128, unique=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=PENDING, db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True, default="")
    claimed_at = models.DateTimeField(blank=True, null=True)  # set while a worker is delivering
    created_at = models.DateTimeField(auto_now_add=True)
    sent_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        ordering = ("created_at",)

    def __str__(self):
        return f"{self.kind} -> {self.recipient_id} ({self.status})"
