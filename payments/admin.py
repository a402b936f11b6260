from django.contrib import admin
from .models import Notification, Order, OrderItem, Transaction


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product_id", "name", "quantity", "unit_price", "line_total")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_id", "status", "payment_status", "total", "vendor_id", "supplier_id", "created_at")
    search_fields = ("order_id", "payment_reference", "vendor_id", "supplier_id")
    list_filter = ("status", "payment_status", "created_at")
    readonly_fields = ("subtotal", "delivery_charge", "commission", "total", "created_at", "updated_at")
    inlines = [OrderItemInline]


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ("txn_id", "order", "status", "amount", "fees", "commission", "created_at")
    search_fields = ("txn_id", "payment_request_id", "payment_id", "buyer_email", "buyer_phone")
    list_filter = ("status", "created_at")
    readonly_fields = ("amount", "fees", "commission", "gateway_response", "created_at", "updated_at", "settled_at")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("kind", "recipient_id", "status", "attempts", "created_at", "sent_at")
    list_filter = ("status", "kind")
    search_fields = ("recipient_id", "dedupe_key")
