from django.urls import path
from . import views
app_name = "payments"
urlpatterns = [
    path("create", views.create_payment_view, name="create"),
    path("status", views.payment_status_view, name="status"),
    path("orders/<str:order_id>/retry", views.retry_payment_view, name="retry"),
    path("orders/<str:order_id>/cancel", views.cancel_order_view, name="cancel"),
    path("orders/<str:order_id>/fulfillment", views.fulfillment_view, name="fulfillment"),
    path("transactions/<str:txn_id>/refund", views.refund_view, name="refund"),
    # Instamojo is configured to post to https://<domain>/payments/webhook
    path("webhook", views.webhook_view, name="webhook"),
    path("webhook/", views.webhook_view),
]
