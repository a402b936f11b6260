from django.core.management.base import BaseCommand

from payments.models import Notification
from payments.notifications import dispatch_pending


class Command(BaseCommand):
    help = "Deliver pending notifications from the outbox (retries earlier failures)"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=100)

    def handle(self, *args, **opts):
        sent = dispatch_pending(limit=opts["max"])
        left = Notification.objects.filter(status=Notification.PENDING).count()
        style = self.style.WARNING if left else self.style.SUCCESS
        self.stdout.write(style(f"Sent {sent} notifications, {left} still pending."))
