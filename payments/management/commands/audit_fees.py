from django.core.management.base import BaseCommand

from payments.models import Transaction


class Command(BaseCommand):
    help = "Recompute fees and commission from order totals and report stored figures that disagree"

    def add_arguments(self, parser):
        parser.add_argument("--status", default=Transaction.SUCCESS, help="Only audit transactions in this status ('all' for every one)")

    def handle(self, *args, **opts):
        qs = Transaction.objects.select_related("order").order_by("created_at")
        if opts["status"] != "all":
            qs = qs.filter(status=opts["status"])

        checked = mismatched = 0
        for txn in qs.iterator():
            checked += 1
            expected = txn.expected_fees()
            diffs = []
            if txn.amount != expected.amount_to_charge:
                diffs.append(f"amount {txn.amount} != {expected.amount_to_charge}")
            if txn.fees != expected.gateway_fee:
                diffs.append(f"fees {txn.fees} != {expected.gateway_fee}")
            if txn.commission != expected.commission:
                diffs.append(f"commission {txn.commission} != {expected.commission}")
            if diffs:
                mismatched += 1
                self.stdout.write(self.style.WARNING(f"{txn.txn_id} (order {txn.order.order_id}): {'; '.join(diffs)}"))

        style = self.style.WARNING if mismatched else self.style.SUCCESS
        self.stdout.write(style(f"Audited {checked} transactions, {mismatched} with discrepancies."))
