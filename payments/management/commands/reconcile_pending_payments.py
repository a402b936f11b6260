import signal
import threading

from django.core.management.base import BaseCommand

from payments.reconciliation import ReconciliationSweep


class Command(BaseCommand):
    help = "Poll Instamojo for pending transactions past the timeout and settle them"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5, help="Pause between gateway polls")
        parser.add_argument("--older-than-minutes", type=int, default=None)
        parser.add_argument("--expire-after-minutes", type=int, default=None)
        parser.add_argument("--loop", action="store_true", help="Keep sweeping until interrupted")
        parser.add_argument("--interval", type=float, default=300, help="Seconds between sweeps with --loop")

    def handle(self, *args, **opts):
        sweep = ReconciliationSweep(
            older_than_minutes=opts["older_than_minutes"],
            expire_after_minutes=opts["expire_after_minutes"],
            limit=opts["max"],
            pause=opts["sleep"],
        )
        if not opts["loop"]:
            self._report(sweep.run_once())
            return

        stop = threading.Event()

        def _stop(signum, frame):
            self.stdout.write(self.style.WARNING("Stopping reconciliation loop..."))
            stop.set()

        signal.signal(signal.SIGINT, _stop)
        signal.signal(signal.SIGTERM, _stop)
        sweep.run_forever(stop, opts["interval"], on_report=self._report)

    def _report(self, report):
        if not report.checked:
            self.stdout.write(self.style.SUCCESS("No pending transactions to reconcile."))
            return
        msg = (f"Checked {report.checked}: {report.settled} settled, {report.failed} failed, "
               f"{report.still_pending} still pending, {report.conflicts} conflicts, {report.errors} errors.")
        style = self.style.WARNING if (report.conflicts or report.errors) else self.style.SUCCESS
        self.stdout.write(style(msg))
