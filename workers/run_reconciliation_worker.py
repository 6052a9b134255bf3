import argparse

from common.workers.launcher import WorkerLauncher
from packages.billing.workers.reconciliation_worker import ReconciliationWorker

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Subscription reconciliation worker")
    parser.add_argument(
        "--once", action="store_true", help="Run a single pass and exit"
    )
    args = parser.parse_args()

    WorkerLauncher().run(
        worker_factory=ReconciliationWorker,
        worker_name="Reconciliation Worker",
        once=args.once,
    )
