"""
Periodic sweep that pulls processor state into stale subscriptions.

Webhooks carry most changes; this catches deliveries that never arrived
and subscriptions whose period ended without an event reaching us.
"""

from typing import Optional

from common.core.config import settings
from common.core.telemetry import get_logger, trace_span
from common.db.scoped import transaction
from common.providers.locking.factory import get_lock_provider
from common.providers.locking.interface import DistributedLockInterface
from common.workers.base_worker import PeriodicWorker
from packages.billing.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)


class ReconciliationWorker(PeriodicWorker):
    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        lock_provider: Optional[DistributedLockInterface] = None,
    ):
        super().__init__(
            name="reconciliation",
            interval_seconds=interval_seconds or settings.reconciliation_interval_seconds,
        )
        self.lock_provider = lock_provider or get_lock_provider()

    async def cleanup(self):
        await self.lock_provider.disconnect()
        await super().cleanup()

    @trace_span
    async def run_once(self) -> int:
        async with transaction() as session:
            reconciliation = ReconciliationService(
                session, lock_provider=self.lock_provider
            )
            synced = await reconciliation.sync_due()

        logger.info(
            f"Reconciliation pass synced {synced} subscriptions",
            extra={"worker_id": self.worker_id, "synced": synced},
        )
        return synced
