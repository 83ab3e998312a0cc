# coffee_backend/services/inventory/audit_service.py
"""
One bounded sweep of the batch inventory.

There is no timer in here: a scheduler (cron, celery beat, the admin
endpoint) calls `run_audit_cycle` and keeps the returned cursor for the
next call.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from coffee_backend.models.batch.batch_models import Batch, VerificationConfig
from coffee_backend.models.batch.inventory_models import AuditCycleReport, StatusReport
from coffee_backend.services.inventory.status_service import derive_status

logger = logging.getLogger(__name__)


def is_cycle_due(last_run: Optional[int], config: VerificationConfig, now: Optional[float] = None) -> bool:
    if not last_run:
        return True
    ts = int(time.time()) if now is None else int(now)
    return ts - int(last_run) >= config.cycleInterval


def run_audit_cycle(
    batch_store,
    config: VerificationConfig,
    now: Optional[float] = None,
    cursor: Optional[int] = None,
    notify: Optional[Callable[[StatusReport], None]] = None,
) -> AuditCycleReport:
    ts = int(time.time()) if now is None else int(now)
    report = AuditCycleReport(startedAt=ts)

    limit = config.maxBatchesPerCycle
    if limit <= 0:
        report.nextCursor = cursor
        return report

    # one extra row tells us whether the sweep has more to do
    batches = batch_store.list_batches(after=cursor, limit=limit + 1)
    page, more = batches[:limit], len(batches) > limit

    for batch in page:
        rep = derive_status(batch, config, ts)
        report.reports.append(rep)
        report.processed += 1
        if rep.alerts:
            logger.warning("batch %s is %s: %s", rep.batchId, rep.status.value, ", ".join(rep.alerts))
            if notify is not None:
                notify(rep)

    report.nextCursor = page[-1].batchId if more and page else None
    logger.info("audit cycle processed %s batches (%s alerting), next cursor %s",
                report.processed, len(report.alerting), report.nextCursor)
    return report


def record_verification(batch_store, batch_id: int, now: Optional[float] = None) -> Batch:
    ts = int(time.time()) if now is None else int(now)
    batch = batch_store.set_last_verified(batch_id, ts)
    logger.info("batch %s verified at %s", batch_id, ts)
    return batch
