# coffee_backend/services/inventory/status_service.py
"""
Status derivation for coffee batches.

Pure functions: batch + thresholds + now -> status and alerts. Nothing here
touches storage, so any number of request handlers or the audit cycle can
call it concurrently and always get the same answer for the same inputs.
"""
from __future__ import annotations

import time
from typing import Iterable, List, Optional

from coffee_backend.models.batch.batch_models import DAY, Batch, VerificationConfig
from coffee_backend.models.batch.inventory_models import (
    ALERT_EXPIRED,
    ALERT_LONG_STORAGE,
    ALERT_LOW_INVENTORY,
    ALERT_VERIFICATION_OVERDUE,
    BatchStatus,
    CriticalBatches,
    InventoryStats,
    StatusReport,
)


def _now(now: Optional[float]) -> int:
    return int(time.time()) if now is None else int(now)


def next_verification_due(batch: Batch, config: VerificationConfig) -> int:
    """0 when the batch was never verified, i.e. already due."""
    last = batch.lastVerifiedTimestamp or 0
    if last <= 0:
        return 0
    return last + config.auditInterval


def is_verification_overdue(batch: Batch, config: VerificationConfig, now: int) -> bool:
    if not batch.lastVerifiedTimestamp or batch.lastVerifiedTimestamp <= 0:
        return True
    return now > next_verification_due(batch, config)


def is_expired(batch: Batch, now: int) -> bool:
    return now > batch.expiryDate


def is_low_inventory(batch: Batch, config: VerificationConfig) -> bool:
    # out of stock is not "low"
    available = batch.availableQuantity or 0
    return 0 < available <= config.lowInventoryThreshold


def is_long_storage(batch: Batch, config: VerificationConfig, now: int) -> bool:
    elapsed = now - batch.productionDate
    if elapsed < 0:
        return False
    return elapsed >= config.longStorageThreshold


def is_expiring_soon(batch: Batch, config: VerificationConfig, now: Optional[float] = None) -> bool:
    ts = _now(now)
    if is_expired(batch, ts):
        return False
    return batch.expiryDate - ts <= config.expiryWarningThreshold


def derive_status(batch: Batch, config: VerificationConfig, now: Optional[float] = None) -> StatusReport:
    """
    Priority: Expired > Pending > LowInventory > LongStorage > Verified.
    The first matching condition names the status; every matching condition
    adds its alert.
    """
    ts = _now(now)

    checks = (
        (BatchStatus.EXPIRED, ALERT_EXPIRED, is_expired(batch, ts)),
        (BatchStatus.PENDING, ALERT_VERIFICATION_OVERDUE, is_verification_overdue(batch, config, ts)),
        (BatchStatus.LOW_INVENTORY, ALERT_LOW_INVENTORY, is_low_inventory(batch, config)),
        (BatchStatus.LONG_STORAGE, ALERT_LONG_STORAGE, is_long_storage(batch, config, ts)),
    )

    status = BatchStatus.VERIFIED
    alerts: List[str] = []
    for candidate, alert, holds in checks:
        if not holds:
            continue
        if status is BatchStatus.VERIFIED:
            status = candidate
        alerts.append(alert)

    return StatusReport(
        batchId=batch.batchId,
        status=status,
        alerts=alerts,
        nextVerificationDue=next_verification_due(batch, config),
        availableQuantity=batch.availableQuantity or 0,
        daysInStorage=round(max(0, ts - batch.productionDate) / DAY, 2),
    )


# -----------------------------
# Summaries (dashboard widgets)
# -----------------------------
def inventory_stats(batches: Iterable[Batch], config: VerificationConfig, now: Optional[float] = None) -> InventoryStats:
    ts = _now(now)
    stats = InventoryStats()
    total_days = 0.0

    for b in batches:
        rep = derive_status(b, config, ts)
        stats.totalBatches += 1
        if ALERT_EXPIRED in rep.alerts:
            stats.expiredBatches += 1
        if ALERT_LOW_INVENTORY in rep.alerts:
            stats.lowInventoryBatches += 1
        if ALERT_VERIFICATION_OVERDUE in rep.alerts:
            stats.batchesNeedingVerification += 1
        if ALERT_LONG_STORAGE in rep.alerts:
            stats.longStorageBatches += 1
        stats.totalAvailableQuantity += rep.availableQuantity
        total_days += max(0, ts - (b.lastVerifiedTimestamp or 0)) / DAY

    if stats.totalBatches:
        stats.averageDaysSinceVerification = round(total_days / stats.totalBatches, 2)
    return stats


def critical_batches(batches: Iterable[Batch], config: VerificationConfig, now: Optional[float] = None) -> CriticalBatches:
    ts = _now(now)
    out = CriticalBatches()

    for b in batches:
        rep = derive_status(b, config, ts)
        if ALERT_EXPIRED in rep.alerts:
            out.expiredBatches.append(b.batchId)
        if ALERT_LOW_INVENTORY in rep.alerts:
            out.lowInventoryBatches.append(b.batchId)
        if ALERT_VERIFICATION_OVERDUE in rep.alerts:
            out.verificationNeededBatches.append(b.batchId)
        if is_expiring_soon(b, config, ts):
            out.expiringBatches.append(b.batchId)

    return out
