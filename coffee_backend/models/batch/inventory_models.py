# coffee_backend/models/batch/inventory_models.py

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Dict, List, Optional


class BatchStatus(str, Enum):
    VERIFIED = "Verified"
    PENDING = "Pending"
    EXPIRED = "Expired"
    LOW_INVENTORY = "LowInventory"
    LONG_STORAGE = "LongStorage"


ALERT_EXPIRED = "batch expired"
ALERT_VERIFICATION_OVERDUE = "verification overdue"
ALERT_LOW_INVENTORY = "low inventory warning"
ALERT_LONG_STORAGE = "long storage warning"


@dataclass(frozen=True)
class StatusReport:
    batchId: int
    status: BatchStatus
    alerts: List[str] = field(default_factory=list)
    nextVerificationDue: int = 0
    availableQuantity: int = 0
    daysInStorage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


@dataclass
class InventoryStats:
    totalBatches: int = 0
    expiredBatches: int = 0
    lowInventoryBatches: int = 0
    batchesNeedingVerification: int = 0
    longStorageBatches: int = 0
    totalAvailableQuantity: int = 0
    averageDaysSinceVerification: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CriticalBatches:
    expiredBatches: List[int] = field(default_factory=list)
    lowInventoryBatches: List[int] = field(default_factory=list)
    verificationNeededBatches: List[int] = field(default_factory=list)
    expiringBatches: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AuditCycleReport:
    startedAt: int
    processed: int = 0
    reports: List[StatusReport] = field(default_factory=list)
    # batchId to resume after; None once the sweep reached the end
    nextCursor: Optional[int] = None

    @property
    def alerting(self) -> List[StatusReport]:
        return [r for r in self.reports if r.alerts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": self.startedAt,
            "processed": self.processed,
            "nextCursor": self.nextCursor,
            "reports": [r.to_dict() for r in self.reports],
            "alerting": [r.batchId for r in self.alerting],
        }
