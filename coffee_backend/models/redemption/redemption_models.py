# coffee_backend/models/redemption/redemption_models.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class RedemptionStatus(str, Enum):
    REQUESTED = "Requested"
    PROCESSING = "Processing"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


class DeliveryInfo(BaseModel):
    address: str = Field(..., min_length=1)
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: str = "USA"
    specialInstructions: Optional[str] = None

    @field_validator("address")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("delivery address is required")
        return v


class RedemptionRequest(BaseModel):
    id: int
    batchId: int
    consumer: str
    quantity: int = Field(..., gt=0)
    status: RedemptionStatus = RedemptionStatus.REQUESTED
    deliveryInfo: DeliveryInfo

    createdAt: int
    processedAt: Optional[int] = None
    fulfilledAt: Optional[int] = None
    cancelledAt: Optional[int] = None
    processedBy: Optional[str] = None
    trackingNumber: Optional[str] = None

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ---------------- request payloads (HTTP) ----------------
class RedemptionCreateModel(BaseModel):
    batchId: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    deliveryInfo: DeliveryInfo
    # web session / JWT identity wins; only admins may redeem on behalf of someone
    consumer: Optional[str] = None


class RedemptionAdvanceModel(BaseModel):
    status: RedemptionStatus
    trackingNumber: Optional[str] = None
