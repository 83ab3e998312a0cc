# coffee_backend/models/batch/batch_models.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DAY = 24 * 60 * 60


def as_epoch(val: Any) -> int:
    """
    Stored instants come in as unix seconds, datetimes or ISO strings
    (Mongo documents written by different services). Normalise to int seconds.
    """
    if val is None or val == "":
        return 0
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, (int, float)):
        return int(val)
    if isinstance(val, datetime):
        if val.tzinfo is None:
            val = val.replace(tzinfo=timezone.utc)
        return int(val.timestamp())
    s = str(val).strip()
    if s.lstrip("-").isdigit():
        return int(s)
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


# ---------------------------------------------------------
# Privacy
# ---------------------------------------------------------
class DisclosureLevel(str, Enum):
    PUBLIC = "public"
    SELECTIVE = "selective"
    PRIVATE = "private"


_LEGACY_LEVELS = {0: DisclosureLevel.PUBLIC, 1: DisclosureLevel.SELECTIVE, 2: DisclosureLevel.PRIVATE}


class PrivacyAxis(BaseModel):
    level: DisclosureLevel = DisclosureLevel.PRIVATE
    # legacy flag kept next to `level`; derived from it when not stored
    private: Optional[bool] = None
    tier: Optional[int] = None
    proofHash: Optional[str] = None

    @field_validator("level", mode="before")
    @classmethod
    def _level_from_any(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return _LEGACY_LEVELS.get(v, DisclosureLevel.PRIVATE)
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def _fold_private_flag(self):
        if self.private is None:
            self.private = self.level != DisclosureLevel.PUBLIC
        if self.proofHash is not None and not self.proofHash.strip():
            self.proofHash = None
        return self


class PrivacyConfig(BaseModel):
    pricing: Optional[PrivacyAxis] = None
    quality: Optional[PrivacyAxis] = None
    supplyChain: Optional[PrivacyAxis] = None

    @classmethod
    def from_legacy(cls, doc: Dict[str, Any]) -> "PrivacyConfig":
        """
        Older batch documents store privacy flattened:
          {pricingSelective: 1, pricingPrivate: false, pricingProofHash: "0x..", ..., level: 1}
        One global numeric level applies to every axis.
        """
        level = doc.get("level")
        axes: Dict[str, PrivacyAxis] = {}
        for axis in ("pricing", "quality", "supplyChain"):
            tier = doc.get(f"{axis}Selective")
            axes[axis] = PrivacyAxis(
                level=level if level is not None else DisclosureLevel.PRIVATE,
                private=doc.get(f"{axis}Private"),
                tier=int(tier) if tier not in (None, "", 0) else None,
                proofHash=doc.get(f"{axis}ProofHash") or None,
            )
        return cls(**axes)

    @classmethod
    def parse(cls, raw: Any) -> Optional["PrivacyConfig"]:
        if raw is None:
            return None
        if isinstance(raw, PrivacyConfig):
            return raw
        if isinstance(raw, dict) and any(k.endswith("Selective") or k.endswith("Private") for k in raw):
            return cls.from_legacy(raw)
        return cls.model_validate(raw)


class ProofReferences(BaseModel):
    pricing: Optional[str] = None
    quality: Optional[str] = None
    supplyChain: Optional[str] = None

    def any(self) -> bool:
        return any((self.pricing, self.quality, self.supplyChain))


class SupplyChainInfo(BaseModel):
    origin: str = ""
    farmName: str = ""
    altitude: str = ""
    process: str = ""
    roastDate: str = ""


# ---------------------------------------------------------
# Batch
# ---------------------------------------------------------
class Batch(BaseModel):
    batchId: int = Field(..., gt=0)
    name: str = ""

    quantity: int = Field(0, ge=0)
    mintedQuantity: int = Field(0, ge=0)
    availableQuantity: Optional[int] = None

    productionDate: int
    expiryDate: int
    lastVerifiedTimestamp: int = 0

    pricePerUnit: float = Field(0, ge=0)
    packagingInfo: str = ""
    metadataHash: str = ""
    isVerified: bool = False
    isMetadataVerified: bool = False

    qualityScore: Optional[int] = None
    supplyChain: Optional[SupplyChainInfo] = None

    privacyConfig: Optional[PrivacyConfig] = None
    proofReferences: Optional[ProofReferences] = None
    zkProofHash: str = ""
    encryptedDataHash: str = ""

    @field_validator("productionDate", "expiryDate", "lastVerifiedTimestamp", mode="before")
    @classmethod
    def _instant(cls, v):
        return as_epoch(v)

    @field_validator("privacyConfig", mode="before")
    @classmethod
    def _privacy(cls, v):
        return PrivacyConfig.parse(v)

    @model_validator(mode="after")
    def _check_invariants(self):
        if self.mintedQuantity > self.quantity:
            raise ValueError("mintedQuantity cannot exceed quantity")
        expected = self.quantity - self.mintedQuantity
        if self.availableQuantity is None:
            self.availableQuantity = expected
        elif self.availableQuantity != expected:
            raise ValueError(
                f"availableQuantity must equal quantity - mintedQuantity ({expected})"
            )
        if self.expiryDate <= self.productionDate:
            raise ValueError("expiryDate must be after productionDate")
        return self

    def has_zk_proofs(self) -> bool:
        if self.zkProofHash:
            return True
        if self.proofReferences and self.proofReferences.any():
            return True
        pc = self.privacyConfig
        if pc:
            return any(a is not None and a.proofHash for a in (pc.pricing, pc.quality, pc.supplyChain))
        return False

    def has_encrypted_data(self) -> bool:
        return bool(self.encryptedDataHash)

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ---------------------------------------------------------
# Verification thresholds
# ---------------------------------------------------------
class VerificationConfig(BaseModel):
    auditInterval: int = Field(7 * DAY, ge=0)
    expiryWarningThreshold: int = Field(60 * DAY, ge=0)
    lowInventoryThreshold: int = Field(10, ge=0)
    longStorageThreshold: int = Field(180 * DAY, ge=0)
    maxBatchesPerCycle: int = Field(50, ge=0)
    cycleInterval: int = Field(DAY, ge=0)


class VerificationConfigUpdate(BaseModel):
    auditInterval: Optional[int] = Field(None, ge=0)
    expiryWarningThreshold: Optional[int] = Field(None, ge=0)
    lowInventoryThreshold: Optional[int] = Field(None, ge=0)
    longStorageThreshold: Optional[int] = Field(None, ge=0)
    maxBatchesPerCycle: Optional[int] = Field(None, ge=0)
    cycleInterval: Optional[int] = Field(None, ge=0)

    def changes(self) -> Dict[str, int]:
        return self.model_dump(exclude_none=True)
