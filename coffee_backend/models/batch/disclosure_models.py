# coffee_backend/models/batch/disclosure_models.py

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Role(str, Enum):
    ADMIN = "admin"
    PROCESSOR = "processor"
    DISTRIBUTOR = "distributor"
    PUBLIC = "public"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Unauthenticated or unrecognised roles are Public."""
        if isinstance(value, Role):
            return value
        s = (str(value) if value is not None else "").strip().lower()
        for role in cls:
            if role.value == s:
                return role
        return cls.PUBLIC


class Axis(str, Enum):
    PRICING = "pricing"
    QUALITY = "quality"
    SUPPLY_CHAIN = "supplyChain"


class Outcome(str, Enum):
    RAW = "raw"
    RANGE = "range"
    HIDDEN = "hidden"


@dataclass(frozen=True)
class IndicativeRange:
    min: int
    max: int
    label: str


@dataclass(frozen=True)
class DisclosedValue:
    axis: Axis
    outcome: Outcome
    value: Any = None
    range: Optional[Tuple[int, int]] = None
    segment: Optional[str] = None
    proofAvailable: bool = False
    display: str = ""

    @property
    def visible(self) -> bool:
        return self.outcome is Outcome.RAW

    @property
    def hidden(self) -> bool:
        return self.outcome is Outcome.HIDDEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "axis": self.axis.value,
            "outcome": self.outcome.value,
            "visible": self.visible,
            "value": self.value,
            "range": {"min": self.range[0], "max": self.range[1]} if self.range else None,
            "segment": self.segment,
            "proofAvailable": self.proofAvailable,
            "display": self.display,
        }


@dataclass
class ProjectedBatch:
    batchId: int
    role: Role
    name: str = ""
    productionDate: int = 0
    expiryDate: int = 0
    lastVerifiedTimestamp: int = 0
    isVerified: bool = False
    isMetadataVerified: bool = False
    quantity: int = 0
    mintedQuantity: int = 0
    availableQuantity: int = 0
    packagingInfo: str = ""
    metadataHash: str = ""

    pricing: Optional[DisclosedValue] = None
    quality: Optional[DisclosedValue] = None
    supplyChain: Optional[DisclosedValue] = None

    hasZKProofs: bool = False
    hasEncryptedData: bool = False

    def axis(self, axis: Axis) -> Optional[DisclosedValue]:
        return getattr(self, axis.value)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["role"] = self.role.value
        for ax in Axis:
            dv = self.axis(ax)
            d[ax.value] = dv.to_dict() if dv else None
        return d
