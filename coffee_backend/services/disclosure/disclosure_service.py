# coffee_backend/services/disclosure/disclosure_service.py
"""
Role- and privacy-aware projection of a batch.

Rules per axis (pricing / quality / supplyChain):
  - admin, processor      -> raw value, whatever the privacy settings say
  - distributor, pricing  -> raw value when pricing.private is False, unless
                             the axis level is private (level wins)
  - level public          -> raw value
  - level selective       -> indicative range picked by tier
  - level private         -> hidden
A batch without privacy settings, or an axis without settings, is private.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from coffee_backend.models.batch.batch_models import Batch, DisclosureLevel, PrivacyAxis
from coffee_backend.models.batch.disclosure_models import (
    Axis,
    DisclosedValue,
    IndicativeRange,
    Outcome,
    ProjectedBatch,
    Role,
)

TIER_RANGES: Dict[int, IndicativeRange] = {
    1: IndicativeRange(15, 50, "premium"),
    2: IndicativeRange(8, 25, "mid-market"),
    3: IndicativeRange(3, 15, "value"),
}

_TIER_TITLES = {"premium": "Premium Tier", "mid-market": "Mid-Market", "value": "Value Tier"}

_AXIS_TITLES = {
    Axis.PRICING: "Pricing",
    Axis.QUALITY: "Quality",
    Axis.SUPPLY_CHAIN: "Supply Chain",
}


# -----------------------------
# Raw values
# -----------------------------
def _raw_value(batch: Batch, axis: Axis) -> Any:
    if axis is Axis.PRICING:
        return batch.pricePerUnit
    if axis is Axis.QUALITY:
        return batch.qualityScore
    return batch.supplyChain.model_dump() if batch.supplyChain else None


def _axis_settings(batch: Batch, axis: Axis) -> PrivacyAxis:
    pc = batch.privacyConfig
    settings = getattr(pc, axis.value, None) if pc else None
    # fail closed
    return settings if settings is not None else PrivacyAxis(level=DisclosureLevel.PRIVATE)


def _proof_available(batch: Batch, axis: Axis, settings: PrivacyAxis) -> bool:
    if settings.proofHash:
        return True
    refs = batch.proofReferences
    return bool(refs and getattr(refs, axis.value, None))


# -----------------------------
# Outcome builders
# -----------------------------
def _raw(batch: Batch, axis: Axis, proof: bool) -> DisclosedValue:
    value = _raw_value(batch, axis)
    if axis is Axis.PRICING:
        display = f"{value} per unit"
    elif value is None:
        display = f"{_AXIS_TITLES[axis]} Information Unavailable"
    else:
        display = str(value)
    return DisclosedValue(axis=axis, outcome=Outcome.RAW, value=value, proofAvailable=proof, display=display)


def _hidden(axis: Axis, proof: bool) -> DisclosedValue:
    return DisclosedValue(
        axis=axis,
        outcome=Outcome.HIDDEN,
        proofAvailable=proof,
        display=f"{_AXIS_TITLES[axis]} Information Hidden",
    )


def _ranged(axis: Axis, tier: Optional[int], proof: bool) -> DisclosedValue:
    band = TIER_RANGES.get(tier) if tier is not None else None
    if band is None:
        return _hidden(axis, proof)
    return DisclosedValue(
        axis=axis,
        outcome=Outcome.RANGE,
        range=(band.min, band.max),
        segment=band.label,
        proofAvailable=proof,
        display=f"{_TIER_TITLES[band.label]}: ${band.min}-{band.max} (Indicative Range)",
    )


def _by_level(batch: Batch, axis: Axis, settings: PrivacyAxis, proof: bool) -> DisclosedValue:
    if settings.level is DisclosureLevel.PUBLIC:
        return _raw(batch, axis, proof)
    if settings.level is DisclosureLevel.SELECTIVE:
        return _ranged(axis, settings.tier, proof)
    return _hidden(axis, proof)


# -----------------------------
# Role dispatch
# -----------------------------
def _full_access(batch: Batch, axis: Axis, settings: PrivacyAxis, proof: bool) -> DisclosedValue:
    return _raw(batch, axis, proof)


def _distributor(batch: Batch, axis: Axis, settings: PrivacyAxis, proof: bool) -> DisclosedValue:
    if (
        axis is Axis.PRICING
        and settings.private is False
        and settings.level is not DisclosureLevel.PRIVATE
    ):
        return _raw(batch, axis, proof)
    return _by_level(batch, axis, settings, proof)


_Resolver = Callable[[Batch, Axis, PrivacyAxis, bool], DisclosedValue]

ROLE_RESOLVERS: Dict[Role, _Resolver] = {
    Role.ADMIN: _full_access,
    Role.PROCESSOR: _full_access,
    Role.DISTRIBUTOR: _distributor,
    Role.PUBLIC: _by_level,
}

_missing = set(Role) - set(ROLE_RESOLVERS)
if _missing:
    raise RuntimeError(f"no disclosure rule for roles: {sorted(r.value for r in _missing)}")


def resolve(batch: Batch, role: Any, axis: Axis) -> DisclosedValue:
    r = Role.parse(role)
    settings = _axis_settings(batch, axis)
    proof = _proof_available(batch, axis, settings)
    return ROLE_RESOLVERS[r](batch, axis, settings, proof)


def resolve_disclosure(batch: Batch, role: Any) -> ProjectedBatch:
    r = Role.parse(role)
    return ProjectedBatch(
        batchId=batch.batchId,
        role=r,
        name=batch.name or f"Batch {batch.batchId}",
        productionDate=batch.productionDate,
        expiryDate=batch.expiryDate,
        lastVerifiedTimestamp=batch.lastVerifiedTimestamp,
        isVerified=batch.isVerified,
        isMetadataVerified=batch.isMetadataVerified,
        quantity=batch.quantity,
        mintedQuantity=batch.mintedQuantity,
        availableQuantity=batch.availableQuantity or 0,
        packagingInfo=batch.packagingInfo,
        metadataHash=batch.metadataHash,
        pricing=resolve(batch, r, Axis.PRICING),
        quality=resolve(batch, r, Axis.QUALITY),
        supplyChain=resolve(batch, r, Axis.SUPPLY_CHAIN),
        hasZKProofs=batch.has_zk_proofs(),
        hasEncryptedData=batch.has_encrypted_data(),
    )
