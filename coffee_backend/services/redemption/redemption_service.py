# coffee_backend/services/redemption/redemption_service.py
"""
Redemption request lifecycle.

    Requested -> Processing -> Fulfilled
    Requested | Processing -> Cancelled

Creating a request soft-reserves the quantity against the holder's balance,
so several open requests can never add up to more than the holder owns.
Fulfilment burns the tokens (balance and reservation together); cancelling
only releases the reservation.

create/advance for the same (batchId, consumer) run one at a time inside this
process; the balance store guards the same invariant across processes.
"""
from __future__ import annotations

import logging
import os
import threading
import time
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import ValidationError

from coffee_backend.models.batch.inventory_models import BatchStatus
from coffee_backend.models.redemption.redemption_models import (
    DeliveryInfo,
    RedemptionRequest,
    RedemptionStatus,
)
from coffee_backend.services.errors import (
    BatchNotRedeemable,
    InvalidInput,
    InvalidTransition,
    RedemptionNotFound,
)
from coffee_backend.services.inventory.status_service import derive_status

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[RedemptionStatus, Tuple[RedemptionStatus, ...]] = {
    RedemptionStatus.REQUESTED: (RedemptionStatus.PROCESSING, RedemptionStatus.CANCELLED),
    RedemptionStatus.PROCESSING: (RedemptionStatus.FULFILLED, RedemptionStatus.CANCELLED),
    RedemptionStatus.FULFILLED: (),
    RedemptionStatus.CANCELLED: (),
}

DEFAULT_REDEEMABLE = frozenset({
    BatchStatus.VERIFIED,
    BatchStatus.LOW_INVENTORY,
    BatchStatus.LONG_STORAGE,
})


def can_transition(current: RedemptionStatus, target: RedemptionStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, ())


@dataclass(frozen=True)
class RedemptionPolicy:
    allowed_statuses: FrozenSet[BatchStatus] = field(default_factory=lambda: DEFAULT_REDEEMABLE)

    @classmethod
    def from_env(cls) -> "RedemptionPolicy":
        raw = (os.getenv("REDEMPTION_ALLOWED_STATUSES") or "").strip()
        if not raw:
            return cls()
        try:
            allowed = frozenset(BatchStatus(s.strip()) for s in raw.split(",") if s.strip())
        except ValueError as e:
            raise InvalidInput(f"REDEMPTION_ALLOWED_STATUSES: {e}")
        return cls(allowed_statuses=allowed)


class _KeyedLocks:
    """
    One lock per (batchId, holder), created on first use. Entries drop out
    once no caller holds the lock any more.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def get(self, batch_id: int, holder: str) -> threading.Lock:
        key = (int(batch_id), holder)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class RedemptionService:

    def __init__(self, batch_store, balance_store, config_store, redemption_store,
                 policy: Optional[RedemptionPolicy] = None, clock=time.time):
        self.batches = batch_store
        self.balances = balance_store
        self.configs = config_store
        self.redemptions = redemption_store
        self.policy = policy or RedemptionPolicy()
        self._clock = clock
        self._locks = _KeyedLocks()

    def _now(self) -> int:
        return int(self._clock())

    # -----------------------------
    # CREATE
    # -----------------------------
    def create_redemption(self, batch_id: int, consumer: str, quantity: int, delivery_info: Any) -> RedemptionRequest:
        consumer = (consumer or "").strip()
        if not consumer:
            raise InvalidInput("consumer is required")
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise InvalidInput("quantity must be an integer", quantity=quantity)
        if quantity <= 0:
            raise InvalidInput("quantity must be greater than zero", quantity=quantity)
        delivery = self._delivery(delivery_info)

        batch = self.batches.get_batch(batch_id)
        now = self._now()
        report = derive_status(batch, self.configs.get_verification_config(), now)
        if report.status not in self.policy.allowed_statuses:
            raise BatchNotRedeemable(
                f"batch {batch.batchId} cannot be redeemed while {report.status.value}",
                batchId=batch.batchId, status=report.status.value, alerts=report.alerts,
            )

        with self._locks.get(batch.batchId, consumer):
            self.balances.reserve(batch.batchId, consumer, quantity)
            try:
                req = RedemptionRequest(
                    id=self.redemptions.next_id(),
                    batchId=batch.batchId,
                    consumer=consumer,
                    quantity=quantity,
                    status=RedemptionStatus.REQUESTED,
                    deliveryInfo=delivery,
                    createdAt=now,
                )
                self.redemptions.insert(req)
            except Exception:
                self.balances.release(batch.batchId, consumer, quantity)
                raise

        logger.info("redemption %s requested: batch=%s consumer=%s qty=%s",
                    req.id, req.batchId, consumer, quantity)
        return req

    @staticmethod
    def _delivery(delivery_info: Any) -> DeliveryInfo:
        if isinstance(delivery_info, DeliveryInfo):
            return delivery_info
        if isinstance(delivery_info, str):
            delivery_info = {"address": delivery_info}
        if not delivery_info:
            raise InvalidInput("delivery information is required")
        try:
            return DeliveryInfo.model_validate(delivery_info)
        except ValidationError as e:
            raise InvalidInput(f"invalid delivery information: {e.errors()[0].get('msg')}")

    # -----------------------------
    # READ
    # -----------------------------
    def get_redemption(self, request_id: int) -> RedemptionRequest:
        req = self.redemptions.get(request_id)
        if req is None:
            raise RedemptionNotFound(f"redemption {request_id} not found", id=request_id)
        return req

    def list_redemptions(self, consumer: Optional[str] = None, status: Optional[RedemptionStatus] = None) -> List[RedemptionRequest]:
        return self.redemptions.list(consumer=consumer, status=status)

    # -----------------------------
    # ADVANCE
    # -----------------------------
    def advance_redemption(self, request_id: int, target_state: Any,
                           actor: Optional[str] = None, tracking_number: Optional[str] = None) -> RedemptionRequest:
        try:
            target = RedemptionStatus(target_state)
        except ValueError:
            raise InvalidInput(f"unknown redemption status: {target_state}")

        req = self.get_redemption(request_id)
        with self._locks.get(req.batchId, req.consumer):
            # re-read inside the lock; another worker may have moved it
            req = self.get_redemption(request_id)
            if not can_transition(req.status, target):
                raise InvalidTransition(
                    f"cannot move redemption {req.id} from {req.status.value} to {target.value}",
                    id=req.id, current=req.status.value, target=target.value,
                )

            now = self._now()
            changes: Dict[str, Any] = {"status": target}
            if target is RedemptionStatus.PROCESSING:
                changes["processedAt"] = now
                changes["processedBy"] = actor
                if tracking_number:
                    changes["trackingNumber"] = tracking_number
            elif target is RedemptionStatus.FULFILLED:
                changes["fulfilledAt"] = now
                if tracking_number:
                    changes["trackingNumber"] = tracking_number
            else:
                changes["cancelledAt"] = now

            if target is RedemptionStatus.FULFILLED:
                updated = self._fulfil(req, changes)
            elif target is RedemptionStatus.CANCELLED:
                updated = self._cas(req, changes)
                self.balances.release(req.batchId, req.consumer, req.quantity)
            else:
                updated = self._cas(req, changes)

        logger.info("redemption %s: %s -> %s (batch=%s consumer=%s qty=%s)",
                    req.id, req.status.value, target.value, req.batchId, req.consumer, req.quantity)
        return updated

    def _cas(self, req: RedemptionRequest, changes: Dict[str, Any]) -> RedemptionRequest:
        updated = self.redemptions.compare_and_set(req.id, req.status, changes)
        if updated is None:
            raise InvalidTransition(
                f"redemption {req.id} changed concurrently", id=req.id, current=req.status.value,
            )
        return updated

    def _fulfil(self, req: RedemptionRequest, changes: Dict[str, Any]) -> RedemptionRequest:
        self.balances.decrement_balance(req.batchId, req.consumer, req.quantity, reserved=req.quantity)
        try:
            return self._cas(req, changes)
        except InvalidTransition:
            # lost the race: hand the burned tokens and reservation back
            self.balances.credit(req.batchId, req.consumer, req.quantity)
            self.balances.reserve(req.batchId, req.consumer, req.quantity)
            raise
