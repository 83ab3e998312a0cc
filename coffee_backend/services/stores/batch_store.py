# coffee_backend/services/stores/batch_store.py
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo import ASCENDING, ReturnDocument

from coffee_backend.models.batch.batch_models import Batch
from coffee_backend.services.errors import BatchNotFound, InvalidInput


def load_batch(doc: Dict[str, Any]) -> Batch:
    """Mongo doc / JSON body -> Batch; malformed records surface as InvalidInput."""
    doc = {k: v for k, v in (doc or {}).items() if k not in ("_id", "created_at", "updated_at")}
    try:
        return Batch.model_validate(doc)
    except ValidationError as e:
        raise InvalidInput(f"malformed batch: {e.errors()[0].get('msg')}", batchId=doc.get("batchId"))


def _check_minted(batch: Batch, delta: int) -> int:
    minted = batch.mintedQuantity + delta
    if minted < 0 or minted > batch.quantity:
        raise InvalidInput(
            "minted quantity out of range",
            batchId=batch.batchId,
            mintedQuantity=batch.mintedQuantity,
            delta=delta,
            quantity=batch.quantity,
        )
    return minted


class InMemoryBatchStore:
    """Process-local store used with DISABLE_MONGO=1 and in tests."""

    def __init__(self, batches: Optional[List[Batch]] = None):
        self._lock = threading.Lock()
        self._batches: Dict[int, Batch] = {}
        for b in batches or []:
            self._batches[b.batchId] = b

    def get_batch(self, batch_id: int) -> Batch:
        with self._lock:
            b = self._batches.get(int(batch_id))
        if b is None:
            raise BatchNotFound(f"batch {batch_id} not found", batchId=batch_id)
        return b

    def list_batches(self, after: Optional[int] = None, limit: Optional[int] = None) -> List[Batch]:
        if limit is not None and int(limit) <= 0:
            return []
        with self._lock:
            items = sorted(self._batches.values(), key=lambda b: b.batchId)
        if after is not None:
            items = [b for b in items if b.batchId > after]
        return items[:int(limit)] if limit is not None else items

    def upsert_batch(self, batch: Batch) -> Batch:
        with self._lock:
            self._batches[batch.batchId] = batch
        return batch

    def adjust_minted(self, batch_id: int, delta: int) -> Batch:
        with self._lock:
            b = self._batches.get(int(batch_id))
            if b is None:
                raise BatchNotFound(f"batch {batch_id} not found", batchId=batch_id)
            minted = _check_minted(b, delta)
            updated = b.model_copy(update={
                "mintedQuantity": minted,
                "availableQuantity": b.quantity - minted,
            })
            self._batches[b.batchId] = updated
            return updated

    def set_last_verified(self, batch_id: int, ts: int) -> Batch:
        with self._lock:
            b = self._batches.get(int(batch_id))
            if b is None:
                raise BatchNotFound(f"batch {batch_id} not found", batchId=batch_id)
            updated = b.model_copy(update={"lastVerifiedTimestamp": int(ts), "isVerified": True})
            self._batches[b.batchId] = updated
            return updated


class MongoBatchStore:
    """
    Batches live in `coffee_batches`, one document per batchId.
    """

    def __init__(self, db, collection: str = "coffee_batches"):
        self.col = db[collection]

    def get_batch(self, batch_id: int) -> Batch:
        doc = self.col.find_one({"batchId": int(batch_id)}, {"_id": 0})
        if not doc:
            raise BatchNotFound(f"batch {batch_id} not found", batchId=batch_id)
        return load_batch(doc)

    def list_batches(self, after: Optional[int] = None, limit: Optional[int] = None) -> List[Batch]:
        # pymongo treats limit(0) as "no limit"
        if limit is not None and int(limit) <= 0:
            return []
        q: Dict[str, Any] = {}
        if after is not None:
            q["batchId"] = {"$gt": int(after)}
        cur = self.col.find(q, {"_id": 0}).sort([("batchId", ASCENDING)])
        if limit is not None:
            cur = cur.limit(int(limit))
        return [load_batch(d) for d in cur]

    def upsert_batch(self, batch: Batch) -> Batch:
        now = datetime.now(timezone.utc)
        self.col.update_one(
            {"batchId": batch.batchId},
            {"$set": {**batch.to_doc(), "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
        )
        return batch

    def adjust_minted(self, batch_id: int, delta: int) -> Batch:
        delta = int(delta)
        # guard keeps 0 <= minted + delta <= quantity in one round trip
        guard = {
            "batchId": int(batch_id),
            "$expr": {
                "$and": [
                    {"$gte": [{"$add": [{"$ifNull": ["$mintedQuantity", 0]}, delta]}, 0]},
                    {"$lte": [{"$add": [{"$ifNull": ["$mintedQuantity", 0]}, delta]}, "$quantity"]},
                ]
            },
        }
        minted = {"$add": [{"$ifNull": ["$mintedQuantity", 0]}, delta]}
        # availability is recomputed from quantity, so documents stored without it stay loadable
        doc = self.col.find_one_and_update(
            guard,
            [{"$set": {
                "mintedQuantity": minted,
                "availableQuantity": {"$subtract": ["$quantity", minted]},
                "updated_at": datetime.now(timezone.utc),
            }}],
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            return load_batch(doc)

        current = self.get_batch(batch_id)  # raises BatchNotFound
        _check_minted(current, delta)
        raise InvalidInput("minted quantity changed concurrently", batchId=batch_id)

    def set_last_verified(self, batch_id: int, ts: int) -> Batch:
        doc = self.col.find_one_and_update(
            {"batchId": int(batch_id)},
            {"$set": {
                "lastVerifiedTimestamp": int(ts),
                "isVerified": True,
                "updated_at": datetime.now(timezone.utc),
            }},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise BatchNotFound(f"batch {batch_id} not found", batchId=batch_id)
        return load_batch(doc)
