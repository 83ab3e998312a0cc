# coffee_backend/services/stores/redemption_store.py
from __future__ import annotations

import itertools
import threading
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, ReturnDocument

from coffee_backend.models.redemption.redemption_models import RedemptionRequest, RedemptionStatus


def _filters(consumer: Optional[str], status: Optional[RedemptionStatus]) -> Dict[str, Any]:
    q: Dict[str, Any] = {}
    if consumer:
        q["consumer"] = consumer.strip()
    if status:
        q["status"] = RedemptionStatus(status).value
    return q


class InMemoryRedemptionStore:

    def __init__(self):
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._items: Dict[int, RedemptionRequest] = {}

    def next_id(self) -> int:
        with self._lock:
            return next(self._seq)

    def insert(self, req: RedemptionRequest) -> RedemptionRequest:
        with self._lock:
            self._items[req.id] = req
        return req

    def get(self, request_id: int) -> Optional[RedemptionRequest]:
        with self._lock:
            return self._items.get(int(request_id))

    def list(self, consumer: Optional[str] = None, status: Optional[RedemptionStatus] = None) -> List[RedemptionRequest]:
        q = _filters(consumer, status)
        with self._lock:
            items = sorted(self._items.values(), key=lambda r: r.id)
        return [
            r for r in items
            if ("consumer" not in q or r.consumer == q["consumer"])
            and ("status" not in q or r.status.value == q["status"])
        ]

    def compare_and_set(self, request_id: int, expected: RedemptionStatus, changes: Dict[str, Any]) -> Optional[RedemptionRequest]:
        """Apply `changes` only while the request is still in `expected`."""
        with self._lock:
            cur = self._items.get(int(request_id))
            if cur is None or cur.status != expected:
                return None
            updated = cur.model_copy(update=changes)
            self._items[cur.id] = updated
            return updated


class MongoRedemptionStore:

    def __init__(self, db, collection: str = "redemption_requests", counters: str = "counters"):
        self.col = db[collection]
        self.counters = db[counters]

    def next_id(self) -> int:
        doc = self.counters.find_one_and_update(
            {"_id": "redemption_id"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])

    def insert(self, req: RedemptionRequest) -> RedemptionRequest:
        self.col.insert_one(req.to_doc())
        return req

    def get(self, request_id: int) -> Optional[RedemptionRequest]:
        doc = self.col.find_one({"id": int(request_id)}, {"_id": 0})
        return RedemptionRequest.model_validate(doc) if doc else None

    def list(self, consumer: Optional[str] = None, status: Optional[RedemptionStatus] = None) -> List[RedemptionRequest]:
        cur = self.col.find(_filters(consumer, status), {"_id": 0}).sort([("id", ASCENDING)])
        return [RedemptionRequest.model_validate(d) for d in cur]

    def compare_and_set(self, request_id: int, expected: RedemptionStatus, changes: Dict[str, Any]) -> Optional[RedemptionRequest]:
        doc_changes = {
            k: (v.value if isinstance(v, RedemptionStatus) else v) for k, v in changes.items()
        }
        doc = self.col.find_one_and_update(
            {"id": int(request_id), "status": RedemptionStatus(expected).value},
            {"$set": doc_changes},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        return RedemptionRequest.model_validate(doc) if doc else None
