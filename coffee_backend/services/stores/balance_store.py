# coffee_backend/services/stores/balance_store.py
"""
Token balances per (batchId, holder).

Each document also carries `reserved`: units promised to open redemption
requests. Every mutation is a single guarded update, so `0 <= reserved <=
balance` holds even with several workers writing at once.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from pymongo import ASCENDING, ReturnDocument

from coffee_backend.services.errors import InsufficientBalance, InvalidInput


def _key(batch_id: int, holder: str) -> Tuple[int, str]:
    return int(batch_id), (holder or "").strip()


def _positive(amount: int) -> int:
    amount = int(amount)
    if amount <= 0:
        raise InvalidInput("amount must be positive", amount=amount)
    return amount


class InMemoryBalanceStore:

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: Dict[Tuple[int, str], Dict[str, int]] = {}

    def _row(self, batch_id: int, holder: str) -> Dict[str, int]:
        return self._rows.setdefault(_key(batch_id, holder), {"balance": 0, "reserved": 0})

    def get_balance(self, batch_id: int, holder: str) -> int:
        with self._lock:
            row = self._rows.get(_key(batch_id, holder))
            return row["balance"] if row else 0

    def get_reserved(self, batch_id: int, holder: str) -> int:
        with self._lock:
            row = self._rows.get(_key(batch_id, holder))
            return row["reserved"] if row else 0

    def list_balances(self, holder: str) -> List[Dict[str, Any]]:
        holder = (holder or "").strip()
        with self._lock:
            rows = [
                {"batchId": b, "holder": h, **row}
                for (b, h), row in self._rows.items() if h == holder
            ]
        return sorted(rows, key=lambda r: r["batchId"])

    def set_balance(self, batch_id: int, holder: str, amount: int) -> int:
        amount = int(amount)
        if amount < 0:
            raise InvalidInput("balance cannot be negative", amount=amount)
        with self._lock:
            row = self._row(batch_id, holder)
            if amount < row["reserved"]:
                raise InsufficientBalance(
                    "balance would fall below reserved quantity",
                    batchId=batch_id, holder=holder, reserved=row["reserved"],
                )
            row["balance"] = amount
            return amount

    def credit(self, batch_id: int, holder: str, amount: int) -> int:
        amount = _positive(amount)
        with self._lock:
            row = self._row(batch_id, holder)
            row["balance"] += amount
            return row["balance"]

    def reserve(self, batch_id: int, holder: str, amount: int) -> int:
        amount = _positive(amount)
        with self._lock:
            row = self._rows.get(_key(batch_id, holder))
            free = row["balance"] - row["reserved"] if row else 0
            if free < amount:
                raise InsufficientBalance(
                    "insufficient balance",
                    batchId=batch_id, holder=holder, requested=amount, available=free,
                )
            row["reserved"] += amount
            return row["reserved"]

    def release(self, batch_id: int, holder: str, amount: int) -> int:
        amount = _positive(amount)
        with self._lock:
            row = self._rows.get(_key(batch_id, holder))
            if row is None:
                return 0
            row["reserved"] = max(0, row["reserved"] - amount)
            return row["reserved"]

    def decrement_balance(self, batch_id: int, holder: str, amount: int, reserved: int = 0) -> int:
        """Burn `amount`; `reserved` of it is taken out of the reservation too."""
        amount = _positive(amount)
        with self._lock:
            row = self._rows.get(_key(batch_id, holder)) or {"balance": 0, "reserved": 0}
            if row["balance"] < amount or row["reserved"] < reserved:
                raise InsufficientBalance(
                    "insufficient balance",
                    batchId=batch_id, holder=holder, requested=amount, balance=row["balance"],
                )
            row["balance"] -= amount
            row["reserved"] -= reserved
            return row["balance"]


class MongoBalanceStore:

    def __init__(self, db, collection: str = "token_balances"):
        self.col = db[collection]

    def _q(self, batch_id: int, holder: str) -> Dict:
        b, h = _key(batch_id, holder)
        return {"batchId": b, "holder": h}

    def _read(self, batch_id: int, holder: str, field: str) -> int:
        doc = self.col.find_one(self._q(batch_id, holder), {"_id": 0, field: 1})
        return int((doc or {}).get(field) or 0)

    def get_balance(self, batch_id: int, holder: str) -> int:
        return self._read(batch_id, holder, "balance")

    def get_reserved(self, batch_id: int, holder: str) -> int:
        return self._read(batch_id, holder, "reserved")

    def list_balances(self, holder: str) -> List[Dict[str, Any]]:
        cur = self.col.find(
            {"holder": (holder or "").strip()},
            {"_id": 0, "batchId": 1, "holder": 1, "balance": 1, "reserved": 1},
        ).sort([("batchId", ASCENDING)])
        return [
            {"batchId": d["batchId"], "holder": d["holder"],
             "balance": int(d.get("balance") or 0), "reserved": int(d.get("reserved") or 0)}
            for d in cur
        ]

    def set_balance(self, batch_id: int, holder: str, amount: int) -> int:
        amount = int(amount)
        if amount < 0:
            raise InvalidInput("balance cannot be negative", amount=amount)
        q = {**self._q(batch_id, holder), "$expr": {"$lte": [{"$ifNull": ["$reserved", 0]}, amount]}}
        res = self.col.update_one(
            q,
            {"$set": {"balance": amount, "updated_at": datetime.now(timezone.utc)}},
        )
        if res.matched_count:
            return amount
        if self.col.find_one(self._q(batch_id, holder), {"_id": 1}):
            raise InsufficientBalance(
                "balance would fall below reserved quantity", batchId=batch_id, holder=holder,
            )
        self.col.insert_one({
            **self._q(batch_id, holder),
            "balance": amount,
            "reserved": 0,
            "updated_at": datetime.now(timezone.utc),
        })
        return amount

    def credit(self, batch_id: int, holder: str, amount: int) -> int:
        amount = _positive(amount)
        doc = self.col.find_one_and_update(
            self._q(batch_id, holder),
            {
                "$inc": {"balance": amount},
                "$set": {"updated_at": datetime.now(timezone.utc)},
                "$setOnInsert": {"reserved": 0},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc.get("balance") or 0)

    def reserve(self, batch_id: int, holder: str, amount: int) -> int:
        amount = _positive(amount)
        q = {
            **self._q(batch_id, holder),
            "$expr": {
                "$gte": [{"$subtract": ["$balance", {"$ifNull": ["$reserved", 0]}]}, amount]
            },
        }
        doc = self.col.find_one_and_update(
            q,
            {"$inc": {"reserved": amount}, "$set": {"updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise InsufficientBalance(
                "insufficient balance", batchId=batch_id, holder=holder, requested=amount,
            )
        return int(doc.get("reserved") or 0)

    def release(self, batch_id: int, holder: str, amount: int) -> int:
        amount = _positive(amount)
        doc = self.col.find_one_and_update(
            {**self._q(batch_id, holder), "reserved": {"$gte": amount}},
            {"$inc": {"reserved": -amount}, "$set": {"updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            return int(doc.get("reserved") or 0)
        # reservation already smaller than amount (e.g. after a ledger resync): clear it
        self.col.update_one(self._q(batch_id, holder), {"$set": {"reserved": 0}})
        return 0

    def decrement_balance(self, batch_id: int, holder: str, amount: int, reserved: int = 0) -> int:
        amount = _positive(amount)
        reserved = int(reserved)
        q = {**self._q(batch_id, holder), "balance": {"$gte": amount}}
        if reserved:
            q["reserved"] = {"$gte": reserved}
        doc = self.col.find_one_and_update(
            q,
            {
                "$inc": {"balance": -amount, "reserved": -reserved},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise InsufficientBalance(
                "insufficient balance", batchId=batch_id, holder=holder, requested=amount,
            )
        return int(doc.get("balance") or 0)
