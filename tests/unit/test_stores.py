"""
Store adapters: in-process behaviour, and the MongoDB adapters against
MagicMock collections (query shapes and result handling). Guard semantics
run against mongomock in test_mongo_stores.py.
"""

from unittest.mock import MagicMock

import pytest

from coffee_backend.models.batch.batch_models import VerificationConfig, VerificationConfigUpdate
from coffee_backend.models.redemption.redemption_models import RedemptionRequest, RedemptionStatus
from coffee_backend.services.errors import (
    BatchNotFound,
    ConfigMissing,
    InsufficientBalance,
    InvalidInput,
)
from coffee_backend.services.stores.balance_store import InMemoryBalanceStore, MongoBalanceStore
from coffee_backend.services.stores.batch_store import InMemoryBatchStore, MongoBatchStore, load_batch
from coffee_backend.services.stores.config_store import InMemoryConfigStore, MongoConfigStore
from coffee_backend.services.stores.redemption_store import InMemoryRedemptionStore, MongoRedemptionStore


def mock_db():
    cols = {}

    def getitem(name):
        return cols.setdefault(name, MagicMock(name=name))

    db = MagicMock()
    db.__getitem__.side_effect = getitem
    return db, cols


# =============================================================================
# Batches
# =============================================================================

class TestInMemoryBatchStore:

    def test_get_and_list(self, make_batch):
        store = InMemoryBatchStore([make_batch(batchId=i) for i in (3, 1, 2)])
        assert store.get_batch(2).batchId == 2
        assert [b.batchId for b in store.list_batches()] == [1, 2, 3]
        assert [b.batchId for b in store.list_batches(after=1, limit=1)] == [2]
        with pytest.raises(BatchNotFound):
            store.get_batch(9)

    def test_adjust_minted_keeps_availability(self, make_batch):
        store = InMemoryBatchStore([make_batch(quantity=100, mintedQuantity=40)])
        b = store.adjust_minted(1, 50)
        assert (b.mintedQuantity, b.availableQuantity) == (90, 10)
        b = store.adjust_minted(1, -20)
        assert (b.mintedQuantity, b.availableQuantity) == (70, 30)

    @pytest.mark.parametrize("delta", [31, -71])
    def test_adjust_minted_out_of_range(self, make_batch, delta):
        store = InMemoryBatchStore([make_batch(quantity=100, mintedQuantity=70)])
        with pytest.raises(InvalidInput):
            store.adjust_minted(1, delta)
        assert store.get_batch(1).mintedQuantity == 70

    def test_set_last_verified(self, make_batch):
        store = InMemoryBatchStore([make_batch(lastVerifiedTimestamp=0, isVerified=False)])
        b = store.set_last_verified(1, 1234)
        assert b.lastVerifiedTimestamp == 1234 and b.isVerified


class TestLoadBatch:

    def test_strips_mongo_fields_and_coerces_dates(self):
        b = load_batch({
            "_id": "abc",
            "created_at": "x",
            "batchId": 7,
            "quantity": 10,
            "productionDate": "2024-01-01T00:00:00Z",
            "expiryDate": "2025-01-01T00:00:00Z",
        })
        assert b.productionDate == 1704067200
        assert b.availableQuantity == 10

    @pytest.mark.parametrize("doc", [
        {"batchId": 1, "quantity": 10, "mintedQuantity": 11, "productionDate": 1, "expiryDate": 2},
        {"batchId": 1, "quantity": 10, "availableQuantity": 3, "productionDate": 1, "expiryDate": 2},
        {"batchId": 1, "quantity": 10, "productionDate": 5, "expiryDate": 5},
        {"batchId": 0, "quantity": 10, "productionDate": 1, "expiryDate": 2},
        {"batchId": 1, "quantity": 10, "productionDate": "not a date", "expiryDate": 2},
    ])
    def test_malformed(self, doc):
        with pytest.raises(InvalidInput):
            load_batch(doc)


class TestMongoBatchStore:

    def test_get_missing(self):
        db, cols = mock_db()
        cols.setdefault("coffee_batches", MagicMock()).find_one.return_value = None
        with pytest.raises(BatchNotFound):
            MongoBatchStore(db).get_batch(5)

    def test_adjust_minted_rejected(self, make_batch):
        db, cols = mock_db()
        col = cols.setdefault("coffee_batches", MagicMock())
        col.find_one_and_update.return_value = None
        col.find_one.return_value = make_batch(quantity=100, mintedQuantity=95).to_doc()
        with pytest.raises(InvalidInput):
            MongoBatchStore(db).adjust_minted(1, 10)


# =============================================================================
# Balances
# =============================================================================

class TestInMemoryBalanceStore:

    def test_reserve_respects_free_balance(self):
        s = InMemoryBalanceStore()
        s.set_balance(1, "h", 10)
        s.reserve(1, "h", 6)
        with pytest.raises(InsufficientBalance):
            s.reserve(1, "h", 5)
        s.release(1, "h", 6)
        assert s.reserve(1, "h", 10) == 10

    def test_decrement(self):
        s = InMemoryBalanceStore()
        s.set_balance(1, "h", 10)
        s.reserve(1, "h", 4)
        assert s.decrement_balance(1, "h", 4, reserved=4) == 6
        assert s.get_reserved(1, "h") == 0
        with pytest.raises(InsufficientBalance):
            s.decrement_balance(1, "h", 7)
        assert s.get_balance(1, "h") == 6

    def test_balance_cannot_drop_below_reserved(self):
        s = InMemoryBalanceStore()
        s.set_balance(1, "h", 10)
        s.reserve(1, "h", 8)
        with pytest.raises(InsufficientBalance):
            s.set_balance(1, "h", 5)

    def test_unknown_holder_has_nothing(self):
        s = InMemoryBalanceStore()
        assert s.get_balance(1, "nobody") == 0
        with pytest.raises(InsufficientBalance):
            s.reserve(1, "nobody", 1)

    def test_failed_lookups_leave_no_rows(self):
        s = InMemoryBalanceStore()
        for _ in range(3):
            with pytest.raises(InsufficientBalance):
                s.reserve(1, "nobody", 1)
            with pytest.raises(InsufficientBalance):
                s.decrement_balance(1, "nobody", 1)
        assert s.release(1, "nobody", 1) == 0
        assert s.list_balances("nobody") == []

    def test_list_balances(self):
        s = InMemoryBalanceStore()
        s.credit(3, "h", 2)
        s.set_balance(1, "h", 10)
        s.credit(1, "other", 4)
        s.reserve(1, "h", 1)
        assert s.list_balances(" h ") == [
            {"batchId": 1, "holder": "h", "balance": 10, "reserved": 1},
            {"batchId": 3, "holder": "h", "balance": 2, "reserved": 0},
        ]

    @pytest.mark.parametrize("amount", [0, -3])
    def test_amount_must_be_positive(self, amount):
        with pytest.raises(InvalidInput):
            InMemoryBalanceStore().credit(1, "h", amount)


class TestMongoBalanceStore:

    def test_reserve_guard(self):
        db, cols = mock_db()
        col = cols.setdefault("token_balances", MagicMock())
        col.find_one_and_update.return_value = {"reserved": 3}

        assert MongoBalanceStore(db).reserve(2, " h ", 3) == 3
        q, update = col.find_one_and_update.call_args[0]
        assert q["batchId"] == 2 and q["holder"] == "h"
        assert q["$expr"]["$gte"][1] == 3
        assert update["$inc"] == {"reserved": 3}

    def test_reserve_rejected(self):
        db, cols = mock_db()
        cols.setdefault("token_balances", MagicMock()).find_one_and_update.return_value = None
        with pytest.raises(InsufficientBalance):
            MongoBalanceStore(db).reserve(2, "h", 3)

    def test_decrement_with_reservation(self):
        db, cols = mock_db()
        col = cols.setdefault("token_balances", MagicMock())
        col.find_one_and_update.return_value = {"balance": 5, "reserved": 0}

        assert MongoBalanceStore(db).decrement_balance(2, "h", 3, reserved=3) == 5
        q, update = col.find_one_and_update.call_args[0]
        assert q["balance"] == {"$gte": 3}
        assert q["reserved"] == {"$gte": 3}
        assert update["$inc"] == {"balance": -3, "reserved": -3}

    def test_plain_decrement_does_not_filter_reserved(self):
        db, cols = mock_db()
        col = cols.setdefault("token_balances", MagicMock())
        col.find_one_and_update.return_value = {"balance": 1}
        MongoBalanceStore(db).decrement_balance(2, "h", 3)
        q, _ = col.find_one_and_update.call_args[0]
        assert "reserved" not in q

    def test_decrement_rejected(self):
        db, cols = mock_db()
        cols.setdefault("token_balances", MagicMock()).find_one_and_update.return_value = None
        with pytest.raises(InsufficientBalance):
            MongoBalanceStore(db).decrement_balance(2, "h", 3)

    def test_set_balance_inserts_new_holder(self):
        db, cols = mock_db()
        col = cols.setdefault("token_balances", MagicMock())
        col.update_one.return_value = MagicMock(matched_count=0)
        col.find_one.return_value = None

        MongoBalanceStore(db).set_balance(2, "h", 8)
        doc = col.insert_one.call_args[0][0]
        assert (doc["batchId"], doc["holder"], doc["balance"], doc["reserved"]) == (2, "h", 8, 0)

    def test_set_balance_below_reserved(self):
        db, cols = mock_db()
        col = cols.setdefault("token_balances", MagicMock())
        col.update_one.return_value = MagicMock(matched_count=0)
        col.find_one.return_value = {"_id": "x"}
        with pytest.raises(InsufficientBalance):
            MongoBalanceStore(db).set_balance(2, "h", 1)
        col.insert_one.assert_not_called()


# =============================================================================
# Verification config
# =============================================================================

class TestConfigStores:

    def test_in_memory_missing(self):
        with pytest.raises(ConfigMissing):
            InMemoryConfigStore().get_verification_config()

    def test_in_memory_partial_update(self):
        s = InMemoryConfigStore(VerificationConfig())
        cfg = s.update_verification_config(VerificationConfigUpdate(lowInventoryThreshold=25))
        assert cfg.lowInventoryThreshold == 25
        assert cfg.auditInterval == VerificationConfig().auditInterval
        assert s.get_verification_config() == cfg

    def test_mongo_falls_back_to_defaults(self):
        db, cols = mock_db()
        cols.setdefault("verification_config", MagicMock()).find_one.return_value = None
        defaults = VerificationConfig(maxBatchesPerCycle=5)
        assert MongoConfigStore(db, defaults=defaults).get_verification_config() == defaults
        with pytest.raises(ConfigMissing):
            MongoConfigStore(db).get_verification_config()

    def test_mongo_reads_stored(self):
        db, cols = mock_db()
        cols.setdefault("verification_config", MagicMock()).find_one.return_value = {
            "_id": "verification", "lowInventoryThreshold": 3, "updated_at": "x",
        }
        cfg = MongoConfigStore(db).get_verification_config()
        assert cfg.lowInventoryThreshold == 3

    def test_mongo_update_upserts_merged(self):
        db, cols = mock_db()
        col = cols.setdefault("verification_config", MagicMock())
        col.find_one.return_value = None
        cfg = MongoConfigStore(db, defaults=VerificationConfig()).update_verification_config(
            VerificationConfigUpdate(cycleInterval=3600)
        )
        assert cfg.cycleInterval == 3600
        q, update = col.update_one.call_args[0]
        assert q == {"_id": "verification"}
        assert update["$set"]["cycleInterval"] == 3600
        assert col.update_one.call_args[1]["upsert"] is True


# =============================================================================
# Redemptions
# =============================================================================

def _request(**kw):
    data = {"id": 1, "batchId": 3, "consumer": "h", "quantity": 2,
            "deliveryInfo": {"address": "1 Main"}, "createdAt": 100}
    data.update(kw)
    return RedemptionRequest(**data)


class TestRedemptionStores:

    def test_in_memory_compare_and_set(self):
        s = InMemoryRedemptionStore()
        s.insert(_request())
        assert s.compare_and_set(1, RedemptionStatus.PROCESSING, {"status": RedemptionStatus.FULFILLED}) is None
        out = s.compare_and_set(1, RedemptionStatus.REQUESTED, {"status": RedemptionStatus.PROCESSING})
        assert out.status is RedemptionStatus.PROCESSING
        assert s.get(1).status is RedemptionStatus.PROCESSING

    def test_mongo_next_id_uses_counter(self):
        db, cols = mock_db()
        cols.setdefault("counters", MagicMock()).find_one_and_update.return_value = {"seq": 42}
        assert MongoRedemptionStore(db).next_id() == 42
        q, update = cols["counters"].find_one_and_update.call_args[0]
        assert q == {"_id": "redemption_id"} and update == {"$inc": {"seq": 1}}

    def test_mongo_compare_and_set_filters_on_status(self):
        db, cols = mock_db()
        col = cols.setdefault("redemption_requests", MagicMock())
        col.find_one_and_update.return_value = _request(status="Processing").to_doc()

        out = MongoRedemptionStore(db).compare_and_set(
            1, RedemptionStatus.REQUESTED, {"status": RedemptionStatus.PROCESSING, "processedAt": 5},
        )
        assert out.status is RedemptionStatus.PROCESSING
        q, update = col.find_one_and_update.call_args[0]
        assert q == {"id": 1, "status": "Requested"}
        assert update == {"$set": {"status": "Processing", "processedAt": 5}}

    def test_mongo_compare_and_set_lost(self):
        db, cols = mock_db()
        cols.setdefault("redemption_requests", MagicMock()).find_one_and_update.return_value = None
        assert MongoRedemptionStore(db).compare_and_set(1, RedemptionStatus.REQUESTED, {}) is None
