"""
MongoDB store adapters run against an in-process mongomock database, so the
guarded updates are evaluated, not just inspected.
"""

import mongomock
import pytest

from coffee_backend.models.batch.batch_models import DAY
from coffee_backend.services.errors import InsufficientBalance, InvalidInput
from coffee_backend.services.redemption.token_service import mint_tokens
from coffee_backend.services.stores.balance_store import MongoBalanceStore
from coffee_backend.services.stores.batch_store import InMemoryBatchStore, MongoBatchStore

NOW = 1_700_000_000


@pytest.fixture
def db():
    return mongomock.MongoClient().get_database("coffee_test")


def bare_batch(batch_id=7, **kw):
    """A batch as an external creator writes it: no availableQuantity."""
    doc = {
        "batchId": batch_id,
        "quantity": 100,
        "mintedQuantity": 0,
        "productionDate": NOW - 10 * DAY,
        "expiryDate": NOW + 300 * DAY,
    }
    doc.update(kw)
    return doc


# =============================================================================
# Batches
# =============================================================================

class TestMongoBatchMinting:

    def test_mint_on_batch_without_availability(self, db):
        db["coffee_batches"].insert_one(bare_batch())
        batches, balances = MongoBatchStore(db), MongoBalanceStore(db)

        assert mint_tokens(batches, balances, 7, "H", 10) == 10

        stored = db["coffee_batches"].find_one({"batchId": 7})
        assert (stored["mintedQuantity"], stored["availableQuantity"]) == (10, 90)
        assert batches.get_batch(7).availableQuantity == 90
        assert [b.batchId for b in batches.list_batches()] == [7]
        assert balances.get_balance(7, "H") == 10

    def test_mint_on_batch_without_minted_field(self, db):
        doc = bare_batch()
        del doc["mintedQuantity"]
        db["coffee_batches"].insert_one(doc)

        b = MongoBatchStore(db).adjust_minted(7, 25)

        assert (b.mintedQuantity, b.availableQuantity) == (25, 75)

    def test_burn_back(self, db):
        db["coffee_batches"].insert_one(bare_batch(mintedQuantity=40, availableQuantity=60))
        b = MongoBatchStore(db).adjust_minted(7, -15)
        assert (b.mintedQuantity, b.availableQuantity) == (25, 75)

    @pytest.mark.parametrize("delta", [11, -91])
    def test_out_of_range_leaves_document_alone(self, db, delta):
        db["coffee_batches"].insert_one(bare_batch(mintedQuantity=90))

        with pytest.raises(InvalidInput):
            MongoBatchStore(db).adjust_minted(7, delta)

        stored = db["coffee_batches"].find_one({"batchId": 7})
        assert stored["mintedQuantity"] == 90
        assert "availableQuantity" not in stored


class TestBatchListingLimit:

    @pytest.fixture
    def stores(self, db, make_batch):
        mongo = MongoBatchStore(db)
        memory = InMemoryBatchStore()
        for i in (1, 2, 3):
            mongo.upsert_batch(make_batch(batchId=i))
            memory.upsert_batch(make_batch(batchId=i))
        return mongo, memory

    @pytest.mark.parametrize("limit,expected", [
        (None, [1, 2, 3]),
        (2, [1, 2]),
        (0, []),
        (-1, []),
    ])
    def test_limit_is_the_same_everywhere(self, stores, limit, expected):
        for store in stores:
            assert [b.batchId for b in store.list_batches(limit=limit)] == expected

    def test_after_cursor(self, stores):
        for store in stores:
            assert [b.batchId for b in store.list_batches(after=1, limit=1)] == [2]

    def test_document_without_availability_loads(self, db, make_batch):
        doc = make_batch(batchId=4, mintedQuantity=30).to_doc()
        del doc["availableQuantity"]
        db["coffee_batches"].insert_one(doc)
        assert MongoBatchStore(db).get_batch(4).availableQuantity == 70


# =============================================================================
# Balances
# =============================================================================

class TestMongoBalanceGuards:

    @pytest.fixture
    def store(self, db):
        s = MongoBalanceStore(db)
        s.set_balance(1, "h", 10)
        return s

    def test_reserve_refuses_overcommit(self, store):
        assert store.reserve(1, "h", 6) == 6
        with pytest.raises(InsufficientBalance):
            store.reserve(1, "h", 5)
        assert store.get_reserved(1, "h") == 6
        assert store.reserve(1, "h", 4) == 10

    def test_reserve_unknown_holder(self, db):
        store = MongoBalanceStore(db)
        with pytest.raises(InsufficientBalance):
            store.reserve(1, "nobody", 1)
        assert db["token_balances"].count_documents({}) == 0

    def test_release(self, store):
        store.reserve(1, "h", 6)
        assert store.release(1, "h", 4) == 2
        # over-release clears the reservation instead of going negative
        assert store.release(1, "h", 5) == 0
        assert store.get_reserved(1, "h") == 0

    def test_decrement_burns_reservation(self, store):
        store.reserve(1, "h", 4)
        assert store.decrement_balance(1, "h", 4, reserved=4) == 6
        assert store.get_reserved(1, "h") == 0

    def test_decrement_refuses_overdraw(self, store):
        with pytest.raises(InsufficientBalance):
            store.decrement_balance(1, "h", 11)
        assert store.get_balance(1, "h") == 10

    def test_decrement_needs_the_reservation(self, store):
        store.reserve(1, "h", 2)
        with pytest.raises(InsufficientBalance):
            store.decrement_balance(1, "h", 3, reserved=3)
        assert (store.get_balance(1, "h"), store.get_reserved(1, "h")) == (10, 2)

    def test_set_balance_below_reserved(self, store):
        store.reserve(1, "h", 8)
        with pytest.raises(InsufficientBalance):
            store.set_balance(1, "h", 5)
        assert store.get_balance(1, "h") == 10
        assert store.set_balance(1, "h", 8) == 8

    def test_credit_creates_holder(self, db):
        store = MongoBalanceStore(db)
        assert store.credit(2, "new", 3) == 3
        assert store.credit(2, "new", 2) == 5
        assert store.get_reserved(2, "new") == 0

    def test_list_balances(self, store):
        store.credit(3, "h", 2)
        store.credit(3, "other", 9)
        store.reserve(1, "h", 1)
        assert store.list_balances("h") == [
            {"batchId": 1, "holder": "h", "balance": 10, "reserved": 1},
            {"batchId": 3, "holder": "h", "balance": 2, "reserved": 0},
        ]
