# coffee_backend/mongo.py
from __future__ import annotations

import os
from flask_pymongo import PyMongo
from pymongo import ASCENDING

mongo = PyMongo()


def ensure_indexes(db):
    db["coffee_batches"].create_index([("batchId", ASCENDING)], unique=True)
    db["token_balances"].create_index([("batchId", ASCENDING), ("holder", ASCENDING)], unique=True)
    db["redemption_requests"].create_index([("id", ASCENDING)], unique=True)
    db["redemption_requests"].create_index([("consumer", ASCENDING), ("status", ASCENDING)])


def init_mongo(app):
    """
    Initializes Flask-PyMongo.
    Requires app.config["MONGO_URI"] or env var MONGO_URI.
    Call this during app startup (create_app).
    """
    if not app.config.get("MONGO_URI"):
        app.config["MONGO_URI"] = os.getenv("MONGO_URI")

    # still missing: keep the app up on the in-memory stores
    if not app.config.get("MONGO_URI"):
        print("⚠️ MONGO_URI not set. Mongo will not be initialized.")
        return mongo

    try:
        mongo.init_app(app)
        ensure_indexes(mongo.db)
        print("✅ Mongo initialized")
    except Exception as e:
        print(f"⚠️ Mongo init failed: {e}")

    return mongo
