# coffee_backend/mongo_safe.py
from __future__ import annotations

import os
from typing import Optional

# Prevent spamming logs on every request
_WARNED = False


def is_mongo_enabled() -> bool:
    return os.getenv("DISABLE_MONGO", "0") != "1"


def get_db() -> Optional[object]:
    """
    Returns mongo.db if initialized, else None.
    Safe to call anywhere (won't crash at import time).
    """
    global _WARNED

    if not is_mongo_enabled():
        return None

    from coffee_backend.mongo import mongo  # Flask-PyMongo instance
    db = getattr(mongo, "db", None)

    # init_mongo(app) not called or failed
    if db is None and not _WARNED:
        _WARNED = True
        print("⚠️ Mongo is enabled by env, but not initialized (mongo.db is None).")
    return db
