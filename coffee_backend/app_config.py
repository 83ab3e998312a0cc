# coffee_backend/app_config.py

import os

from coffee_backend.models.batch.batch_models import DAY, VerificationConfig


def _int_env(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"⚠️ {name}={raw!r} is not an integer; using {default}")
        return default


def verification_defaults():
    """
    Thresholds served until an admin stores a config of their own.
    """
    return VerificationConfig(
        auditInterval=_int_env("AUDIT_INTERVAL_SECONDS", 7 * DAY),
        expiryWarningThreshold=_int_env("EXPIRY_WARNING_SECONDS", 60 * DAY),
        lowInventoryThreshold=_int_env("LOW_INVENTORY_THRESHOLD", 10),
        longStorageThreshold=_int_env("LONG_STORAGE_SECONDS", 180 * DAY),
        maxBatchesPerCycle=_int_env("MAX_BATCHES_PER_CYCLE", 50),
        cycleInterval=_int_env("CYCLE_INTERVAL_SECONDS", DAY),
    )


def load_config(app):
    """
    Load all Flask configuration in a clean centralized way.
    """
    # ------------------------------
    # Mongo
    # ------------------------------
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI",
        "mongodb://localhost:27017/coffee_traceability_db"
    )

    # ------------------------------
    # Verification thresholds
    # ------------------------------
    app.config["VERIFICATION_DEFAULTS"] = verification_defaults()

    # ------------------------------
    # Ledger
    # ------------------------------
    app.config["LEDGER_RPC_URL"] = os.getenv("LEDGER_RPC_URL") or None
    app.config["COFFEE_TOKEN_ADDRESS"] = os.getenv("COFFEE_TOKEN_ADDRESS") or None

    # ------------------------------
    # Security Keys
    # ------------------------------
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", os.urandom(24))
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me")

    print("✓ Config Loaded Successfully")
