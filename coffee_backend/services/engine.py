# coffee_backend/services/engine.py
"""
Wires stores and services together once per app.

    engine = build_engine(db)            # Mongo-backed
    engine = build_engine()              # in-process (DISABLE_MONGO=1, tests)

Flask keeps it in app.extensions["coffee_engine"]; the FastAPI router keeps
its own module-level instance (see coffee_backend.fastapi.coffee_api).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app

from coffee_backend.models.batch.batch_models import VerificationConfig
from coffee_backend.services.ledger.ledger_sync_service import LedgerSyncService
from coffee_backend.services.redemption.redemption_service import RedemptionPolicy, RedemptionService
from coffee_backend.services.stores.balance_store import InMemoryBalanceStore, MongoBalanceStore
from coffee_backend.services.stores.batch_store import InMemoryBatchStore, MongoBatchStore
from coffee_backend.services.stores.config_store import InMemoryConfigStore, MongoConfigStore
from coffee_backend.services.stores.redemption_store import InMemoryRedemptionStore, MongoRedemptionStore

EXTENSION_KEY = "coffee_engine"


@dataclass
class CoffeeEngine:
    batches: object
    balances: object
    configs: object
    redemptions: object
    redemption_service: RedemptionService
    ledger: LedgerSyncService
    backend: str = "memory"

    @property
    def config(self) -> VerificationConfig:
        return self.configs.get_verification_config()


def build_engine(db=None, defaults: Optional[VerificationConfig] = None,
                 policy: Optional[RedemptionPolicy] = None) -> CoffeeEngine:
    if db is not None:
        batches = MongoBatchStore(db)
        balances = MongoBalanceStore(db)
        configs = MongoConfigStore(db, defaults=defaults)
        redemptions = MongoRedemptionStore(db)
        backend = "mongo"
    else:
        batches = InMemoryBatchStore()
        balances = InMemoryBalanceStore()
        configs = InMemoryConfigStore(defaults)
        redemptions = InMemoryRedemptionStore()
        backend = "memory"

    service = RedemptionService(batches, balances, configs, redemptions, policy=policy)
    return CoffeeEngine(
        batches=batches,
        balances=balances,
        configs=configs,
        redemptions=redemptions,
        redemption_service=service,
        ledger=LedgerSyncService(batches, balances, redemption_service=service),
        backend=backend,
    )


def init_engine(app, db=None) -> CoffeeEngine:
    engine = build_engine(
        db=db,
        defaults=app.config.get("VERIFICATION_DEFAULTS"),
        policy=RedemptionPolicy.from_env(),
    )
    app.extensions[EXTENSION_KEY] = engine
    print(f"✓ Coffee engine ready ({engine.backend} stores)")
    return engine


def get_engine() -> CoffeeEngine:
    return current_app.extensions[EXTENSION_KEY]
