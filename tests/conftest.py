"""
Shared fixtures for the coffee batch engine tests.

All instants are pinned to NOW so derivation results never depend on the
wall clock; only the HTTP tests build batches relative to time.time().
"""

import os

import pytest

from coffee_backend.models.batch.batch_models import DAY, Batch, VerificationConfig
from coffee_backend.services.engine import build_engine

# importing app.py builds its module-level app; keep that on the in-process stores
os.environ.setdefault("DISABLE_MONGO", "1")

NOW = 1_700_000_000


def batch_doc(**overrides):
    doc = {
        "batchId": 1,
        "name": "Huila Washed",
        "quantity": 100,
        "mintedQuantity": 0,
        "productionDate": NOW - 30 * DAY,
        "expiryDate": NOW + 300 * DAY,
        "lastVerifiedTimestamp": NOW - DAY,
        "pricePerUnit": 18.5,
        "packagingInfo": "250g valve bag",
        "metadataHash": "QmMeta",
        "isVerified": True,
        "qualityScore": 86,
        "supplyChain": {"origin": "Colombia", "farmName": "La Esperanza", "altitude": "1800m",
                        "process": "washed", "roastDate": "2023-10-01"},
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return VerificationConfig()


@pytest.fixture
def make_batch():
    """Factory: make_batch(quantity=..., privacyConfig=...) -> Batch."""
    def _make(**overrides):
        return Batch(**batch_doc(**overrides))
    return _make


@pytest.fixture
def engine(config):
    """In-memory engine with a fixed clock."""
    eng = build_engine(defaults=config)
    eng.redemption_service._clock = lambda: NOW
    return eng
