# coffee_backend/services/stores/config_store.py
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from coffee_backend.models.batch.batch_models import VerificationConfig, VerificationConfigUpdate
from coffee_backend.services.errors import ConfigMissing, InvalidInput

logger = logging.getLogger(__name__)

_DOC_ID = "verification"


def _merge(current: VerificationConfig, partial: VerificationConfigUpdate) -> VerificationConfig:
    try:
        return VerificationConfig(**{**current.model_dump(), **partial.changes()})
    except ValidationError as e:
        raise InvalidInput(f"invalid verification config: {e.errors()[0].get('msg')}")


class InMemoryConfigStore:

    def __init__(self, config: Optional[VerificationConfig] = None):
        self._lock = threading.Lock()
        self._config = config

    def get_verification_config(self) -> VerificationConfig:
        with self._lock:
            if self._config is None:
                raise ConfigMissing("verification config not set")
            return self._config

    def update_verification_config(self, partial: VerificationConfigUpdate) -> VerificationConfig:
        with self._lock:
            self._config = _merge(self._config or VerificationConfig(), partial)
            return self._config


class MongoConfigStore:
    """
    Single document {_id: "verification", ...thresholds}.
    `defaults` (from env, see app_config) are served until an admin saves one.
    """

    def __init__(self, db, defaults: Optional[VerificationConfig] = None, collection: str = "verification_config"):
        self.col = db[collection]
        self.defaults = defaults

    def _stored(self) -> Optional[VerificationConfig]:
        doc = self.col.find_one({"_id": _DOC_ID})
        if not doc:
            return None
        fields = {k: v for k, v in doc.items() if k in VerificationConfig.model_fields}
        return VerificationConfig(**fields)

    def get_verification_config(self) -> VerificationConfig:
        stored = self._stored()
        if stored is not None:
            return stored
        if self.defaults is None:
            raise ConfigMissing("verification config not set")
        return self.defaults

    def update_verification_config(self, partial: VerificationConfigUpdate) -> VerificationConfig:
        base = self._stored() or self.defaults or VerificationConfig()
        merged = _merge(base, partial)
        self.col.update_one(
            {"_id": _DOC_ID},
            {"$set": {**merged.model_dump(), "updated_at": datetime.now(timezone.utc)}},
            upsert=True,
        )
        logger.info("verification config updated: %s", partial.changes())
        return merged
