# coffee_backend/services/ledger/ledger_sync_service.py
from __future__ import annotations

import logging
from typing import List, Optional

from coffee_backend import blockchain
from coffee_backend.models.batch.batch_models import Batch
from coffee_backend.models.redemption.redemption_models import RedemptionStatus
from coffee_backend.services.errors import BatchNotFound, InsufficientBalance, InvalidInput
from coffee_backend.services.stores.batch_store import load_batch

logger = logging.getLogger(__name__)

# on-chain prices are stored in cents
PRICE_SCALE = 100

OPEN_STATUSES = (RedemptionStatus.REQUESTED, RedemptionStatus.PROCESSING)
LEDGER_ACTOR = "ledger-sync"


class LedgerSyncService:
    """
    Pulls ledger state into the stores. The ledger is the source of truth
    for dates, quantity, price and verification; minted accounting, privacy
    settings and proof references only exist off-chain and are preserved.
    """

    def __init__(self, batch_store, balance_store, contract=None, redemption_service=None):
        self.batches = batch_store
        self.balances = balance_store
        self.contract = contract
        self.redemptions = redemption_service

    def _existing(self, batch_id: int) -> Optional[Batch]:
        try:
            return self.batches.get_batch(batch_id)
        except BatchNotFound:
            return None

    def sync_batch(self, batch_id: int) -> Optional[Batch]:
        info = blockchain.get_batch_info(batch_id, contract=self.contract)
        if not info:
            return None
        if not int(info.get("expiryDate") or 0):
            # unset slot in the mapping
            logger.info("batch %s not on ledger", batch_id)
            return None

        current = self._existing(batch_id)
        doc = current.to_doc() if current else {"batchId": int(batch_id)}
        minted = int(doc.get("mintedQuantity") or 0)
        quantity = max(int(info["currentQuantity"]), minted)

        doc.update({
            "productionDate": int(info["productionDate"]),
            "expiryDate": int(info["expiryDate"]),
            "isVerified": bool(info["isVerified"]),
            "quantity": quantity,
            "mintedQuantity": minted,
            "availableQuantity": quantity - minted,
            "pricePerUnit": int(info["pricePerUnit"]) / PRICE_SCALE,
            "packagingInfo": info.get("packagingInfo") or "",
            "metadataHash": info.get("metadataHash") or "",
            "isMetadataVerified": bool(info["isMetadataVerified"]),
            "lastVerifiedTimestamp": int(info["lastVerifiedTimestamp"]),
        })

        try:
            batch = load_batch(doc)
        except InvalidInput as e:
            logger.error("ledger batch %s rejected: %s", batch_id, e)
            return None
        self.batches.upsert_batch(batch)
        return batch

    def sync_balance(self, batch_id: int, holder: str) -> Optional[int]:
        """
        The ledger balance always wins. Open requests that it can no longer
        cover are cancelled, newest first, before it is stored.
        """
        bal = blockchain.get_token_balance(batch_id, holder, contract=self.contract)
        if bal is None:
            return None
        try:
            return self.balances.set_balance(batch_id, holder, bal)
        except InsufficientBalance:
            if self.redemptions is None:
                logger.error("ledger balance %s of %s for batch %s is below its reservations; not stored",
                             bal, holder, batch_id)
                return None
        self._cancel_overcommitted(batch_id, holder, bal)
        return self.balances.set_balance(batch_id, holder, bal)

    def _cancel_overcommitted(self, batch_id: int, holder: str, balance: int) -> List[int]:
        open_requests = sorted(
            (r for r in self.redemptions.list_redemptions(consumer=holder)
             if r.batchId == int(batch_id) and r.status in OPEN_STATUSES),
            key=lambda r: r.id,
            reverse=True,
        )
        cancelled: List[int] = []
        for req in open_requests:
            if self.balances.get_reserved(batch_id, holder) <= balance:
                break
            self.redemptions.advance_redemption(req.id, RedemptionStatus.CANCELLED, actor=LEDGER_ACTOR)
            cancelled.append(req.id)
            logger.error("redemption %s cancelled: ledger balance of %s for batch %s is %s",
                         req.id, holder, batch_id, balance)

        leftover = self.balances.get_reserved(batch_id, holder) - balance
        if leftover > 0:
            # reservation with no open request behind it
            self.balances.release(batch_id, holder, leftover)
        return cancelled

    def sync_active_batches(self) -> List[Batch]:
        synced: List[Batch] = []
        for batch_id in blockchain.get_active_batch_ids(contract=self.contract):
            b = self.sync_batch(batch_id)
            if b is not None:
                synced.append(b)
        logger.info("ledger sync: %s active batches stored", len(synced))
        return synced
