# coffee_backend/services/redemption/token_service.py
from __future__ import annotations

import logging

from coffee_backend.services.errors import InvalidInput

logger = logging.getLogger(__name__)


def mint_tokens(batch_store, balance_store, batch_id: int, holder: str, amount: int) -> int:
    """
    Issue `amount` batch tokens to `holder`.
    Minted quantity moves first (guarded by the batch store), then the balance is credited.
    Returns the holder's new balance.
    """
    holder = (holder or "").strip()
    if not holder:
        raise InvalidInput("holder is required")
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise InvalidInput("amount must be an integer", amount=amount)
    if amount <= 0:
        raise InvalidInput("amount must be greater than zero", amount=amount)

    batch = batch_store.get_batch(batch_id)
    if amount > (batch.availableQuantity or 0):
        raise InvalidInput(
            "amount exceeds available quantity",
            batchId=batch.batchId, amount=amount, available=batch.availableQuantity,
        )

    batch_store.adjust_minted(batch.batchId, amount)
    try:
        balance = balance_store.credit(batch.batchId, holder, amount)
    except Exception:
        batch_store.adjust_minted(batch.batchId, -amount)
        raise

    logger.info("minted %s tokens of batch %s to %s", amount, batch.batchId, holder)
    return balance
